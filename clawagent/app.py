"""Application factory — wires memory, tools, LLM, agent and scheduler."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from clawagent.agent.orchestrator import AgentOrchestrator
from clawagent.config import Settings, settings
from clawagent.llm.client import create_llm_client
from clawagent.memory.improvement import SelfImprovementLoop
from clawagent.memory.store import MemoryStore
from clawagent.scheduler import MaintenanceScheduler, battery_not_low
from clawagent.tools import build_registry

if TYPE_CHECKING:
    from clawagent.llm.base import LLMClient
    from clawagent.tools.base import BaseTool

logger = logging.getLogger(__name__)


@dataclass
class AgentApp:
    """Everything one running agent needs, built once at startup."""

    store: MemoryStore
    agent: AgentOrchestrator
    improvement: SelfImprovementLoop
    scheduler: MaintenanceScheduler | None = None

    async def start(self) -> None:
        await self.store.open()
        if self.scheduler is not None:
            await self.scheduler.start()

    async def stop(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.stop()
        await self.store.drain()


def create_app(
    config: Settings | None = None,
    llm: LLMClient | None = None,
    extra_tools: list[BaseTool] | None = None,
) -> AgentApp:
    """Build the agent from *config* (defaults to the global settings).

    Args:
        config: Settings to build from.
        llm: Chat backend; created from *config* when omitted.
        extra_tools: Host-provided tools (device control, ...).
    """
    config = config or settings
    store = MemoryStore(db_path=config.database_path)
    registry = build_registry(store, extra_tools)
    agent = AgentOrchestrator(
        llm=llm or create_llm_client(config),
        registry=registry,
        store=store,
        max_rounds=config.max_tool_rounds,
    )
    improvement = SelfImprovementLoop(store, retention_ms=config.memory_retention_ms)

    scheduler = None
    if config.self_improvement_enabled:
        scheduler = MaintenanceScheduler(
            improvement,
            interval_hours=config.self_improvement_interval_hours,
            constraint=functools.partial(battery_not_low, config.battery_low_percent),
        )
    else:
        logger.info("Self-improvement scheduling disabled")

    logger.info("Agent ready with tools: %s", ", ".join(registry.tool_names))
    return AgentApp(store=store, agent=agent, improvement=improvement, scheduler=scheduler)
