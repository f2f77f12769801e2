"""Tool framework — builds the registry the orchestrator dispatches through."""

from __future__ import annotations

from typing import TYPE_CHECKING

from clawagent.tools import utility
from clawagent.tools.base import BaseTool, ToolParameter, ToolParams, ToolResult, ToolSpec
from clawagent.tools.memory_tools import LearnSkillTool, RecallMemoryTool
from clawagent.tools.registry import ToolRegistry
from clawagent.tools.web_tools import ReadWebpageTool

if TYPE_CHECKING:
    from clawagent.memory.store import MemoryStore


def build_registry(store: MemoryStore, extra_tools: list[BaseTool] | None = None) -> ToolRegistry:
    """Create a registry with the built-in tools plus any *extra_tools*.

    Device tools (tap, swipe, shell, ...) are supplied by the host through
    *extra_tools*; a later registration with the same name wins.
    """
    registry = ToolRegistry()
    utility.register(registry)
    registry.register(RecallMemoryTool(store))
    registry.register(LearnSkillTool(store))
    registry.register(ReadWebpageTool(store))
    for tool in extra_tools or []:
        registry.register(tool)
    return registry


__all__ = [
    "BaseTool",
    "ToolParameter",
    "ToolParams",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "build_registry",
]
