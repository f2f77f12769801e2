"""AgentOrchestrator — the bounded multi-round tool-calling loop.

One ``send_message`` call is one conversational turn:

1. Retrieve memory context for the request.
2. Call the LLM with the conversation and every tool's schema.
3. Execute requested tool calls one at a time and feed the results back
   as an assistant message.
4. Stop on a plain-text answer, or after ``max_rounds`` rounds.
5. Record the turn in long-term memory, successful or not.

Only one turn runs at a time.  A call that arrives while the agent is
busy is rejected immediately, not queued.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from clawagent.config import settings
from clawagent.llm.base import ChatMessage

if TYPE_CHECKING:
    from clawagent.llm.base import LLMClient, ToolCall
    from clawagent.memory.context import RetrievalContextBuilder
    from clawagent.memory.store import MemoryStore
    from clawagent.tools.base import BaseTool, ToolResult
    from clawagent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

ROUND_LIMIT_WARNING = (
    "Stopped after {rounds} rounds without a final answer. "
    "The task may be incomplete; please check the device and try again."
)


class AgentState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class AgentReply:
    """Outcome of one ``send_message`` call."""

    text: str
    success: bool
    tools_used: list[str] = field(default_factory=list)
    rounds: int = 0
    terminated_by_limit: bool = False
    turn_id: int | None = None


def format_tool_result(tool_name: str, result: ToolResult) -> str:
    """One result line for the combined assistant message."""
    if result.success:
        return f"{tool_name} succeeded: {result.to_content()}"
    return f"{tool_name} failed: {result.error}"


def _lesson_names(tools_used: list[str]) -> list[str]:
    return [f"lesson:{name}" for name in dict.fromkeys(tools_used)]


class AgentOrchestrator:
    """Drives a conversation with an LLM, a tool registry and memory.

    Args:
        llm: Chat backend.
        registry: Tools the LLM may call.
        store: Long-term memory; every turn is recorded here.
        context_builder: Retrieval policy (defaults to the store's).
        max_rounds: LLM calls allowed per turn (at least 1).
    """

    def __init__(
        self,
        llm: LLMClient,
        registry: ToolRegistry,
        store: MemoryStore,
        context_builder: RetrievalContextBuilder | None = None,
        max_rounds: int | None = None,
    ) -> None:
        self._llm = llm
        self._registry = registry
        self._store = store
        self._context_builder = context_builder or store.context_builder
        self._max_rounds = settings.max_tool_rounds if max_rounds is None else max_rounds
        if self._max_rounds < 1:
            msg = f"max_rounds must be at least 1, got {self._max_rounds}"
            raise ValueError(msg)
        self._history: list[ChatMessage] = []
        self._state = AgentState.IDLE
        self._orphaned_tools: set[asyncio.Future] = set()

    # -- State -----------------------------------------------------------------

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is AgentState.RUNNING

    @property
    def history(self) -> list[ChatMessage]:
        """A copy of the visible conversation."""
        return list(self._history)

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def register_tool(self, tool: BaseTool) -> None:
        self._registry.register(tool)

    def clear_history(self) -> None:
        """Forget the visible conversation (long-term memory is untouched)."""
        self._history = []

    # -- Turn ------------------------------------------------------------------

    async def send_message(self, user_text: str) -> AgentReply | None:
        """Run one full turn for *user_text*.

        Returns None, without touching history, when a turn is already in
        flight.
        """
        if self._state is AgentState.RUNNING:
            logger.info("Rejected message while busy: %s", user_text[:80])
            return None

        self._state = AgentState.RUNNING
        try:
            return await self._run_turn(user_text)
        finally:
            self._state = AgentState.IDLE

    async def _run_turn(self, user_text: str) -> AgentReply:
        prior = list(self._history)
        self._history.append(ChatMessage(content=user_text, is_user=True))

        tools_used: list[str] = []
        success = True
        rounds = 0
        limited = False

        try:
            context = await self._context_builder.build(user_text)
            enriched = f"{context}\n\n{user_text}" if context else user_text
            tool_specs = self._registry.get_specs()

            finished = False
            for round_num in range(1, self._max_rounds + 1):
                rounds = round_num
                if round_num == 1:
                    # Context goes to the LLM only; history keeps the raw text.
                    outgoing = [*prior, ChatMessage(content=enriched, is_user=True)]
                else:
                    outgoing = list(self._history)

                response = await self._llm.chat(outgoing, tool_specs)

                if not response.tool_calls:
                    if response.text.strip():
                        self._append_reply(response.text)
                        finished = True
                        break
                    logger.warning("Round %d: empty response with no tool calls", round_num)
                    continue

                logger.info(
                    "Round %d: %d tool call(s): %s",
                    round_num,
                    len(response.tool_calls),
                    ", ".join(c.tool_name for c in response.tool_calls),
                )

                # Sequential on purpose: tools share device state.
                lines: list[str] = []
                for call in response.tool_calls:
                    tools_used.append(call.tool_name)
                    result = await self._execute_tool_call(call)
                    if not result.success:
                        success = False
                    lines.append(format_tool_result(call.tool_name, result))

                results_block = "\n".join(lines)
                if response.text.strip():
                    self._append_reply(f"{response.text}\n\n{results_block}")
                else:
                    self._append_reply(results_block)

            if not finished:
                logger.warning("Hit max tool rounds (%d)", self._max_rounds)
                limited = True
                success = False
                self._append_reply(ROUND_LIMIT_WARNING.format(rounds=self._max_rounds))

        except Exception as exc:
            logger.exception("Agent turn failed")
            success = False
            self._append_reply(f"Error: {exc}")

        final_text = self._history[-1].content
        turn_id: int | None = None
        try:
            turn_id = await self._store.remember(
                user_message=user_text,
                agent_response=final_text,
                tools_used=tools_used,
                success=success,
            )
        except Exception:
            logger.exception("Failed to record turn in memory")
            success = False
            final_text = "Error: the conversation could not be saved to memory."
            self._append_reply(final_text)
        else:
            if tools_used:
                self._store.record_skill_outcomes(_lesson_names(tools_used), success)

        return AgentReply(
            text=final_text,
            success=success,
            tools_used=tools_used,
            rounds=rounds,
            terminated_by_limit=limited,
            turn_id=turn_id,
        )

    async def _execute_tool_call(self, call: ToolCall) -> ToolResult:
        """Run one tool call; on cancellation let it finish and drop its result."""
        task = asyncio.ensure_future(self._registry.execute(call.tool_name, call.params))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                logger.warning(
                    "Cancelled during '%s'; letting it finish, result will be discarded",
                    call.tool_name,
                )
                self._orphaned_tools.add(task)
                task.add_done_callback(self._orphaned_tools.discard)
            raise

    def _append_reply(self, content: str) -> None:
        self._history.append(ChatMessage(content=content, is_user=False))
