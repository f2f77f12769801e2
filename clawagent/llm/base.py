"""Vendor-neutral chat types and the LLM client contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from clawagent.tools.base import ToolSpec


@dataclass
class ChatMessage:
    """One visible conversation message."""

    content: str
    is_user: bool


@dataclass
class ToolCall:
    """A tool invocation requested by the LLM."""

    tool_name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatResponse:
    """The LLM's reply: free text and zero or more tool calls."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


@runtime_checkable
class LLMClient(Protocol):
    """Contract for chat backends used by the orchestrator.

    Implementations must not raise for recoverable conditions (missing
    API key, unreachable endpoint, rate limits, ...).  Those are reported
    as a text-only ``ChatResponse`` describing the problem so the agent
    loop treats them as an ordinary final answer.
    """

    async def chat(self, messages: list[ChatMessage], tools: list[ToolSpec]) -> ChatResponse:
        ...


def spec_to_json_schema(spec: ToolSpec) -> dict[str, Any]:
    """JSON-schema object describing a tool's parameters."""
    properties = {
        name: {"type": p.type, "description": p.description}
        for name, p in spec.parameters.items()
    }
    required = [name for name, p in spec.parameters.items() if p.required]
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema
