"""Tool registry — name-keyed catalog of the agent's effectors."""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from clawagent.tools.base import (
    BaseTool,
    ToolParams,
    ToolResult,
    ToolSpec,
    parameters_from_model,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    Handler = Callable[..., Awaitable[ToolResult]]

logger = logging.getLogger(__name__)

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass
class RegisteredTool:
    """A tool as the registry stores it: metadata plus its coroutine."""

    name: str
    description: str
    category: str
    handler: Handler
    params_model: type[ToolParams] | None = None

    @property
    def spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.name,
            description=self.description,
            parameters=parameters_from_model(self.params_model),
        )

    def json_schema(self) -> dict[str, Any]:
        schema = self.params_model.model_json_schema() if self.params_model else dict(_EMPTY_SCHEMA)
        return {"name": self.name, "description": self.description, "input_schema": schema}

    def bind(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Validate raw LLM arguments into handler kwargs."""
        if self.params_model is None:
            return dict(arguments)
        return self.params_model.model_validate(arguments).model_dump()


class ToolRegistry:
    """The set of tools one orchestrator may call, keyed by name.

    Device hosts add their own effectors here alongside the built-ins.
    Registering a name twice replaces the earlier tool.

    Stateless tools can use the decorator::

        @registry.tool(name="press_home", description="Go to the home screen", category="device")
        async def press_home() -> ToolResult:
            ...

    Tools that carry state subclass ``BaseTool`` and go through
    ``registry.register(SwipeTool(bridge))``.
    """

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    # -- Registration ----------------------------------------------------------

    def _add(self, entry: RegisteredTool) -> None:
        if entry.name in self._tools:
            logger.info("Replacing registered tool '%s'", entry.name)
        self._tools[entry.name] = entry

    def tool(
        self,
        *,
        name: str,
        description: str,
        category: str,
        params_model: type[ToolParams] | None = None,
    ) -> Callable[[Handler], Handler]:
        """Register the decorated coroutine function under *name*."""

        def decorator(fn: Handler) -> Handler:
            if not inspect.iscoroutinefunction(fn):
                msg = f"Tool handler '{name}' must be an async function"
                raise TypeError(msg)
            self._add(RegisteredTool(name, description, category, fn, params_model))
            return fn

        return decorator

    def register(self, tool_instance: BaseTool) -> None:
        """Register a ``BaseTool`` instance under its ``name``."""
        if not tool_instance.name:
            msg = f"{type(tool_instance).__name__} has no name"
            raise ValueError(msg)
        self._add(
            RegisteredTool(
                tool_instance.name,
                tool_instance.description,
                tool_instance.category,
                tool_instance.execute,
                tool_instance.params_model,
            )
        )

    # -- Lookup ----------------------------------------------------------------

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def get_specs(self) -> list[ToolSpec]:
        """What the LLM is told about each tool."""
        return [entry.spec for entry in self._tools.values()]

    def get_schemas(self) -> list[dict[str, Any]]:
        """Full JSON-schema definitions, for backends that want them verbatim."""
        return [entry.json_schema() for entry in self._tools.values()]

    def get_tools_by_category(self) -> dict[str, list[RegisteredTool]]:
        by_category: dict[str, list[RegisteredTool]] = {}
        for entry in self._tools.values():
            by_category.setdefault(entry.category, []).append(entry)
        return by_category

    # -- Dispatch --------------------------------------------------------------

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Run tool *name* with the LLM-supplied *arguments*.

        Never raises for tool problems: an unknown name, arguments that fail
        validation and exceptions from the handler all come back as an
        error ``ToolResult`` the LLM can read.
        """
        entry = self._tools.get(name)
        if entry is None:
            available = ", ".join(sorted(self._tools)) or "none"
            logger.warning("LLM requested unknown tool '%s'", name)
            return ToolResult(error=f"Unknown tool: '{name}'. Available tools: {available}")

        try:
            kwargs = entry.bind(arguments)
        except ValidationError as exc:
            logger.warning("Tool '%s' got invalid arguments: %s", name, exc)
            return ToolResult(error=f"Invalid arguments for '{name}': {exc.error_count()} error(s)")
        except (TypeError, ValueError) as exc:
            logger.warning("Tool '%s' got unusable arguments %r: %s", name, arguments, exc)
            return ToolResult(error=f"Invalid arguments for '{name}': {exc}")

        logger.info("Running tool '%s' with %s", name, kwargs)
        started = time.monotonic()
        try:
            result = await entry.handler(**kwargs)
        except Exception as exc:
            logger.exception("Tool '%s' raised after %.2fs", name, time.monotonic() - started)
            return ToolResult(error=f"Tool '{name}' raised {type(exc).__name__}: {exc}")

        elapsed = time.monotonic() - started
        if result.success:
            logger.info("Tool '%s' finished in %.2fs", name, elapsed)
        else:
            logger.warning("Tool '%s' reported failure after %.2fs: %s", name, elapsed, result.error)
        return result
