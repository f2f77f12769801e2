"""Base types for the tool-calling framework."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel


@dataclass
class ToolResult:
    """Outcome of one tool call.

    Every tool returns one of these. The orchestrator renders it into a
    result line that is fed back to the LLM on the next round.
    """

    data: Any = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_content(self) -> str:
        """Render as text for the LLM."""
        if self.error:
            return self.error
        if self.data is None:
            return "Success"
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, default=str)


@dataclass
class ToolParameter:
    """Schema for a single tool parameter."""

    type: str
    description: str = ""
    required: bool = False


@dataclass
class ToolSpec:
    """What the LLM sees of a tool: name, description and typed parameters."""

    name: str
    description: str
    parameters: dict[str, ToolParameter] = field(default_factory=dict)


class ToolParams(BaseModel):
    """Pydantic base for a tool's arguments.

    Subclass with Field() definitions. The parameter map (and the full
    JSON schema) is derived from ``model_json_schema()``.
    """


def parameters_from_model(params_model: type[ToolParams] | None) -> dict[str, ToolParameter]:
    """Build a name -> ToolParameter map from a params model."""
    if params_model is None:
        return {}
    schema = params_model.model_json_schema()
    required = set(schema.get("required", []))
    parameters: dict[str, ToolParameter] = {}
    for name, prop in schema.get("properties", {}).items():
        prop_type = prop.get("type")
        if prop_type is None:
            # Optional[...] fields come through as anyOf [{type}, {type: null}]
            variants = [v.get("type") for v in prop.get("anyOf", []) if v.get("type") != "null"]
            prop_type = variants[0] if variants else "string"
        parameters[name] = ToolParameter(
            type=prop_type,
            description=prop.get("description", ""),
            required=name in required,
        )
    return parameters


class BaseTool(ABC):
    """A tool that carries state, such as the memory store or a device bridge.

    Subclasses set the class attributes and implement ``execute``, which
    receives the validated fields of ``params_model`` as keyword arguments::

        class TapTool(BaseTool):
            name = "tap"
            description = "Tap the screen at (x, y)"
            category = "device"
            params_model = TapParams

            async def execute(self, x: int, y: int) -> ToolResult:
                await self._bridge.tap(x, y)
                return ToolResult(data=f"Tapped ({x}, {y})")

    Stateless tools can use ``@registry.tool()`` instead.
    """

    name: str = ""
    description: str = ""
    category: str = ""
    params_model: type[ToolParams] | None = None

    @property
    def parameters(self) -> dict[str, ToolParameter]:
        return parameters_from_model(self.params_model)

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Perform the action; report problems through ``ToolResult.error``."""
