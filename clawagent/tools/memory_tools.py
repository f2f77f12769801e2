"""Explicit memory tools.

Let the LLM search long-term memory and record a lesson on purpose,
on top of the context that is injected automatically every turn.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field

from clawagent.tools.base import BaseTool, ToolParams, ToolResult

if TYPE_CHECKING:
    from clawagent.memory.store import MemoryStore

# -- recall_memory -----------------------------------------------------------


class RecallMemoryParams(ToolParams):
    query: str = Field(description="What to search for in memory")
    limit: int = Field(default=5, description="Maximum number of results (1-20)", ge=1, le=20)


class RecallMemoryTool(BaseTool):
    name = "recall_memory"
    description = (
        "Search long-term memory for past conversations and visited pages. "
        "Use when you need more context than was provided automatically."
    )
    category = "memory"
    params_model = RecallMemoryParams

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    async def execute(self, query: str, limit: int = 5) -> ToolResult:
        chunks = await self._store.recall(query, limit)
        results = [
            {"content": c.content, "source": c.source, "importance": c.importance}
            for c in chunks
        ]
        return ToolResult(data={"results": results, "count": len(results)})


# -- learn_skill -------------------------------------------------------------


class LearnSkillParams(ToolParams):
    name: str = Field(description="Short unique name for the skill, e.g. 'open-wifi-settings'")
    description: str = Field(description="What the skill is about")
    how_to_use: str = Field(description="Concrete steps or advice for next time")


class LearnSkillTool(BaseTool):
    name = "learn_skill"
    description = (
        "Save a reusable lesson for future tasks. Use after discovering a reliable "
        "way to do something on the device. Saving an existing name updates it."
    )
    category = "memory"
    params_model = LearnSkillParams

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    async def execute(self, name: str, description: str, how_to_use: str) -> ToolResult:
        await self._store.learn_skill(name=name, description=description, how_to_use=how_to_use)
        return ToolResult(data={"learned": True, "name": name})
