"""Prompt-shaping policy for retrieved memory.

Decides how many memories and skills go into the next LLM call and how
they are rendered.  Storage mechanics stay in ``MemoryStore``; changing
the policy here never touches persistence code.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from clawagent.memory.models import LearnedSkill, MemoryChunk
    from clawagent.memory.store import MemoryStore

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_LIMIT = 5
DEFAULT_SKILL_LIMIT = 10
DEFAULT_ITEM_CHARS = 300

MEMORIES_HEADER = "=== Relevant past experiences ==="
SKILLS_HEADER = "=== Learned skills ==="


def format_context(
    memories: list[MemoryChunk],
    skills: list[LearnedSkill],
    item_chars: int = DEFAULT_ITEM_CHARS,
) -> str:
    """Render memories and skills as a single text block.

    Empty sections are omitted entirely, so no bare header is ever
    produced.  Returns "" when there is nothing to show.
    """
    lines: list[str] = []
    if memories:
        lines.append(MEMORIES_HEADER)
        for i, chunk in enumerate(memories, start=1):
            lines.append(f"{i}. {chunk.content[:item_chars]}")
        lines.append("")

    if skills:
        lines.append(SKILLS_HEADER)
        for skill in skills:
            lines.append(f"- {skill.name}: {skill.description}")
            lines.append(f"  How to use: {skill.how_to_use}")

    return "\n".join(lines).strip()


class RetrievalContextBuilder:
    """Builds the bounded context block injected before a user request.

    Args:
        store: Memory store to recall from.
        memory_limit: Max memory chunks (top-K by similarity).
        skill_limit: Max learned skills (by success count).
        item_chars: Per-memory truncation length.
    """

    def __init__(
        self,
        store: MemoryStore,
        memory_limit: int = DEFAULT_MEMORY_LIMIT,
        skill_limit: int = DEFAULT_SKILL_LIMIT,
        item_chars: int = DEFAULT_ITEM_CHARS,
    ) -> None:
        self._store = store
        self.memory_limit = memory_limit
        self.skill_limit = skill_limit
        self.item_chars = item_chars

    async def build(self, query: str) -> str:
        memories = await self._store.recall(query, self.memory_limit)
        skills = await self._store.list_skills(limit=self.skill_limit)
        context = format_context(memories, skills, self.item_chars)
        if context:
            logger.debug(
                "Context for query: %d memories, %d skills", len(memories), len(skills)
            )
        return context
