"""Self-improvement loop — periodic review of the agent's own experience.

Each run:

1. Reviews recent failed turns and promotes recurring failure patterns
   into ``lesson:*`` skills.
2. Prunes stale, low-importance memory.
3. Logs (and returns) a health summary.

Steps commit independently.  An exception aborts the run and propagates
so the scheduler can retry later; work from earlier steps is kept.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from clawagent.memory.models import FeedbackScore

if TYPE_CHECKING:
    from clawagent.memory.models import LearnedSkill
    from clawagent.memory.store import MemoryStore

logger = logging.getLogger(__name__)

FAILURE_REVIEW_LIMIT = 20
FAILURE_THRESHOLD = 3
SUMMARY_WINDOW = 50
TOP_SKILLS = 5
DEFAULT_RETENTION_MS = 30 * 24 * 60 * 60 * 1000

DIRECT_RESPONSE_LESSON = "lesson:direct-response-failures"


@dataclass
class ImprovementSummary:
    """Health snapshot produced at the end of a run."""

    successes: int = 0
    failures: int = 0
    positive_feedback: int = 0
    negative_feedback: int = 0
    skill_count: int = 0
    top_skills: list[tuple[str, float]] = field(default_factory=list)
    lessons_learned: list[str] = field(default_factory=list)
    pruned: dict[str, int] = field(default_factory=dict)

    def render(self) -> str:
        lines = [
            "=== Agent Self-Improvement Summary ===",
            f"Recent interactions (last {SUMMARY_WINDOW}): "
            f"{self.successes} succeeded, {self.failures} failed",
            f"Feedback: {self.positive_feedback} positive, {self.negative_feedback} negative",
            f"Learned skills stored: {self.skill_count}",
        ]
        if self.top_skills:
            lines.append("Top skills by success rate:")
            for name, rate in self.top_skills:
                lines.append(f"  - {name}: {round(rate * 100)}% success rate")
        return "\n".join(lines)


def _lesson_name(tool: str) -> str:
    return f"lesson:{tool}"


class SelfImprovementLoop:
    """Maintenance pass over a ``MemoryStore``.

    Idempotent: re-running with the same history re-upserts the same
    lessons (refreshing ``last_updated``) without touching their counters.
    """

    def __init__(self, store: MemoryStore, retention_ms: int = DEFAULT_RETENTION_MS) -> None:
        self._store = store
        self._retention_ms = retention_ms

    async def run(self) -> ImprovementSummary:
        logger.info("Self-improvement loop started")
        lessons = await self.review_failures()
        pruned = await self._store.prune_old_memories(self._retention_ms)
        summary = await self.build_summary()
        summary.lessons_learned = lessons
        summary.pruned = pruned
        logger.info("%s", summary.render())
        logger.info("Self-improvement loop completed")
        return summary

    async def review_failures(self) -> list[str]:
        """Turn repeated failures into lessons. Returns the lesson names upserted."""
        failures = await self._store.recent_failed_turns(limit=FAILURE_REVIEW_LIMIT)
        if not failures:
            logger.debug("No recent failures to review")
            return []

        logger.debug("Reviewing %d recent failure(s)", len(failures))

        by_tool: Counter[str] = Counter()
        for turn in failures:
            by_tool.update(turn.tools_used)

        learned: list[str] = []
        for tool, count in by_tool.items():
            if count < FAILURE_THRESHOLD:
                continue
            name = _lesson_name(tool)
            await self._store.learn_skill(
                name=name,
                description=f"Repeated failures with {tool} tool",
                how_to_use=(
                    f"Tool '{tool}' has failed {count} times recently. "
                    "Consider verifying permissions and inputs before calling it."
                ),
            )
            learned.append(name)
            logger.debug("Recorded lesson for tool: %s (%d failures)", tool, count)

        no_tool_failures = sum(1 for turn in failures if not turn.tools_used)
        if no_tool_failures >= FAILURE_THRESHOLD:
            await self._store.learn_skill(
                name=DIRECT_RESPONSE_LESSON,
                description=(
                    f"Direct (no-tool) responses have failed {no_tool_failures} times recently."
                ),
                how_to_use=(
                    "When answering without tools, be more cautious and verify "
                    "the user's intent before responding."
                ),
            )
            learned.append(DIRECT_RESPONSE_LESSON)

        return learned

    async def build_summary(self) -> ImprovementSummary:
        recent = await self._store.recent_turns(limit=SUMMARY_WINDOW)
        skills = await self._store.list_skills()
        return ImprovementSummary(
            successes=sum(1 for t in recent if t.was_successful),
            failures=sum(1 for t in recent if not t.was_successful),
            positive_feedback=sum(
                1 for t in recent if t.feedback_score == FeedbackScore.POSITIVE
            ),
            negative_feedback=sum(
                1 for t in recent if t.feedback_score == FeedbackScore.NEGATIVE
            ),
            skill_count=len(skills),
            top_skills=_top_by_success_rate(skills),
        )


def _top_by_success_rate(skills: list[LearnedSkill]) -> list[tuple[str, float]]:
    ranked = sorted(skills, key=lambda s: (s.success_rate, s.success_count), reverse=True)
    return [(s.name, s.success_rate) for s in ranked[:TOP_SKILLS]]
