"""MemoryStore — the agent's on-device long-term memory.

Owns four tables (conversations, memory chunks, learned skills, browsing
history) plus the persisted embedding vocabulary, all in one SQLite
database accessed through aiosqlite.  No other component writes to these
tables; the orchestrator and the self-improvement loop only go through
the public methods below.

Each operation opens its own connection, so operations are internally
consistent when the orchestrator and the maintenance job interleave.
``remember`` and ``store_browsing_memory`` are single transactions: the
row and its derived memory chunk become visible together or not at all.

Access-count bumps, feedback and skill-outcome updates are fire-and-forget
background writes.  They are retried a few times, then logged and dropped;
callers never see their failures.  ``drain()`` waits for them.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from typing import TYPE_CHECKING

from clawagent.config import settings
from clawagent.db import get_connection, init_schema
from clawagent.memory.context import RetrievalContextBuilder
from clawagent.memory.embedding import EmbeddingEngine, EmbeddingSpace
from clawagent.memory.models import (
    BrowsingFact,
    ConversationTurn,
    FeedbackScore,
    LearnedSkill,
    MemoryChunk,
    now_ms,
    pack_embedding,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

SUCCESS_IMPORTANCE = 0.6
FAILURE_IMPORTANCE = 0.4
BROWSING_IMPORTANCE = 0.5
BROWSING_SUMMARY_CHARS = 500

# Chunks below this importance are prunable once old and rarely accessed
PRUNE_IMPORTANCE_THRESHOLD = 0.3
PRUNE_MIN_ACCESS_COUNT = 2

_BACKGROUND_ATTEMPTS = 3
_BACKGROUND_BACKOFF_SECONDS = 0.1

_TURN_COLUMNS = (
    "id, timestamp, user_message, agent_response, tools_used, was_successful, feedback_score"
)
_CHUNK_COLUMNS = "id, content, embedding, source, timestamp, access_count, importance"
_SKILL_COLUMNS = (
    "id, name, description, how_to_use, success_count, fail_count, last_updated"
)
_BROWSING_COLUMNS = "id, url, title, summary, timestamp, embedding"


class MemoryStore:
    """Persistent conversation, semantic, skill and browsing memory.

    Args:
        db_path: SQLite file (defaults to ``settings.database_path``).
        engine: Embedding engine whose vocabulary is persisted alongside
            the chunks.  A fresh engine is created when omitted.
        context_builder: Prompt-shaping policy used by
            ``get_relevant_context``.  Defaults to the standard policy.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        engine: EmbeddingEngine | None = None,
        context_builder: RetrievalContextBuilder | None = None,
    ) -> None:
        self._db_path = db_path or settings.database_path
        self.engine = engine or EmbeddingEngine()
        self.context_builder = context_builder or RetrievalContextBuilder(self)
        self._initialised = False
        self._init_lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        db = await get_connection(self._db_path)
        if not self._initialised:
            try:
                async with self._init_lock:
                    if not self._initialised:
                        await init_schema(db)
                        await self._load_vocabulary(db)
                        self._initialised = True
            except Exception:
                await db.close()
                raise
        return db

    async def _load_vocabulary(self, db: aiosqlite.Connection) -> None:
        cursor = await db.execute("SELECT word, idx, doc_freq FROM embedding_vocab")
        rows = await cursor.fetchall()
        cursor = await db.execute("SELECT value FROM embedding_meta WHERE key = 'doc_count'")
        meta = await cursor.fetchone()
        if not rows:
            return
        if self.engine.space.size:
            logger.warning(
                "Embedding engine already has %d words; ignoring %d persisted words",
                self.engine.space.size,
                len(rows),
            )
            return
        self.engine.space = EmbeddingSpace.from_rows(
            [tuple(r) for r in rows], meta[0] if meta else 0
        )
        logger.info("Loaded embedding vocabulary (%d words)", len(rows))

    async def _flush_vocabulary(self, db: aiosqlite.Connection) -> list[tuple[str, int, int]]:
        """Write pending vocabulary changes inside the caller's transaction.

        Counts only ever grow, so a flush never lowers a value another
        writer already stored.  Returns the rows written so the caller can
        re-mark them on rollback.
        """
        space = self.engine.space
        if not space.has_changes:
            return []
        rows, doc_count = space.drain_changes()
        if rows:
            await db.executemany(
                """
                INSERT INTO embedding_vocab (word, idx, doc_freq) VALUES (?, ?, ?)
                ON CONFLICT(word) DO UPDATE
                    SET doc_freq = MAX(embedding_vocab.doc_freq, excluded.doc_freq)
                """,
                rows,
            )
        await db.execute(
            """
            INSERT INTO embedding_meta (key, value) VALUES ('doc_count', ?)
            ON CONFLICT(key) DO UPDATE SET value = MAX(embedding_meta.value, excluded.value)
            """,
            (doc_count,),
        )
        return rows

    def _spawn(self, write: Callable[[], Awaitable[None]], label: str) -> None:
        """Run *write* in the background; the caller never awaits it."""
        task = asyncio.create_task(self._run_background(write, label))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_background(self, write: Callable[[], Awaitable[None]], label: str) -> None:
        for attempt in range(1, _BACKGROUND_ATTEMPTS + 1):
            try:
                await write()
                return
            except Exception:
                if attempt == _BACKGROUND_ATTEMPTS:
                    logger.exception("Background write '%s' failed (non-fatal)", label)
                    return
                logger.warning("Background write '%s' failed, retrying (%d)", label, attempt)
                await asyncio.sleep(_BACKGROUND_BACKOFF_SECONDS * 2 ** (attempt - 1))

    # -- Lifecycle -------------------------------------------------------------

    async def open(self) -> None:
        """Create the schema and load the persisted vocabulary."""
        db = await self._connect()
        await db.close()

    async def drain(self) -> None:
        """Wait until every pending background write has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -- Conversations ---------------------------------------------------------

    async def remember(
        self,
        user_message: str,
        agent_response: str,
        tools_used: list[str],
        success: bool,
    ) -> int:
        """Store a completed exchange and its searchable memory chunk.

        Both rows (and any vocabulary growth) commit in one transaction.

        Returns:
            The id of the new conversation turn.
        """
        content = f"User asked: {user_message}\nAgent answered: {agent_response}"
        importance = SUCCESS_IMPORTANCE if success else FAILURE_IMPORTANCE
        timestamp = now_ms()

        # Connecting loads the persisted vocabulary; embed only after it.
        db = await self._connect()
        vector = self.engine.embed(content)
        flushed: list[tuple[str, int, int]] = []
        try:
            cursor = await db.execute(
                """
                INSERT INTO conversations
                    (timestamp, user_message, agent_response, tools_used, was_successful)
                VALUES (?, ?, ?, ?, ?)
                """,
                (timestamp, user_message, agent_response, json.dumps(tools_used), int(success)),
            )
            turn_id = cursor.lastrowid
            await db.execute(
                """
                INSERT INTO memory_chunks (content, embedding, source, timestamp, importance)
                VALUES (?, ?, ?, ?, ?)
                """,
                (content, pack_embedding(vector), f"conversation:{turn_id}", timestamp, importance),
            )
            flushed = await self._flush_vocabulary(db)
            await db.commit()
        except Exception:
            await db.rollback()
            self.engine.space.mark_dirty(flushed)
            raise
        finally:
            await db.close()

        logger.debug(
            "Remembered turn %d (success=%s, tools=%s)", turn_id, success, tools_used
        )
        return turn_id

    async def get_turn(self, turn_id: int) -> ConversationTurn | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_TURN_COLUMNS} FROM conversations WHERE id = ?", (turn_id,)
            )
            row = await cursor.fetchone()
            return ConversationTurn.from_row(row) if row else None
        finally:
            await db.close()

    async def recent_turns(self, limit: int = 50) -> list[ConversationTurn]:
        """Most recent turns, newest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_TURN_COLUMNS} FROM conversations "
                "ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,),
            )
            rows = await cursor.fetchall()
            return [ConversationTurn.from_row(r) for r in rows]
        finally:
            await db.close()

    async def recent_failed_turns(self, limit: int = 20) -> list[ConversationTurn]:
        """Most recent unsuccessful turns, newest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_TURN_COLUMNS} FROM conversations WHERE was_successful = 0 "
                "ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,),
            )
            rows = await cursor.fetchall()
            return [ConversationTurn.from_row(r) for r in rows]
        finally:
            await db.close()

    # -- Semantic recall -------------------------------------------------------

    async def recall(self, query: str, limit: int = 5) -> list[MemoryChunk]:
        """Return the *limit* chunks most similar to *query*.

        Scores every chunk that has an embedding (full scan).  Access counts
        of the returned chunks are bumped in the background.
        """
        if limit <= 0:
            return []

        db = await self._connect()
        query_vec = self.engine.embed(query)
        try:
            cursor = await db.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM memory_chunks "
                "WHERE embedding IS NOT NULL ORDER BY timestamp DESC, id DESC"
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()

        scored: list[tuple[MemoryChunk, float]] = []
        for row in rows:
            chunk = MemoryChunk.from_row(row)
            if chunk.embedding is None:
                continue
            scored.append((chunk, self.engine.cosine_similarity(query_vec, chunk.embedding)))

        scored.sort(key=lambda pair: pair[1], reverse=True)
        top = [chunk for chunk, _ in scored[:limit]]

        self._spawn(
            functools.partial(self._bump_access_counts, [c.id for c in top]),
            "access-count bump",
        )
        return top

    async def _bump_access_counts(self, chunk_ids: list[int]) -> None:
        db = await self._connect()
        flushed: list[tuple[str, int, int]] = []
        try:
            if chunk_ids:
                await db.executemany(
                    "UPDATE memory_chunks SET access_count = access_count + 1 WHERE id = ?",
                    [(cid,) for cid in chunk_ids],
                )
            # Query embeds grow the vocabulary too; persist it here.
            flushed = await self._flush_vocabulary(db)
            await db.commit()
        except Exception:
            await db.rollback()
            self.engine.space.mark_dirty(flushed)
            raise
        finally:
            await db.close()

    async def get_relevant_context(self, query: str) -> str:
        """Render memories and skills for prompt injection ("" if none)."""
        return await self.context_builder.build(query)

    # -- Skills ----------------------------------------------------------------

    async def learn_skill(self, name: str, description: str, how_to_use: str) -> None:
        """Insert a skill, or refresh its text if *name* already exists.

        Counters are left alone on update; ``last_updated`` always moves
        forward.
        """
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO learned_skills
                    (name, description, how_to_use, success_count, fail_count, last_updated)
                VALUES (?, ?, ?, 0, 0, ?)
                ON CONFLICT(name) DO UPDATE SET
                    description = excluded.description,
                    how_to_use = excluded.how_to_use,
                    last_updated = MAX(excluded.last_updated, learned_skills.last_updated + 1)
                """,
                (name, description, how_to_use, now_ms()),
            )
            await db.commit()
            logger.info("Learned skill: %s", name)
        finally:
            await db.close()

    async def record_skill_outcome(self, name: str, success: bool) -> bool:
        """Increment a skill's success or fail counter.

        Returns True if the skill exists.
        """
        column = "success_count" if success else "fail_count"
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"UPDATE learned_skills SET {column} = {column} + 1, "
                "last_updated = MAX(?, last_updated + 1) WHERE name = ?",
                (now_ms(), name),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    def record_skill_outcomes(self, names: list[str], success: bool) -> None:
        """Background version of ``record_skill_outcome`` for several skills."""
        for name in names:
            self._spawn(
                functools.partial(self.record_skill_outcome, name, success),
                f"outcome for {name}",
            )

    async def get_skill(self, name: str) -> LearnedSkill | None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_SKILL_COLUMNS} FROM learned_skills WHERE name = ?", (name,)
            )
            row = await cursor.fetchone()
            return LearnedSkill.from_row(row) if row else None
        finally:
            await db.close()

    async def list_skills(self, limit: int | None = None) -> list[LearnedSkill]:
        """All skills ordered by success count, most successful first."""
        sql = f"SELECT {_SKILL_COLUMNS} FROM learned_skills ORDER BY success_count DESC, id"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        db = await self._connect()
        try:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
            return [LearnedSkill.from_row(r) for r in rows]
        finally:
            await db.close()

    # -- Browsing --------------------------------------------------------------

    async def store_browsing_memory(self, url: str, title: str, content: str) -> int:
        """Store a visited page and mirror it into semantic memory.

        Returns:
            The id of the new browsing-history row.
        """
        summary = content[:BROWSING_SUMMARY_CHARS]
        timestamp = now_ms()

        db = await self._connect()
        blob = pack_embedding(self.engine.embed(f"{title} {summary}"))
        flushed: list[tuple[str, int, int]] = []
        try:
            cursor = await db.execute(
                """
                INSERT INTO browsing_history (url, title, summary, timestamp, embedding)
                VALUES (?, ?, ?, ?, ?)
                """,
                (url, title, summary, timestamp, blob),
            )
            fact_id = cursor.lastrowid
            await db.execute(
                """
                INSERT INTO memory_chunks (content, embedding, source, timestamp, importance)
                VALUES (?, ?, 'browsing', ?, ?)
                """,
                (f"Visited: {title} ({url})\n{summary}", blob, timestamp, BROWSING_IMPORTANCE),
            )
            flushed = await self._flush_vocabulary(db)
            await db.commit()
        except Exception:
            await db.rollback()
            self.engine.space.mark_dirty(flushed)
            raise
        finally:
            await db.close()

        logger.info("Stored browsing memory: %s", url)
        return fact_id

    async def recent_browsing(self, limit: int = 30) -> list[BrowsingFact]:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_BROWSING_COLUMNS} FROM browsing_history "
                "ORDER BY timestamp DESC, id DESC LIMIT ?",
                (limit,),
            )
            rows = await cursor.fetchall()
            return [BrowsingFact.from_row(r) for r in rows]
        finally:
            await db.close()

    # -- Feedback --------------------------------------------------------------

    def give_feedback(self, turn_id: int, score: FeedbackScore) -> None:
        """Attach feedback to a turn in the background.

        Must be called from inside the running event loop.  An unknown
        *turn_id* is a no-op.
        """
        self._spawn(
            functools.partial(self._update_feedback, turn_id, FeedbackScore(score)),
            f"feedback for turn {turn_id}",
        )

    def give_positive_feedback(self, turn_id: int) -> None:
        self.give_feedback(turn_id, FeedbackScore.POSITIVE)

    def give_negative_feedback(self, turn_id: int) -> None:
        self.give_feedback(turn_id, FeedbackScore.NEGATIVE)

    async def _update_feedback(self, turn_id: int, score: FeedbackScore) -> None:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE conversations SET feedback_score = ? WHERE id = ?",
                (int(score), turn_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                logger.debug("Feedback for unknown turn %d ignored", turn_id)
        finally:
            await db.close()

    # -- Maintenance -----------------------------------------------------------

    async def prune_old_memories(self, max_age_ms: int) -> dict[str, int]:
        """Delete stale memory older than *max_age_ms*.

        Memory chunks go only when they are also low-importance and rarely
        accessed; conversation and browsing rows go on age alone.

        Returns:
            Number of deleted rows per table.
        """
        cutoff = now_ms() - max_age_ms
        db = await self._connect()
        try:
            chunks = await db.execute(
                "DELETE FROM memory_chunks "
                "WHERE importance < ? AND access_count < ? AND timestamp < ?",
                (PRUNE_IMPORTANCE_THRESHOLD, PRUNE_MIN_ACCESS_COUNT, cutoff),
            )
            turns = await db.execute("DELETE FROM conversations WHERE timestamp < ?", (cutoff,))
            pages = await db.execute(
                "DELETE FROM browsing_history WHERE timestamp < ?", (cutoff,)
            )
            await db.commit()
            deleted = {
                "memory_chunks": chunks.rowcount,
                "conversations": turns.rowcount,
                "browsing_history": pages.rowcount,
            }
        finally:
            await db.close()

        logger.info("Pruned memories older than %d ms: %s", max_age_ms, deleted)
        return deleted

    async def counts(self) -> dict[str, int]:
        """Row count per memory table."""
        tables = ("conversations", "memory_chunks", "learned_skills", "browsing_history")
        db = await self._connect()
        try:
            result: dict[str, int] = {}
            for table in tables:
                cursor = await db.execute(f"SELECT COUNT(*) FROM {table}")  # noqa: S608
                row = await cursor.fetchone()
                result[table] = row[0]
            return result
        finally:
            await db.close()
