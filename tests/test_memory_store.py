"""Tests for MemoryStore — conversations, recall, skills, browsing, pruning."""

from pathlib import Path
from unittest.mock import patch

import aiosqlite
import pytest

from clawagent.memory.models import FeedbackScore, now_ms, pack_embedding
from clawagent.memory.store import (
    BROWSING_SUMMARY_CHARS,
    FAILURE_IMPORTANCE,
    SUCCESS_IMPORTANCE,
    MemoryStore,
)

DAY_MS = 24 * 60 * 60 * 1000


async def _insert_chunk(
    path: Path,
    content: str,
    importance: float,
    timestamp: int,
    access_count: int = 0,
) -> None:
    async with aiosqlite.connect(str(path)) as db:
        await db.execute(
            "INSERT INTO memory_chunks (content, embedding, source, timestamp, access_count, importance) "
            "VALUES (?, ?, 'manual', ?, ?, ?)",
            (content, pack_embedding([1.0]), timestamp, access_count, importance),
        )
        await db.commit()


async def _chunk_rows(path: Path) -> list[tuple]:
    async with aiosqlite.connect(str(path)) as db:
        cursor = await db.execute(
            "SELECT content, source, importance, access_count FROM memory_chunks ORDER BY id"
        )
        return await cursor.fetchall()


# -- Conversations ----------------------------------------------------------


class TestRemember:
    async def test_stores_turn(self, store: MemoryStore):
        turn_id = await store.remember("open camera", "Camera opened", ["launch_app"], True)

        turn = await store.get_turn(turn_id)
        assert turn is not None
        assert turn.user_message == "open camera"
        assert turn.agent_response == "Camera opened"
        assert turn.tools_used == ["launch_app"]
        assert turn.was_successful is True
        assert turn.feedback_score == FeedbackScore.UNSET

    async def test_creates_linked_chunk(self, store: MemoryStore, tmp_path: Path):
        turn_id = await store.remember("open camera", "Camera opened", [], True)

        rows = await _chunk_rows(tmp_path / "memory.db")
        assert len(rows) == 1
        content, source, importance, _ = rows[0]
        assert content == "User asked: open camera\nAgent answered: Camera opened"
        assert source == f"conversation:{turn_id}"
        assert importance == pytest.approx(SUCCESS_IMPORTANCE)

    async def test_failed_turn_has_lower_importance(self, store: MemoryStore, tmp_path: Path):
        await store.remember("send text", "Error: no signal", ["send_sms"], False)

        rows = await _chunk_rows(tmp_path / "memory.db")
        assert rows[0][2] == pytest.approx(FAILURE_IMPORTANCE)

    async def test_recent_failed_turns(self, store: MemoryStore):
        await store.remember("a", "ok", [], True)
        first = await store.remember("b", "bad", ["tap"], False)
        second = await store.remember("c", "bad", ["swipe"], False)

        failed = await store.recent_failed_turns()
        assert [t.id for t in failed] == [second, first]

    async def test_get_turn_missing(self, store: MemoryStore):
        assert await store.get_turn(999) is None


# -- Recall ------------------------------------------------------------------


class TestRecall:
    async def test_round_trip(self, store: MemoryStore):
        turn_id = await store.remember(
            "turn on bluetooth", "Bluetooth enabled", ["toggle_bluetooth"], True
        )
        await store.remember("what is the weather", "Sunny and warm", [], True)

        results = await store.recall("bluetooth", limit=1)
        assert len(results) == 1
        assert results[0].source == f"conversation:{turn_id}"

    async def test_recall_by_user_message(self, store: MemoryStore):
        await store.remember("set an alarm for seven", "Alarm set", ["set_alarm"], True)
        turn_id = await store.remember("send a text to mom", "Text sent", ["send_sms"], True)

        results = await store.recall("send a text to mom", 1)
        assert results[0].source == f"conversation:{turn_id}"

    async def test_respects_limit_and_skips_null_embeddings(
        self, store: MemoryStore, tmp_path: Path
    ):
        for i in range(4):
            await store.remember(f"task number {i}", "done", [], True)
        async with aiosqlite.connect(str(tmp_path / "memory.db")) as db:
            await db.execute(
                "INSERT INTO memory_chunks (content, embedding, source, timestamp) "
                "VALUES ('no vector', NULL, 'manual', 0)"
            )
            await db.commit()

        results = await store.recall("task", limit=3)
        assert len(results) == 3
        assert all(c.embedding is not None for c in results)

    async def test_non_positive_limit(self, store: MemoryStore):
        await store.remember("anything", "something", [], True)
        assert await store.recall("anything", limit=0) == []

    async def test_empty_store(self, store: MemoryStore):
        assert await store.recall("anything") == []

    async def test_bumps_access_count(self, store: MemoryStore):
        await store.remember("open camera", "Camera opened", [], True)

        await store.recall("camera")
        await store.drain()
        results = await store.recall("camera")
        assert results[0].access_count == 1

    async def test_relevant_context_empty_store(self, store: MemoryStore):
        assert await store.get_relevant_context("anything") == ""

    async def test_relevant_context_includes_memories_and_skills(self, store: MemoryStore):
        await store.remember("open camera", "Camera opened", [], True)
        await store.learn_skill("open-camera", "Launch camera", "Use launch_app")

        context = await store.get_relevant_context("camera")
        assert "=== Relevant past experiences ===" in context
        assert "=== Learned skills ===" in context
        assert "open-camera" in context


# -- Vocabulary persistence --------------------------------------------------


async def test_vocabulary_survives_reopen(tmp_path: Path):
    path = tmp_path / "memory.db"
    first = MemoryStore(db_path=path)
    await first.remember("open camera", "Camera opened", [], True)
    await first.recall("gallery photos")
    await first.drain()

    second = MemoryStore(db_path=path)
    await second.open()
    assert second.engine.space.vocab == first.engine.space.vocab
    assert second.engine.space.doc_count == first.engine.space.doc_count

    results = await second.recall("camera", limit=1)
    assert "camera" in results[0].content.lower()
    await second.drain()


async def test_remember_before_open_keeps_persisted_indexes(tmp_path: Path):
    path = tmp_path / "memory.db"
    first = MemoryStore(db_path=path)
    await first.remember("open camera", "Camera opened", [], True)
    await first.drain()

    second = MemoryStore(db_path=path)
    await second.remember("enable bluetooth", "Bluetooth enabled", [], True)
    await second.drain()

    for word, idx in first.engine.space.vocab.items():
        assert second.engine.space.vocab[word] == idx
    results = await second.recall("camera", limit=1)
    assert "camera" in results[0].content.lower()
    await second.drain()


async def test_recall_before_open_uses_persisted_vocabulary(tmp_path: Path):
    path = tmp_path / "memory.db"
    first = MemoryStore(db_path=path)
    await first.remember("open camera", "Camera opened", [], True)
    await first.drain()

    second = MemoryStore(db_path=path)
    results = await second.recall("camera", limit=1)
    await second.drain()

    assert "camera" in results[0].content.lower()
    assert second.engine.space.vocab["camera"] == first.engine.space.vocab["camera"]


async def test_browsing_before_open_keeps_persisted_indexes(tmp_path: Path):
    path = tmp_path / "memory.db"
    first = MemoryStore(db_path=path)
    await first.remember("open camera", "Camera opened", [], True)
    await first.drain()

    second = MemoryStore(db_path=path)
    await second.store_browsing_memory("https://example.com", "Camera reviews", "Lens tests")

    assert second.engine.space.vocab["camera"] == first.engine.space.vocab["camera"]


async def test_vocabulary_flush_never_lowers_stored_counts(store: MemoryStore, tmp_path: Path):
    await store.remember("open camera", "Camera opened", [], True)
    async with aiosqlite.connect(tmp_path / "memory.db") as db:
        await db.execute("UPDATE embedding_vocab SET doc_freq = 5 WHERE word = 'camera'")
        await db.execute("UPDATE embedding_meta SET value = 10 WHERE key = 'doc_count'")
        await db.commit()

    await store.recall("camera")
    await store.drain()

    async with aiosqlite.connect(tmp_path / "memory.db") as db:
        cursor = await db.execute("SELECT doc_freq FROM embedding_vocab WHERE word = 'camera'")
        assert (await cursor.fetchone())[0] == 5
        cursor = await db.execute("SELECT value FROM embedding_meta WHERE key = 'doc_count'")
        assert (await cursor.fetchone())[0] == 10


# -- Skills ------------------------------------------------------------------


class TestSkills:
    async def test_learn_and_get(self, store: MemoryStore):
        await store.learn_skill("open-wifi", "Open wifi settings", "Use settings app")

        skill = await store.get_skill("open-wifi")
        assert skill is not None
        assert skill.description == "Open wifi settings"
        assert skill.success_count == 0
        assert skill.fail_count == 0

    async def test_upsert_updates_text_and_keeps_counts(self, store: MemoryStore):
        await store.learn_skill("open-wifi", "v1", "step 1")
        await store.record_skill_outcome("open-wifi", True)
        before = await store.get_skill("open-wifi")

        await store.learn_skill("open-wifi", "v2", "step 2")
        after = await store.get_skill("open-wifi")

        assert after.id == before.id
        assert after.description == "v2"
        assert after.how_to_use == "step 2"
        assert after.success_count == 1
        assert after.last_updated > before.last_updated
        assert len(await store.list_skills()) == 1

    async def test_record_outcome(self, store: MemoryStore):
        await store.learn_skill("lesson:tap", "d", "h")

        assert await store.record_skill_outcome("lesson:tap", True) is True
        assert await store.record_skill_outcome("lesson:tap", False) is True
        assert await store.record_skill_outcome("lesson:tap", False) is True

        skill = await store.get_skill("lesson:tap")
        assert (skill.success_count, skill.fail_count) == (1, 2)
        assert skill.success_rate == pytest.approx(1 / 3)

    async def test_record_outcome_unknown_skill(self, store: MemoryStore):
        assert await store.record_skill_outcome("missing", True) is False

    async def test_record_outcomes_in_background(self, store: MemoryStore):
        await store.learn_skill("lesson:tap", "d", "h")
        await store.learn_skill("lesson:swipe", "d", "h")

        store.record_skill_outcomes(["lesson:tap", "lesson:swipe", "lesson:none"], False)
        await store.drain()

        assert (await store.get_skill("lesson:tap")).fail_count == 1
        assert (await store.get_skill("lesson:swipe")).fail_count == 1

    async def test_list_orders_by_success_count(self, store: MemoryStore):
        for name in ("a", "b", "c"):
            await store.learn_skill(name, "d", "h")
        await store.record_skill_outcome("b", True)
        await store.record_skill_outcome("b", True)
        await store.record_skill_outcome("c", True)

        skills = await store.list_skills()
        assert [s.name for s in skills] == ["b", "c", "a"]
        assert [s.name for s in await store.list_skills(limit=2)] == ["b", "c"]


# -- Browsing ----------------------------------------------------------------


class TestBrowsing:
    async def test_truncates_summary_and_mirrors_chunk(self, store: MemoryStore, tmp_path: Path):
        content = "x" * 1200
        await store.store_browsing_memory("https://example.com", "Example", content)

        pages = await store.recent_browsing()
        assert len(pages) == 1
        assert pages[0].summary == "x" * BROWSING_SUMMARY_CHARS
        assert pages[0].embedding is not None

        rows = await _chunk_rows(tmp_path / "memory.db")
        assert len(rows) == 1
        chunk_content, source, importance, _ = rows[0]
        assert chunk_content == f"Visited: Example (https://example.com)\n{'x' * 500}"
        assert source == "browsing"
        assert importance == pytest.approx(0.5)

    async def test_browsing_is_recallable(self, store: MemoryStore):
        await store.store_browsing_memory(
            "https://example.com/ev", "Electric vehicles", "Charging stations and batteries"
        )
        results = await store.recall("charging stations", limit=1)
        assert results[0].source == "browsing"


# -- Feedback ----------------------------------------------------------------


class TestFeedback:
    async def test_positive_and_negative(self, store: MemoryStore):
        good = await store.remember("a", "b", [], True)
        bad = await store.remember("c", "d", [], True)

        store.give_positive_feedback(good)
        store.give_negative_feedback(bad)
        await store.drain()

        assert (await store.get_turn(good)).feedback_score == FeedbackScore.POSITIVE
        assert (await store.get_turn(bad)).feedback_score == FeedbackScore.NEGATIVE

    async def test_unknown_turn_is_noop(self, store: MemoryStore):
        turn_id = await store.remember("a", "b", [], True)

        store.give_feedback(turn_id + 100, FeedbackScore.POSITIVE)
        await store.drain()

        assert (await store.get_turn(turn_id)).feedback_score == FeedbackScore.UNSET


# -- Pruning -----------------------------------------------------------------


class TestPrune:
    async def test_only_stale_unimportant_chunks_go(self, store: MemoryStore, tmp_path: Path):
        path = tmp_path / "memory.db"
        old = now_ms() - 60 * DAY_MS
        await _insert_chunk(path, "stale", 0.2, old)
        await _insert_chunk(path, "important", 0.3, old)
        await _insert_chunk(path, "popular", 0.1, old, access_count=2)
        await _insert_chunk(path, "recent", 0.1, now_ms())

        deleted = await store.prune_old_memories(30 * DAY_MS)

        assert deleted["memory_chunks"] == 1
        remaining = [row[0] for row in await _chunk_rows(path)]
        assert remaining == ["important", "popular", "recent"]

    async def test_turns_and_pages_go_by_age(self, store: MemoryStore):
        old = now_ms() - 60 * DAY_MS
        with patch("clawagent.memory.store.now_ms", return_value=old):
            await store.remember("old question", "old answer", [], True)
            await store.store_browsing_memory("https://old.example", "Old", "old page")
        kept = await store.remember("new question", "new answer", [], True)

        deleted = await store.prune_old_memories(30 * DAY_MS)

        assert deleted["conversations"] == 1
        assert deleted["browsing_history"] == 1
        assert [t.id for t in await store.recent_turns()] == [kept]
        assert await store.recent_browsing() == []
        # Their chunks are important enough to survive
        counts = await store.counts()
        assert counts["memory_chunks"] == 3

    async def test_counts(self, store: MemoryStore):
        await store.remember("a", "b", [], True)
        await store.learn_skill("s", "d", "h")

        counts = await store.counts()
        assert counts == {
            "conversations": 1,
            "memory_chunks": 1,
            "learned_skills": 1,
            "browsing_history": 0,
        }
