"""Async SQLite connections and schema for the agent's memory database.

Every caller opens its own short-lived connection via ``get_connection()``
and closes it when done.  WAL journaling lets the orchestrator and the
self-improvement loop read and write concurrently without blocking each
other for long.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite

if TYPE_CHECKING:
    from pathlib import Path

SCHEMA: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp INTEGER NOT NULL,
        user_message TEXT NOT NULL,
        agent_response TEXT NOT NULL,
        tools_used TEXT NOT NULL DEFAULT '[]',
        was_successful INTEGER NOT NULL DEFAULT 1,
        feedback_score INTEGER NOT NULL DEFAULT -1
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_conversations_ts ON conversations (timestamp)",
    """
    CREATE TABLE IF NOT EXISTS memory_chunks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        content TEXT NOT NULL,
        embedding BLOB,
        source TEXT NOT NULL DEFAULT 'conversation',
        timestamp INTEGER NOT NULL,
        access_count INTEGER NOT NULL DEFAULT 0,
        importance REAL NOT NULL DEFAULT 0.5
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS learned_skills (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        description TEXT NOT NULL,
        how_to_use TEXT NOT NULL,
        success_count INTEGER NOT NULL DEFAULT 0,
        fail_count INTEGER NOT NULL DEFAULT 0,
        last_updated INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS browsing_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        url TEXT NOT NULL,
        title TEXT NOT NULL,
        summary TEXT NOT NULL,
        timestamp INTEGER NOT NULL,
        embedding BLOB
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS embedding_vocab (
        word TEXT PRIMARY KEY,
        idx INTEGER NOT NULL UNIQUE,
        doc_freq INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS embedding_meta (
        key TEXT PRIMARY KEY,
        value INTEGER NOT NULL
    )
    """,
)


async def get_connection(path: Path) -> aiosqlite.Connection:
    """Open an aiosqlite connection with WAL mode and a busy timeout.

    Parent directories are created on demand so a fresh install (or a
    ``tmp_path`` in tests) works without setup.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(path))
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA busy_timeout=5000")
    return db


async def init_schema(db: aiosqlite.Connection) -> None:
    """Create all tables and indexes if they do not exist yet."""
    for statement in SCHEMA:
        await db.execute(statement)
    await db.commit()
