"""Data models for conversation history, semantic memory, and skills."""

from __future__ import annotations

import json
import time
from enum import IntEnum

import numpy as np
from numpy.typing import ArrayLike, NDArray
from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """Current UTC time in epoch milliseconds."""
    return int(time.time() * 1000)


def pack_embedding(vector: ArrayLike | None) -> bytes | None:
    """Serialize an embedding to a float32 BLOB."""
    if vector is None:
        return None
    return np.asarray(vector, dtype=np.float32).tobytes()


def unpack_embedding(blob: bytes | None) -> NDArray[np.float32] | None:
    """Deserialize a float32 BLOB produced by ``pack_embedding``."""
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32)


class FeedbackScore(IntEnum):
    UNSET = -1
    NEGATIVE = 0
    POSITIVE = 1


class ConversationTurn(BaseModel):
    """One user <-> agent exchange, possibly spanning several rounds."""

    id: int
    timestamp: int
    user_message: str
    agent_response: str
    tools_used: list[str] = Field(default_factory=list)
    was_successful: bool = True
    feedback_score: FeedbackScore = FeedbackScore.UNSET

    @classmethod
    def from_row(cls, row: tuple) -> ConversationTurn:
        return cls(
            id=row[0],
            timestamp=row[1],
            user_message=row[2],
            agent_response=row[3],
            tools_used=json.loads(row[4]) if row[4] else [],
            was_successful=bool(row[5]),
            feedback_score=FeedbackScore(row[6]),
        )


class MemoryChunk(BaseModel):
    """A retrievable unit of semantic memory."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: int
    content: str
    embedding: np.ndarray | None = None
    source: str = "conversation"
    timestamp: int = 0
    access_count: int = 0
    importance: float = 0.5  # 0.0-1.0, higher survives pruning

    @classmethod
    def from_row(cls, row: tuple) -> MemoryChunk:
        return cls(
            id=row[0],
            content=row[1],
            embedding=unpack_embedding(row[2]),
            source=row[3],
            timestamp=row[4],
            access_count=row[5],
            importance=row[6],
        )


class LearnedSkill(BaseModel):
    """A named lesson surfaced back into future prompts."""

    id: int
    name: str
    description: str
    how_to_use: str
    success_count: int = 0
    fail_count: int = 0
    last_updated: int = 0

    @property
    def success_rate(self) -> float:
        return self.success_count / max(self.success_count + self.fail_count, 1)

    @classmethod
    def from_row(cls, row: tuple) -> LearnedSkill:
        return cls(
            id=row[0],
            name=row[1],
            description=row[2],
            how_to_use=row[3],
            success_count=row[4],
            fail_count=row[5],
            last_updated=row[6],
        )


class BrowsingFact(BaseModel):
    """A visited web page kept for URL-scoped lookups."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: int
    url: str
    title: str
    summary: str
    timestamp: int = 0
    embedding: np.ndarray | None = None

    @classmethod
    def from_row(cls, row: tuple) -> BrowsingFact:
        return cls(
            id=row[0],
            url=row[1],
            title=row[2],
            summary=row[3],
            timestamp=row[4],
            embedding=unpack_embedding(row[5]),
        )
