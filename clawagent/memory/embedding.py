"""On-device text embedding with an incremental TF-IDF vocabulary.

No network calls and no pretrained model.  Every text that is embedded
grows a shared, append-only vocabulary: an unseen word gets the next free
vector index and keeps it forever.  Vectors computed against a smaller
vocabulary are therefore a prefix of the current space and stay
comparable once zero-padded (see ``cosine_similarity``).

The vocabulary lives in an explicit ``EmbeddingSpace`` owned by a single
``EmbeddingEngine``.  The memory store persists it next to the chunks so
that a restart does not reset index assignment.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import ArrayLike, NDArray

_NON_ALNUM = re.compile(r"[^a-z0-9 ]")
_NEAR_ZERO = 1e-10

STOP_WORDS: frozenset[str] = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all",
    "can", "her", "was", "one", "our", "out", "day", "get",
    "has", "him", "his", "how", "man", "new", "now", "old",
    "see", "two", "way", "who", "boy", "did", "its", "let",
    "put", "say", "she", "too", "use", "that", "this", "with",
    "have", "from", "they", "will", "been", "than", "more",
    "also", "into", "some", "just", "then", "when", "what",
    "your", "does", "each", "about", "which", "their", "there",
})


def tokenize(text: str) -> list[str]:
    """Lowercase alphanumeric words of 3+ characters, minus stop words."""
    cleaned = _NON_ALNUM.sub(" ", text.lower())
    return [t for t in cleaned.split() if len(t) > 2 and t not in STOP_WORDS]


@dataclass
class EmbeddingSpace:
    """Vocabulary state shared by every embedding an engine produces.

    Attributes:
        vocab: word -> vector index (append-only).
        doc_freq: word -> number of embedded texts containing it.
        doc_count: total number of texts embedded so far.
    """

    vocab: dict[str, int] = field(default_factory=dict)
    doc_freq: dict[str, int] = field(default_factory=dict)
    doc_count: int = 0
    _dirty: set[str] = field(default_factory=set, repr=False)
    _count_dirty: bool = field(default=False, repr=False)

    @property
    def size(self) -> int:
        return len(self.vocab)

    @property
    def has_changes(self) -> bool:
        return bool(self._dirty) or self._count_dirty

    def observe(self, tokens: list[str]) -> None:
        """Register one document's tokens in the vocabulary."""
        self.doc_count += 1
        self._count_dirty = True
        for word in dict.fromkeys(tokens):
            if word not in self.vocab:
                self.vocab[word] = len(self.vocab)
            self.doc_freq[word] = self.doc_freq.get(word, 0) + 1
            self._dirty.add(word)

    def idf(self, word: str) -> float:
        df = self.doc_freq.get(word, 1)
        return math.log((self.doc_count + 1) / (df + 1)) + 1.0

    def drain_changes(self) -> tuple[list[tuple[str, int, int]], int]:
        """Return ``(word, idx, doc_freq)`` rows changed since the last drain.

        Also returns the current document count.  The dirty set is cleared,
        so callers must persist the rows they receive.
        """
        rows = [(w, self.vocab[w], self.doc_freq.get(w, 0)) for w in sorted(self._dirty)]
        self._dirty.clear()
        self._count_dirty = False
        return rows, self.doc_count

    def mark_dirty(self, rows: list[tuple[str, int, int]]) -> None:
        """Put drained rows back after a failed flush."""
        self._dirty.update(word for word, _, _ in rows)
        self._count_dirty = True

    @classmethod
    def from_rows(cls, rows: list[tuple[str, int, int]], doc_count: int) -> EmbeddingSpace:
        """Rebuild a persisted space from ``(word, idx, doc_freq)`` rows."""
        space = cls(doc_count=doc_count)
        for word, idx, df in rows:
            space.vocab[word] = idx
            space.doc_freq[word] = df
        return space


class EmbeddingEngine:
    """Turns text into L2-normalised TF-IDF vectors and compares them."""

    def __init__(self, space: EmbeddingSpace | None = None) -> None:
        self.space = space or EmbeddingSpace()

    def embed(self, text: str) -> NDArray[np.float32]:
        """Embed *text* over the current vocabulary.

        Mutates the shared space: new words are appended and document
        frequencies (and hence IDF weights) change.  Empty or stop-word-only
        text yields an all-zero vector.
        """
        tokens = tokenize(text)
        self.space.observe(tokens)

        vector = np.zeros(self.space.size, dtype=np.float32)
        if tokens:
            total = len(tokens)
            for word, count in Counter(tokens).items():
                vector[self.space.vocab[word]] = (count / total) * self.space.idf(word)

        return _l2_normalize(vector)

    @staticmethod
    def cosine_similarity(a: ArrayLike, b: ArrayLike) -> float:
        """Cosine similarity in [-1, 1].

        The shorter vector is zero-padded, since the vocabulary may have
        grown between the two embeds.  Returns 0.0 when either vector has
        (numerically) zero norm, including zero vs. zero.
        """
        va = np.asarray(a, dtype=np.float32)
        vb = np.asarray(b, dtype=np.float32)
        if va.size < vb.size:
            va = np.pad(va, (0, vb.size - va.size))
        elif vb.size < va.size:
            vb = np.pad(vb, (0, va.size - vb.size))

        denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
        if denom < _NEAR_ZERO:
            return 0.0
        return float(np.dot(va, vb)) / denom


def _l2_normalize(vector: NDArray[np.float32]) -> NDArray[np.float32]:
    norm = float(np.linalg.norm(vector))
    if norm < _NEAR_ZERO:
        return vector
    return (vector / norm).astype(np.float32)
