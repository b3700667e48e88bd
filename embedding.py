"""
Deterministic text embeddings and cosine similarity.

Every consumer goes through get_embedding(); the active Embedder can be
swapped with set_embedder() for a real model without touching callers.
The default SimpleEmbedder needs no model or network and is bit-for-bit
reproducible, so stored vectors and test fixtures stay stable.
"""

from __future__ import annotations

import re
import sys
from functools import lru_cache
from typing import Protocol, Sequence

import numpy as np

from errors import DimensionMismatchError
from models import CONFIG

WORD_VECTOR_SIZE = 8

# Hand-picked 8-dim vectors for a few common concepts
CONCEPT_VECTORS: dict[str, tuple[float, ...]] = {
    # Locations
    "shanghai": (0.8, 0.1, 0.2, 0.9, 0.3, 0.7, 0.1, 0.5),
    "china": (0.7, 0.2, 0.3, 0.8, 0.4, 0.6, 0.2, 0.4),
    "city": (0.6, 0.3, 0.4, 0.7, 0.5, 0.5, 0.3, 0.3),
    "location": (0.5, 0.4, 0.5, 0.6, 0.6, 0.4, 0.4, 0.2),
    "live": (0.4, 0.5, 0.6, 0.5, 0.7, 0.3, 0.5, 0.1),
    "based": (0.3, 0.6, 0.7, 0.4, 0.8, 0.2, 0.6, 0.2),
    # Pets
    "dog": (0.2, 0.8, 0.1, 0.3, 0.2, 0.9, 0.1, 0.6),
    "milo": (0.1, 0.9, 0.2, 0.2, 0.1, 0.8, 0.2, 0.7),
    "mila": (0.2, 0.7, 0.3, 0.1, 0.2, 0.9, 0.1, 0.8),
    "pet": (0.3, 0.6, 0.4, 0.2, 0.3, 0.8, 0.2, 0.5),
    "animal": (0.4, 0.5, 0.5, 0.3, 0.4, 0.7, 0.3, 0.4),
    # Person
    "tristan": (0.9, 0.2, 0.8, 0.1, 0.9, 0.1, 0.7, 0.3),
    "user": (0.8, 0.3, 0.7, 0.2, 0.8, 0.2, 0.6, 0.4),
    "name": (0.7, 0.4, 0.6, 0.3, 0.7, 0.3, 0.5, 0.5),
    "person": (0.6, 0.5, 0.5, 0.4, 0.6, 0.4, 0.4, 0.6),
}

_PUNCTUATION_RE = re.compile(r"[^\w\s]", re.ASCII)


class Embedder(Protocol):
    """Anything that turns text into a fixed-length vector."""

    name: str
    dimension: int

    def embed(self, text: str) -> list[float]: ...


# =============================================================================
# Simple (hash-based) embedder
# =============================================================================


def simple_hash(text: str) -> int:
    """32-bit rolling hash (h * 31 + unit) over UTF-16 code units, absolute value."""
    h = 0
    data = text.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        h = (h * 31 + int.from_bytes(data[i : i + 2], "little")) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return abs(h)


def tokenize(text: str) -> list[str]:
    """Lowercase, turn punctuation into spaces, split on whitespace."""
    return _PUNCTUATION_RE.sub(" ", text.lower()).split()


def word_vector(word: str) -> tuple[float, ...]:
    """Concept vector if known, else a deterministic vector from the word hash."""
    word = word.lower()
    known = CONCEPT_VECTORS.get(word)
    if known is not None:
        return known
    h = simple_hash(word)
    return tuple(((h + i * 31) % 1000) / 500 - 1 for i in range(WORD_VECTOR_SIZE))


class SimpleEmbedder:
    """Averaged word vectors in the first 8 slots, small text-hash noise in the rest."""

    name = "simple-hash"

    def __init__(self, dimension: int | None = None):
        self.dimension = dimension or CONFIG.embedding_dim

    def embed(self, text: str) -> list[float]:
        words = tokenize(text)
        if not words:
            return [0.0] * self.dimension

        avg = [0.0] * WORD_VECTOR_SIZE
        for vec in map(word_vector, words):
            for i in range(WORD_VECTOR_SIZE):
                avg[i] += vec[i]
        for i in range(WORD_VECTOR_SIZE):
            avg[i] /= len(words)

        head = min(WORD_VECTOR_SIZE, self.dimension)
        full = avg[:head]
        text_hash = simple_hash(text)
        for i in range(head, self.dimension):
            seed = (text_hash + i) % 1000
            full.append(((seed / 1000) - 0.5) * 0.1)
        return full


# =============================================================================
# Active embedder + cache
# =============================================================================

_embedder: Embedder = SimpleEmbedder()


def get_embedder() -> Embedder:
    return _embedder


def set_embedder(embedder: Embedder) -> None:
    """Swap the active embedder. Its dimension must match the stored vectors."""
    global _embedder
    if embedder.dimension != CONFIG.embedding_dim:
        raise DimensionMismatchError(
            f"Embedder dimension {embedder.dimension} does not match "
            f"configured dimension {CONFIG.embedding_dim}"
        )
    _embedder = embedder
    _compute_embedding_cached.cache_clear()
    print(
        f"[agentic-memory] Embedder set to {embedder.name} ({embedder.dimension}D)",
        file=sys.stderr,
    )


def reset_embedder() -> None:
    """Restore the default SimpleEmbedder (reads the current CONFIG.embedding_dim)."""
    global _embedder
    _embedder = SimpleEmbedder()
    _compute_embedding_cached.cache_clear()


@lru_cache(maxsize=128)
def _compute_embedding_cached(text: str) -> tuple[float, ...]:
    return tuple(_embedder.embed(text))


def embed(text: str) -> list[float]:
    """Embed text with the active embedder (cached)."""
    return list(_compute_embedding_cached(text))


async def get_embedding(text: str) -> list[float]:
    """Generate embedding for a tool call."""
    return embed(text)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|). NaN when either vector has zero norm."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatchError(
            f"Vectors must have the same length ({va.size} != {vb.size})"
        )
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return float("nan")
    return float(np.dot(va, vb) / norm)


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    return 1.0 - cosine_similarity(a, b)
