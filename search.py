"""Similarity search over one project partition."""

from __future__ import annotations

import math
from typing import Any

from embedding import cosine_similarity, get_embedding
from errors import ValidationError
from memory_store import get_memories_table, memory_to_dict, project_filter
from models import CONFIG, Session


def rank_candidates(
    candidates: list[dict[str, Any]],
    query_embedding: list[float],
    limit: int,
    threshold: float,
) -> list[dict[str, Any]]:
    """Score rows by cosine similarity, keep those above threshold, best first.

    Rows with a zero-norm vector have no defined similarity and never qualify.
    """
    scored = []
    for row in candidates:
        similarity = cosine_similarity(row["vector"], query_embedding)
        if math.isfinite(similarity) and similarity > threshold:
            scored.append((similarity, row))
    scored.sort(key=lambda item: (-item[0], item[1]["id"]))
    return [{**row, "similarity": similarity} for similarity, row in scored[:limit]]


async def search_memories(
    session: Session,
    query: str,
    limit: int = CONFIG.default_limit,
    threshold: float = CONFIG.default_threshold,
) -> list[dict[str, Any]]:
    """Memories in the session's project whose similarity to `query` exceeds `threshold`."""
    if not isinstance(query, str) or not query.strip():
        raise ValidationError("Query is required and must be a string")
    if limit <= 0:
        raise ValidationError(f"limit must be positive, got {limit}")
    if limit > CONFIG.max_limit:
        raise ValidationError(f"limit cannot exceed {CONFIG.max_limit}, got {limit}")

    embedding = await get_embedding(query)
    if not any(embedding):
        # A query with no tokens has no direction to compare against
        return []

    table = get_memories_table()
    where = project_filter(None if session.is_default else session.project)
    fetch_limit = limit * CONFIG.fetch_factor
    candidates = (
        table.search(embedding)
        .distance_type("cosine")
        .where(where, prefilter=True)
        .limit(fetch_limit)
        .to_list()
    )
    results = rank_candidates(candidates, embedding, limit, threshold)
    return [
        {**memory_to_dict(row), "similarity": row["similarity"]}
        for row in results
    ]
