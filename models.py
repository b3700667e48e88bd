"""Shared data models and configuration for agentic-memory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, get_args

from lancedb.pydantic import LanceModel, Vector

# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class Config:
    """Server configuration with sensible defaults."""

    db_path: Path = Path(
        os.environ.get("AGENTIC_MEMORY_DB_PATH", Path.home() / ".agentic-memory" / "lancedb")
    )
    memories_table: str = "memories"
    relations_table: str = "memory_relations"
    embedding_dim: int = int(os.environ.get("EMBEDDING_DIM", "1536"))
    default_limit: int = 5
    max_limit: int = 50
    default_threshold: float = 0.7
    fetch_factor: int = 3  # Over-fetch before threshold filtering
    default_list_limit: int = 50
    max_list_limit: int = 500
    default_graph_depth: int = 2
    max_graph_depth: int = 10
    index_min_rows: int = 256  # Below this, vector search is a flat scan


CONFIG = Config()

DEFAULT_PROJECT = "default"

RelationType = Literal[
    "parent-child",
    "related",
    "follows-from",
    "contradicts",
    "updates",
    "supports",
]
RELATION_TYPES: tuple[str, ...] = get_args(RelationType)
DEFAULT_RELATION_TYPE = "related"


# =============================================================================
# LanceDB Schemas
# =============================================================================


class Memory(LanceModel):
    """Memory table schema.

    IMPORTANT: Any changes to this schema require migration of existing data.
    `project` mirrors metadata["project"] and is rewritten on every write.
    """

    id: str  # UUID hex
    content: str
    vector: Vector(CONFIG.embedding_dim)  # type: ignore[valid-type]
    metadata: str | None = None  # JSON text
    project: str | None = None  # None = default project
    created_at: str
    updated_at: str


class MemoryRelation(LanceModel):
    """Directed edge: from_memory_id is the parent, to_memory_id the child."""

    id: str
    from_memory_id: str
    to_memory_id: str
    relation_type: str
    metadata: str | None = None  # JSON text
    created_at: str


# =============================================================================
# Session State
# =============================================================================


@dataclass(slots=True)
class Session:
    """Per-connection state threaded through every project-aware call."""

    project: str = DEFAULT_PROJECT

    @property
    def is_default(self) -> bool:
        return self.project == DEFAULT_PROJECT
