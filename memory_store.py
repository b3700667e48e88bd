"""
LanceDB access layer: connection singletons, table setup and memory CRUD.

Rows are returned as plain dicts (LanceDB's to_list() shape); callers turn
them into tool results with memory_to_dict().
"""

from __future__ import annotations

import re
import sys
import threading
import uuid
from typing import Any

import lancedb

from embedding import get_embedding
from errors import NotFoundError, ValidationError
from models import CONFIG, Memory, MemoryRelation, Session
from utils import (
    coerce_metadata,
    dump_metadata,
    escape_filter_value,
    in_filter,
    json_contains,
    load_metadata,
    next_timestamp,
    now_iso,
    project_of,
    with_project,
)

ID_LENGTH = 32
ID_PREFIX_MATCH_LIMIT = 100
ID_RE = re.compile(r"^[0-9a-f]+$")
SORT_COLUMNS = {"createdAt": "created_at", "content": "content"}

# =============================================================================
# Database Layer (LanceDB)
# =============================================================================

_lock = threading.RLock()  # RLock allows reentrant calls (get_*_table -> get_db)
_db: lancedb.DBConnection | None = None
_memories: lancedb.table.Table | None = None
_relations: lancedb.table.Table | None = None


def get_db() -> lancedb.DBConnection:
    """Get or create LanceDB connection (thread-safe)."""
    global _db
    if _db is None:
        with _lock:
            if _db is None:
                CONFIG.db_path.parent.mkdir(parents=True, exist_ok=True)
                _db = lancedb.connect(str(CONFIG.db_path))
    return _db


def _open_or_create(name: str, schema: type) -> lancedb.table.Table:
    db = get_db()
    try:
        return db.open_table(name)
    except Exception:
        try:
            listed = db.list_tables()
            table_names = getattr(listed, "tables", listed)
        except AttributeError:
            table_names = db.table_names()
        except Exception:
            table_names = []
        if name in table_names:
            raise
        return db.create_table(name, schema=schema)


def get_memories_table() -> lancedb.table.Table:
    """Get or create the memories table (thread-safe)."""
    global _memories
    if _memories is None:
        with _lock:
            if _memories is None:
                _memories = _open_or_create(CONFIG.memories_table, Memory)
    return _memories


def get_relations_table() -> lancedb.table.Table:
    """Get or create the relations table (thread-safe)."""
    global _relations
    if _relations is None:
        with _lock:
            if _relations is None:
                _relations = _open_or_create(CONFIG.relations_table, MemoryRelation)
    return _relations


def reset_connection() -> None:
    """Drop cached handles so the next call reconnects (used after db_path changes)."""
    global _db, _memories, _relations
    with _lock:
        _db = None
        _memories = None
        _relations = None


def has_vector_index(table: lancedb.table.Table) -> bool:
    try:
        return any("ivf" in str(idx).lower() for idx in table.list_indices())
    except Exception:
        return False


def ensure_indexes() -> None:
    """Create scalar indexes on id columns and, once large enough, an IVF-PQ vector index."""
    memories = get_memories_table()
    relations = get_relations_table()

    for table, column in (
        (memories, "id"),
        (relations, "from_memory_id"),
        (relations, "to_memory_id"),
    ):
        try:
            table.create_scalar_index(column, replace=True)
        except Exception as e:
            print(f"[agentic-memory] Scalar index warning ({column}): {e}", file=sys.stderr)

    try:
        if has_vector_index(memories):
            print("[agentic-memory] Vector index already exists", file=sys.stderr)
            return
        row_count = memories.count_rows()
        if row_count < CONFIG.index_min_rows or CONFIG.embedding_dim % 16:
            return
        memories.create_index(
            metric="cosine",
            num_partitions=max(4, int(row_count**0.5)),
            num_sub_vectors=CONFIG.embedding_dim // 16,
            index_type="IVF_PQ",
            replace=True,
        )
        print("[agentic-memory] IVF-PQ index created", file=sys.stderr)
    except Exception as e:
        print(f"[agentic-memory] Vector index warning: {e}", file=sys.stderr)


async def init_database() -> None:
    """Open (or create) both tables and their indexes."""
    get_memories_table()
    get_relations_table()
    ensure_indexes()
    print(f"[agentic-memory] Database ready at {CONFIG.db_path}", file=sys.stderr)


def scan(table: lancedb.table.Table, where: str | None = None) -> list[dict[str, Any]]:
    """All rows matching `where` (no vector ranking)."""
    total = table.count_rows(where) if where else table.count_rows()
    if total == 0:
        return []
    query = table.search()
    if where:
        query = query.where(where)
    return query.limit(total).to_list()


def read_columns(table: lancedb.table.Table, columns: list[str]) -> dict[str, list[Any]]:
    """Selected columns of every row, via Arrow (vectors are never loaded)."""
    total = table.count_rows()
    if total == 0:
        return {column: [] for column in columns}
    return table.search().select(columns).limit(total).to_arrow().to_pydict()


def project_filter(project: str | None) -> str:
    """WHERE clause selecting one project partition (None = default)."""
    if project is None:
        return "project IS NULL"
    return f"project = '{escape_filter_value(project)}'"


def memory_to_dict(row: dict[str, Any], include_content: bool = True) -> dict[str, Any]:
    """Public shape of a memory row (no vector)."""
    result = {"id": row["id"]}
    if include_content:
        result["content"] = row["content"]
    result["metadata"] = load_metadata(row.get("metadata"))
    result["createdAt"] = row["created_at"]
    result["updatedAt"] = row["updated_at"]
    return result


# =============================================================================
# Memory CRUD
# =============================================================================


def find_memory(memory_id: str) -> dict[str, Any]:
    """Find a memory by full or partial UUID, with ambiguity detection."""
    if not isinstance(memory_id, str) or not memory_id:
        raise ValidationError("Memory ID is required and must be a string")
    # Ids are uuid hex, so `%` and `_` never reach the LIKE below
    if not ID_RE.match(memory_id):
        raise NotFoundError(f"Memory with ID {memory_id} not found")
    table = get_memories_table()
    safe_id = escape_filter_value(memory_id)
    if len(memory_id) < ID_LENGTH:
        results = (
            table.search()
            .where(f"id LIKE '{safe_id}%'")
            .limit(ID_PREFIX_MATCH_LIMIT)
            .to_list()
        )
        if not results:
            raise NotFoundError(f"Memory with ID {memory_id} not found")
        if len(results) > 1:
            ids = ", ".join(r["id"] for r in results)
            if len(results) >= ID_PREFIX_MATCH_LIMIT:
                ids = f"{ids}..."
            raise ValidationError(
                f"Ambiguous ID prefix. Matches: {ids}. Provide full {ID_LENGTH}-char ID."
            )
        return results[0]

    results = table.search().where(f"id = '{safe_id}'").limit(1).to_list()
    if not results:
        raise NotFoundError(f"Memory with ID {memory_id} not found")
    return results[0]


async def create_memory(session: Session, content: str, metadata: Any = None) -> dict[str, Any]:
    """Embed and store a memory in the session's project."""
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Content is required and must be a string")

    metadata = coerce_metadata(metadata)
    if not session.is_default:
        metadata = with_project(metadata, session.project)

    embedding = await get_embedding(content)
    timestamp = now_iso()
    memory = Memory(
        id=uuid.uuid4().hex,
        content=content,
        vector=embedding,
        metadata=dump_metadata(metadata),
        project=project_of(metadata),
        created_at=timestamp,
        updated_at=timestamp,
    )
    row = memory.model_dump()
    get_memories_table().add([row])
    return row


async def update_memory(
    memory_id: str, content: str | None = None, metadata: Any = None
) -> dict[str, Any]:
    """Replace content and/or metadata; the embedding is regenerated only for new content."""
    if content is None and metadata is None:
        raise ValidationError("At least one of content or metadata must be provided for update")
    if content is not None and (not isinstance(content, str) or not content.strip()):
        raise ValidationError("Content must be a non-empty string")

    existing = find_memory(memory_id)
    full_id = existing["id"]

    if content is not None:
        new_content = content
        new_vector = await get_embedding(content)
    else:
        new_content = existing["content"]
        new_vector = existing["vector"]

    if metadata is not None:
        new_metadata = coerce_metadata(metadata)
        # Replacing metadata does not move the memory to another project
        current_project = existing.get("project")
        if current_project is not None and project_of(new_metadata) is None:
            new_metadata = with_project(new_metadata, current_project)
        stored_metadata = dump_metadata(new_metadata)
        new_project = project_of(new_metadata)
    else:
        stored_metadata = existing.get("metadata")
        new_project = existing.get("project")

    old_created_at = existing["created_at"]
    old_updated_at = existing["updated_at"]

    # Add first, then delete only the old row
    memory = Memory(
        id=full_id,
        content=new_content,
        vector=new_vector,
        metadata=stored_metadata,
        project=new_project,
        created_at=old_created_at,
        updated_at=next_timestamp(old_updated_at),
    )
    row = memory.model_dump()
    table = get_memories_table()
    table.add([row])
    table.delete(
        " AND ".join(
            [
                f"id = '{escape_filter_value(full_id)}'",
                f"updated_at = '{escape_filter_value(old_updated_at)}'",
                f"created_at = '{escape_filter_value(old_created_at)}'",
            ]
        )
    )
    return row


def delete_relations_touching(memory_ids: list[str]) -> int:
    """Delete every relation with an endpoint in `memory_ids`. Returns the count removed."""
    if not memory_ids:
        return 0
    table = get_relations_table()
    where = f"{in_filter('from_memory_id', memory_ids)} OR {in_filter('to_memory_id', memory_ids)}"
    count = table.count_rows(where)
    if count:
        table.delete(where)
    return count


def delete_memory(memory_id: str) -> tuple[dict[str, Any], int]:
    """Delete a memory and cascade to its relations. Returns (row, relations removed)."""
    existing = find_memory(memory_id)
    full_id = existing["id"]
    get_memories_table().delete(f"id = '{escape_filter_value(full_id)}'")
    removed = delete_relations_touching([full_id])
    return existing, removed


def list_memories(
    limit: int = CONFIG.default_list_limit,
    offset: int = 0,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
    metadata_filter: Any = None,
) -> tuple[list[dict[str, Any]], int]:
    """One page of memories across all projects, plus the total matching count."""
    column = SORT_COLUMNS.get(sort_by)
    if column is None:
        raise ValidationError(f"Invalid sortBy '{sort_by}'. Valid: {sorted(SORT_COLUMNS)}")
    if sort_order not in ("asc", "desc"):
        raise ValidationError(f"Invalid sortOrder '{sort_order}'. Valid: ['asc', 'desc']")

    rows = scan(get_memories_table())
    if metadata_filter is not None:
        rows = [
            r for r in rows if json_contains(load_metadata(r.get("metadata")), metadata_filter)
        ]

    # id breaks ties so pages are stable
    rows.sort(key=lambda r: r["id"])
    rows.sort(key=lambda r: r[column], reverse=sort_order == "desc")
    return rows[offset : offset + limit], len(rows)
