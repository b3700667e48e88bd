"""
Directed, typed relations between memories and bounded graph traversal.

Convention: a relation points from_memory_id -> to_memory_id. The `from`
side is the parent, the `to` side is the child, so the parents of a memory
are relations where it is `to`, and its children those where it is `from`.
"""

from __future__ import annotations

import uuid
from collections import deque
from typing import Any

from errors import ConflictError, NotFoundError, ValidationError
from memory_store import (
    find_memory,
    get_memories_table,
    get_relations_table,
    memory_to_dict,
    scan,
)
from models import CONFIG, DEFAULT_RELATION_TYPE, RELATION_TYPES, MemoryRelation
from utils import (
    coerce_metadata,
    dump_metadata,
    escape_filter_value,
    in_filter,
    load_metadata,
    now_iso,
)

DIRECTIONS = ("parents", "children", "both")


def relation_to_dict(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "fromMemoryId": row["from_memory_id"],
        "toMemoryId": row["to_memory_id"],
        "relationType": row["relation_type"],
        "metadata": load_metadata(row.get("metadata")),
        "createdAt": row["created_at"],
    }


def _memories_by_id(ids: set[str]) -> dict[str, dict[str, Any]]:
    if not ids:
        return {}
    rows = scan(get_memories_table(), in_filter("id", sorted(ids)))
    return {row["id"]: row for row in rows}


def relations_of(memory_id: str) -> list[dict[str, Any]]:
    """Every relation with `memory_id` on either side, oldest first."""
    safe_id = escape_filter_value(memory_id)
    rows = scan(
        get_relations_table(),
        f"from_memory_id = '{safe_id}' OR to_memory_id = '{safe_id}'",
    )
    return sorted(rows, key=lambda r: (r["created_at"], r["id"]))


def create_relation(
    from_id: str,
    to_id: str,
    relation_type: str = DEFAULT_RELATION_TYPE,
    metadata: Any = None,
) -> dict[str, Any]:
    """Link two existing memories. At most one relation per ordered pair."""
    if relation_type not in RELATION_TYPES:
        raise ValidationError(
            f"Invalid relationType '{relation_type}'. Valid: {list(RELATION_TYPES)}"
        )
    try:
        source = find_memory(from_id)
    except NotFoundError:
        raise NotFoundError(f"Source memory with ID {from_id} not found") from None
    try:
        target = find_memory(to_id)
    except NotFoundError:
        raise NotFoundError(f"Target memory with ID {to_id} not found") from None
    if source["id"] == target["id"]:
        raise ValidationError("A memory cannot be related to itself")

    table = get_relations_table()
    pair = (
        f"from_memory_id = '{escape_filter_value(source['id'])}' "
        f"AND to_memory_id = '{escape_filter_value(target['id'])}'"
    )
    if table.count_rows(pair) > 0:
        raise ConflictError("Relationship already exists between these memories")

    relation = MemoryRelation(
        id=uuid.uuid4().hex,
        from_memory_id=source["id"],
        to_memory_id=target["id"],
        relation_type=relation_type,
        metadata=dump_metadata(coerce_metadata(metadata)),
        created_at=now_iso(),
    )
    row = relation.model_dump()
    table.add([row])
    return row


def get_relations(
    memory_id: str, direction: str = "both"
) -> tuple[str, dict[str, list[dict[str, Any]]]]:
    """Connected memories grouped into parents and children, with the resolved memory id."""
    if direction not in DIRECTIONS:
        raise ValidationError(f"Invalid direction '{direction}'. Valid: {list(DIRECTIONS)}")
    full_id = find_memory(memory_id)["id"]

    relations = relations_of(full_id)
    wanted = []
    if direction in ("parents", "both"):
        wanted += [
            ("parents", r, r["from_memory_id"]) for r in relations if r["to_memory_id"] == full_id
        ]
    if direction in ("children", "both"):
        wanted += [
            ("children", r, r["to_memory_id"]) for r in relations if r["from_memory_id"] == full_id
        ]

    memories = _memories_by_id({other for _, _, other in wanted})
    result: dict[str, list[dict[str, Any]]] = {"parents": [], "children": []}
    for side, relation, other in wanted:
        memory = memories.get(other)
        if memory is None:
            continue
        result[side].append(
            {
                "relationId": relation["id"],
                "relationType": relation["relation_type"],
                "relationMetadata": load_metadata(relation.get("metadata")),
                "memoryId": memory["id"],
                "content": memory["content"],
                "metadata": load_metadata(memory.get("metadata")),
                "createdAt": relation["created_at"],
            }
        )
    return full_id, result


def get_graph(
    root_id: str,
    max_depth: int = CONFIG.default_graph_depth,
    include_content: bool = False,
) -> tuple[dict[str, Any], int]:
    """Breadth-first tree of memories reachable from `root_id` within `max_depth` hops.

    Relations are followed in both directions. Each memory appears once, at
    the depth where it was first reached; an edge leading to an already
    visited memory is dropped. Returns (tree, number of nodes).
    """
    if max_depth < 0:
        raise ValidationError(f"depth must be non-negative, got {max_depth}")
    if max_depth > CONFIG.max_graph_depth:
        raise ValidationError(f"depth cannot exceed {CONFIG.max_graph_depth}, got {max_depth}")

    root_row = find_memory(root_id)
    root = {**memory_to_dict(root_row, include_content), "depth": 0, "children": []}
    visited = {root_row["id"]}
    queue = deque([(root, 0)])

    while queue:
        node, depth = queue.popleft()
        if depth >= max_depth:
            continue

        edges = []
        for relation in relations_of(node["id"]):
            if relation["from_memory_id"] == node["id"]:
                other = relation["to_memory_id"]
            else:
                other = relation["from_memory_id"]
            if other not in visited:
                edges.append((relation, other))

        memories = _memories_by_id({other for _, other in edges})
        for relation, other in edges:
            memory = memories.get(other)
            if memory is None or other in visited:
                continue
            visited.add(other)
            child = {
                **memory_to_dict(memory, include_content),
                "depth": depth + 1,
                "relationId": relation["id"],
                "relationType": relation["relation_type"],
                "relationMetadata": load_metadata(relation.get("metadata")),
                "children": [],
            }
            node["children"].append(child)
            queue.append((child, depth + 1))

    return root, len(visited)


def delete_relation(relation_id: str) -> dict[str, Any]:
    if not isinstance(relation_id, str) or not relation_id:
        raise ValidationError("Relation ID is required and must be a string")
    table = get_relations_table()
    where = f"id = '{escape_filter_value(relation_id)}'"
    rows = table.search().where(where).limit(1).to_list()
    if not rows:
        raise NotFoundError(f"Relationship with ID {relation_id} not found")
    table.delete(where)
    return rows[0]
