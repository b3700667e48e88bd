"""Project partitions: switching, listing and deleting.

A project is not stored anywhere; it is the set of memories whose metadata
carries the same `project` value (no value = the default project).
"""

from __future__ import annotations

from typing import Any

from errors import ValidationError
from memory_store import (
    delete_relations_touching,
    get_memories_table,
    project_filter,
    read_columns,
    scan,
)
from models import DEFAULT_PROJECT, Session
from utils import validate_project_name


def _partition_key(name: str) -> str | None:
    return None if name == DEFAULT_PROJECT else name


def count_project(name: str) -> int:
    return get_memories_table().count_rows(project_filter(_partition_key(name)))


def switch_project(session: Session, project_name: str) -> bool:
    """Point the session at `project_name`. Returns True if it has no memories yet."""
    session.project = validate_project_name(project_name)
    return count_project(project_name) == 0


def list_projects(session: Session) -> list[dict[str, Any]]:
    """One entry per partition; default first (if non-empty), then most recently active."""
    data = read_columns(get_memories_table(), ["project", "created_at", "updated_at"])

    stats: dict[str | None, dict[str, Any]] = {}
    for project, created_at, updated_at in zip(
        data["project"], data["created_at"], data["updated_at"]
    ):
        entry = stats.setdefault(
            project, {"count": 0, "first": created_at, "last": updated_at}
        )
        entry["count"] += 1
        entry["first"] = min(entry["first"], created_at)
        entry["last"] = max(entry["last"], updated_at)

    projects = []
    default = stats.pop(None, None)
    if default is not None:
        projects.append(
            {
                "name": DEFAULT_PROJECT,
                "memoryCount": default["count"],
                "firstCreated": default["first"],
                "lastUpdated": default["last"],
                "isCurrent": session.is_default,
            }
        )
    for name, entry in sorted(stats.items(), key=lambda item: item[1]["last"], reverse=True):
        projects.append(
            {
                "name": name,
                "memoryCount": entry["count"],
                "firstCreated": entry["first"],
                "lastUpdated": entry["last"],
                "isCurrent": session.project == name,
            }
        )
    return projects


def delete_project(session: Session, project_name: str, confirm_delete: bool) -> tuple[int, int]:
    """Delete every memory in a project and their relations.

    Returns (memories deleted, relations deleted). If the deleted project was
    the session's current one, the session falls back to the default project.
    """
    validate_project_name(project_name)
    if confirm_delete is not True:
        raise ValidationError("confirmDelete must be true to delete a project")

    table = get_memories_table()
    where = project_filter(_partition_key(project_name))
    ids = [row["id"] for row in scan(table, where)]
    if ids:
        table.delete(where)
    relations_removed = delete_relations_touching(ids)

    if session.project == project_name:
        session.project = DEFAULT_PROJECT
    return len(ids), relations_removed
