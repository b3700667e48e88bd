"""Shared utility functions for agentic-memory."""

from __future__ import annotations

import json
import re
import sys
from datetime import datetime, timedelta
from typing import Any

from errors import ValidationError

PROJECT_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


def escape_filter_value(value: str) -> str:
    """Escape single quotes in filter values to prevent injection."""
    return value.replace("'", "''")


def in_filter(column: str, values: list[str]) -> str:
    """Build `column IN ('a', 'b')` with escaped values."""
    quoted = ", ".join(f"'{escape_filter_value(v)}'" for v in values)
    return f"{column} IN ({quoted})"


def now_iso() -> str:
    """Get current timestamp as ISO string (fixed width, sortable)."""
    return datetime.now().isoformat(timespec="microseconds")


def next_timestamp(previous: str) -> str:
    """Current timestamp, strictly later than `previous`."""
    current = now_iso()
    if current <= previous:
        bumped = datetime.fromisoformat(previous) + timedelta(microseconds=1)
        current = bumped.isoformat(timespec="microseconds")
    return current


def validate_project_name(name: Any) -> str:
    """Project names: letters, numbers, dashes and underscores only."""
    if not isinstance(name, str) or not name:
        raise ValidationError("Project name is required and must be a string")
    if not PROJECT_NAME_RE.match(name):
        raise ValidationError(
            "Project name must contain only letters, numbers, dashes, and underscores"
        )
    return name


# =============================================================================
# Metadata (stored as JSON text)
# =============================================================================


def coerce_metadata(value: Any) -> Any:
    """Turn a metadata argument into a JSON value.

    Strings are parsed as JSON; text that is not valid JSON is kept as
    {"originalMetadata": text} instead of being rejected.
    """
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        print(
            f"[agentic-memory] Metadata is not valid JSON, "
            f"storing as originalMetadata: {value[:80]}",
            file=sys.stderr,
        )
        return {"originalMetadata": value}


def with_project(metadata: Any, project: str) -> Any:
    """Stamp a project onto metadata, wrapping non-object values."""
    if metadata is None:
        return {"project": project}
    if isinstance(metadata, dict):
        return {**metadata, "project": project}
    return {"project": project, "originalMetadata": metadata}


def project_of(metadata: Any) -> str | None:
    """Project partition key of a metadata value; None means the default project."""
    if not isinstance(metadata, dict):
        return None
    project = metadata.get("project")
    return None if project is None else str(project)


def dump_metadata(metadata: Any) -> str | None:
    return None if metadata is None else json.dumps(metadata)


def load_metadata(raw: str | None) -> Any:
    """Parse stored metadata text; legacy non-JSON text is returned as-is."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def parse_filter(raw: Any) -> Any:
    """Parse a metadata filter argument. Returns None (skip filter) if malformed."""
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        print(
            f"[agentic-memory] Invalid metadata filter JSON, skipping filter: {e}",
            file=sys.stderr,
        )
        return None


def json_contains(container: Any, contained: Any) -> bool:
    """JSON containment: every part of `contained` appears in `container`.

    Objects match when each key is present with a containing value, arrays
    when each element is contained by some element, scalars by equality.
    """
    if isinstance(contained, dict):
        if not isinstance(container, dict):
            return False
        return all(
            key in container and json_contains(container[key], value)
            for key, value in contained.items()
        )
    if isinstance(contained, list):
        if not isinstance(container, list):
            return False
        return all(any(json_contains(item, wanted) for item in container) for wanted in contained)
    if isinstance(container, (dict, list)):
        return False
    # True == 1 in Python, but not in JSON
    if isinstance(container, bool) != isinstance(contained, bool):
        return False
    return container == contained
