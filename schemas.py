"""Typed request structs, one per tool.

Every tool builds its struct from the raw call arguments first, so core
functions only ever see well-formed input.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator, model_validator

from models import CONFIG, RelationType

Id = Annotated[str, Field(min_length=1)]
ProjectName = Annotated[str, Field(pattern=r"^[a-zA-Z0-9_-]+$")]


def describe_validation_error(exc: pydantic.ValidationError) -> str:
    """Compact `field: message` text for a failed request."""
    parts = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"])
        parts.append(f"{location}: {err['msg']}" if location else err["msg"])
    return "; ".join(parts)


class Request(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


def _non_blank(value: str | None, field: str) -> str | None:
    if value is not None and not value.strip():
        raise ValueError(f"{field} must not be blank")
    return value


# =============================================================================
# Memories
# =============================================================================


class CreateMemoryRequest(Request):
    content: str
    metadata: Any = None

    @field_validator("content")
    @classmethod
    def _content(cls, value: str) -> str:
        return _non_blank(value, "content")


class GetMemoryRequest(Request):
    memory_id: Id


class DeleteMemoryRequest(Request):
    memory_id: Id


class UpdateMemoryRequest(Request):
    memory_id: Id
    content: str | None = None
    metadata: Any = None

    @field_validator("content")
    @classmethod
    def _content(cls, value: str | None) -> str | None:
        return _non_blank(value, "content")

    @model_validator(mode="after")
    def _something_to_update(self) -> UpdateMemoryRequest:
        if self.content is None and self.metadata is None:
            raise ValueError("At least one of content or metadata must be provided for update")
        return self


class ListMemoriesRequest(Request):
    limit: int = Field(CONFIG.default_list_limit, ge=1, le=CONFIG.max_list_limit)
    offset: int = Field(0, ge=0)
    sort_by: Literal["createdAt", "content"] = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"
    metadata_filter: Any = None


class SearchMemoryRequest(Request):
    query: str
    limit: int = Field(CONFIG.default_limit, ge=1, le=CONFIG.max_limit)
    threshold: float = Field(CONFIG.default_threshold, ge=-1.0, le=1.0)

    @field_validator("query")
    @classmethod
    def _query(cls, value: str) -> str:
        return _non_blank(value, "query")


# =============================================================================
# Relations
# =============================================================================


class CreateRelationRequest(Request):
    from_memory_id: Id
    to_memory_id: Id
    relation_type: RelationType = "related"
    metadata: Any = None


class GetRelationsRequest(Request):
    memory_id: Id
    direction: Literal["parents", "children", "both"] = "both"


class GetGraphRequest(Request):
    root_memory_id: Id
    depth: int = Field(CONFIG.default_graph_depth, ge=0, le=CONFIG.max_graph_depth)
    include_content: bool = False


class DeleteRelationRequest(Request):
    relation_id: Id


# =============================================================================
# Projects
# =============================================================================


class SwitchProjectRequest(Request):
    project_name: ProjectName


class DeleteProjectRequest(Request):
    project_name: ProjectName
    confirm_delete: StrictBool
