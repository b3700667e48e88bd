#!/usr/bin/env python3
"""
Agentic Memory MCP Server - semantic memory store with a relation graph

Provides persistent memory for agents using:
- FastMCP for clean, idiomatic MCP server patterns
- LanceDB for vector storage with cosine similarity search
- Deterministic local embeddings (no model download, no API key)
- Directed, typed relations between memories with bounded graph traversal
- Per-connection project namespaces
"""

import asyncio
import functools
import sys
from typing import Annotated, Any, Awaitable, Callable
from weakref import WeakKeyDictionary

import pydantic
from mcp.server.fastmcp import Context, FastMCP
from pydantic import Field

import memory_store
import projects
import relations
from embedding import get_embedder
from errors import MemoryServiceError, StoreError, ValidationError
from memory_store import has_vector_index, init_database, memory_to_dict, read_columns
from models import CONFIG, RELATION_TYPES, Session
from schemas import (
    CreateMemoryRequest,
    CreateRelationRequest,
    DeleteMemoryRequest,
    DeleteProjectRequest,
    DeleteRelationRequest,
    GetGraphRequest,
    GetMemoryRequest,
    GetRelationsRequest,
    ListMemoriesRequest,
    SearchMemoryRequest,
    SwitchProjectRequest,
    UpdateMemoryRequest,
    describe_validation_error,
)
from search import search_memories
from utils import parse_filter

# Arguments reach the tools unvalidated; the request structs check them so a
# wrongly typed value still comes back as a validation_error result.


def _arg(json_type: str | list[str], **schema: Any) -> Any:
    """Argument of any type, advertised as `json_type` in the tool input schema."""
    return Annotated[Any, Field(json_schema_extra={"type": json_type, **schema})]


Text = _arg("string")
Integer = _arg("integer")
Number = _arg("number")
Flag = _arg("boolean")
Metadata = _arg(["object", "string", "null"])
SortBy = _arg("string", enum=["createdAt", "content"])
SortOrder = _arg("string", enum=["asc", "desc"])
Direction = _arg("string", enum=["parents", "children", "both"])
RelationTypeArg = _arg("string", enum=list(RELATION_TYPES))

# =============================================================================
# Sessions (one current project per client connection)
# =============================================================================

_sessions: WeakKeyDictionary = WeakKeyDictionary()


def get_session(ctx: Context) -> Session:
    """Session state for the connection behind this request."""
    key = ctx.session
    session = _sessions.get(key)
    if session is None:
        session = _sessions[key] = Session()
    return session


# =============================================================================
# Result envelope
# =============================================================================


def _failure(error: MemoryServiceError) -> dict[str, Any]:
    return {"success": False, "error": str(error), "code": error.code}


def tool_result(action: str) -> Callable:
    """Wrap a tool so every outcome is a {"success": ...} dict and nothing escapes."""

    def decorator(fn: Callable[..., Awaitable[dict[str, Any]]]) -> Callable:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> dict[str, Any]:
            try:
                payload = await fn(*args, **kwargs)
            except pydantic.ValidationError as e:
                return _failure(ValidationError(describe_validation_error(e)))
            except MemoryServiceError as e:
                if isinstance(e, StoreError):
                    print(f"[agentic-memory] Error {action}: {e}", file=sys.stderr)
                return _failure(e)
            except Exception as e:
                print(f"[agentic-memory] Error {action}: {e!r}", file=sys.stderr)
                return _failure(StoreError(str(e) or "Unknown error occurred"))
            return {"success": True, **payload}

        return wrapper

    return decorator


# =============================================================================
# FastMCP Server
# =============================================================================

mcp = FastMCP(
    "agentic-memory",
    instructions=(
        "Semantic memory store: save short memories, search them by similarity "
        "within the current project, and link them into a relation graph"
    ),
)


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
    }
)
@tool_result("creating memory")
async def create_memory(ctx: Context, content: Text, metadata: Metadata = None) -> dict[str, Any]:
    """Store a new memory with semantic embedding for later retrieval.

    Args:
        content: The content to store as a memory
        metadata: Optional JSON metadata (object or JSON string). The current
            project is added as metadata.project unless it is 'default'.
    """
    request = CreateMemoryRequest(content=content, metadata=metadata)
    row = await memory_store.create_memory(get_session(ctx), request.content, request.metadata)
    return {"memory": memory_to_dict(row)}


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
@tool_result("getting memory")
async def get_memory(ctx: Context, memory_id: Text) -> dict[str, Any]:
    """Get a single memory by ID.

    Args:
        memory_id: Memory ID (full or unique prefix)
    """
    request = GetMemoryRequest(memory_id=memory_id)
    return {"memory": memory_to_dict(memory_store.find_memory(request.memory_id))}


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
@tool_result("searching memories")
async def search_memory(
    ctx: Context,
    query: Text,
    limit: Integer = CONFIG.default_limit,
    threshold: Number = CONFIG.default_threshold,
) -> dict[str, Any]:
    """Search memories in the current project by semantic similarity.

    Args:
        query: The search query to find relevant memories
        limit: Maximum number of results to return (default 5, max 50)
        threshold: Minimum cosine similarity, -1 to 1 (default 0.7)
    """
    request = SearchMemoryRequest(query=query, limit=limit, threshold=threshold)
    session = get_session(ctx)
    results = await search_memories(session, request.query, request.limit, request.threshold)
    return {
        "results": results,
        "query": request.query,
        "totalResults": len(results),
        "project": session.project,
    }


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
@tool_result("listing memories")
async def list_memories(
    ctx: Context,
    limit: Integer = CONFIG.default_list_limit,
    offset: Integer = 0,
    sort_by: SortBy = "createdAt",
    sort_order: SortOrder = "desc",
    metadata_filter: Metadata = None,
) -> dict[str, Any]:
    """List memories across all projects with pagination and sorting.

    Args:
        limit: Maximum number of memories to return (default 50)
        offset: Number of memories to skip
        sort_by: createdAt or content
        sort_order: asc or desc
        metadata_filter: JSON object the metadata must contain, e.g. {"project": "demo"}.
            An unparseable filter is ignored.
    """
    request = ListMemoriesRequest(
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
        metadata_filter=metadata_filter,
    )
    page, total = memory_store.list_memories(
        limit=request.limit,
        offset=request.offset,
        sort_by=request.sort_by,
        sort_order=request.sort_order,
        metadata_filter=parse_filter(request.metadata_filter),
    )
    return {
        "memories": [memory_to_dict(row) for row in page],
        "pagination": {
            "total": total,
            "limit": request.limit,
            "offset": request.offset,
            "hasMore": request.offset + len(page) < total,
        },
    }


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
@tool_result("updating memory")
async def update_memory(
    ctx: Context,
    memory_id: Text,
    content: Text = None,
    metadata: Metadata = None,
) -> dict[str, Any]:
    """Update an existing memory's content and/or metadata.

    Args:
        memory_id: The ID of the memory to update (full or unique prefix)
        content: New content (regenerates the embedding)
        metadata: New metadata, replaces the old value (project is kept)
    """
    request = UpdateMemoryRequest(memory_id=memory_id, content=content, metadata=metadata)
    row = await memory_store.update_memory(request.memory_id, request.content, request.metadata)
    return {
        "memory": memory_to_dict(row),
        "message": f"Successfully updated memory with ID {row['id']}",
    }


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
    }
)
@tool_result("deleting memory")
async def delete_memory(ctx: Context, memory_id: Text) -> dict[str, Any]:
    """Delete a memory by ID, together with all of its relations.

    Args:
        memory_id: The ID of the memory to delete (full or unique prefix)
    """
    request = DeleteMemoryRequest(memory_id=memory_id)
    row, removed = memory_store.delete_memory(request.memory_id)
    return {
        "deletedMemory": memory_to_dict(row),
        "deletedRelationCount": removed,
        "message": f"Successfully deleted memory with ID {row['id']}",
    }


# =============================================================================
# Relations
# =============================================================================


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
    }
)
@tool_result("creating memory relation")
async def create_memory_relation(
    ctx: Context,
    from_memory_id: Text,
    to_memory_id: Text,
    relation_type: RelationTypeArg = "related",
    metadata: Metadata = None,
) -> dict[str, Any]:
    """Create a directed relationship from one memory (parent) to another (child).

    Args:
        from_memory_id: ID of the source/parent memory
        to_memory_id: ID of the target/child memory
        relation_type: parent-child, related, follows-from, contradicts, updates, supports
        metadata: Optional JSON metadata about the relationship
    """
    request = CreateRelationRequest(
        from_memory_id=from_memory_id,
        to_memory_id=to_memory_id,
        relation_type=relation_type,
        metadata=metadata,
    )
    row = relations.create_relation(
        request.from_memory_id, request.to_memory_id, request.relation_type, request.metadata
    )
    return {
        "relation": relations.relation_to_dict(row),
        "message": f"Created {request.relation_type} relationship between memories",
    }


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
@tool_result("getting memory relations")
async def get_memory_relations(
    ctx: Context, memory_id: Text, direction: Direction = "both"
) -> dict[str, Any]:
    """Get the parents and/or children of a memory.

    Args:
        memory_id: ID of the memory to find relationships for
        direction: parents, children or both (default both)
    """
    request = GetRelationsRequest(memory_id=memory_id, direction=direction)
    full_id, found = relations.get_relations(request.memory_id, request.direction)
    return {
        "memoryId": full_id,
        "relations": found,
        "totalRelations": len(found["parents"]) + len(found["children"]),
    }


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
@tool_result("building memory graph")
async def get_memory_graph(
    ctx: Context,
    root_memory_id: Text,
    depth: Integer = CONFIG.default_graph_depth,
    include_content: Flag = False,
) -> dict[str, Any]:
    """Build the graph of memories reachable from a root memory.

    Args:
        root_memory_id: ID of the root memory to start from
        depth: Maximum number of relation hops (default 2, max 10)
        include_content: Whether to include full memory content
    """
    request = GetGraphRequest(
        root_memory_id=root_memory_id, depth=depth, include_content=include_content
    )
    graph, visited = relations.get_graph(
        request.root_memory_id, request.depth, request.include_content
    )
    return {"graph": graph, "nodesVisited": visited, "maxDepth": request.depth}


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
    }
)
@tool_result("deleting memory relation")
async def delete_memory_relation(ctx: Context, relation_id: Text) -> dict[str, Any]:
    """Delete a relationship between two memories.

    Args:
        relation_id: ID of the relationship to delete
    """
    request = DeleteRelationRequest(relation_id=relation_id)
    row = relations.delete_relation(request.relation_id)
    return {
        "deletedRelation": relations.relation_to_dict(row),
        "message": f"Successfully deleted relationship {row['id']}",
    }


# =============================================================================
# Projects
# =============================================================================


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
@tool_result("switching project")
async def switch_project(ctx: Context, project_name: Text) -> dict[str, Any]:
    """Switch this connection to another project namespace (created on first write).

    Args:
        project_name: Letters, numbers, dashes and underscores only
    """
    request = SwitchProjectRequest(project_name=project_name)
    is_new = projects.switch_project(get_session(ctx), request.project_name)
    state = "new" if is_new else "existing"
    return {
        "project": request.project_name,
        "isNew": is_new,
        "message": f"Switched to {state} project: {request.project_name}",
    }


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
@tool_result("listing projects")
async def list_projects(ctx: Context) -> dict[str, Any]:
    """List all projects with memory counts and activity dates."""
    session = get_session(ctx)
    found = projects.list_projects(session)
    return {"projects": found, "currentProject": session.project, "totalProjects": len(found)}


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
@tool_result("getting current project")
async def get_current_project(ctx: Context) -> dict[str, Any]:
    """Get the name of the currently active project."""
    return {"currentProject": get_session(ctx).project}


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
    }
)
@tool_result("deleting project")
async def delete_project(ctx: Context, project_name: Text, confirm_delete: Flag) -> dict[str, Any]:
    """Delete a project and all its memories (and their relations).

    Args:
        project_name: Name of the project to delete ('default' = memories without a project)
        confirm_delete: Must be true to confirm deletion
    """
    request = DeleteProjectRequest(project_name=project_name, confirm_delete=confirm_delete)
    session = get_session(ctx)
    memories, relation_count = projects.delete_project(
        session, request.project_name, request.confirm_delete
    )
    return {
        "deletedProject": request.project_name,
        "deletedMemoryCount": memories,
        "deletedRelationCount": relation_count,
        "message": (
            f'Successfully deleted project "{request.project_name}" '
            f"and {memories} associated memories"
        ),
        "currentProject": session.project,
    }


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
@tool_result("collecting stats")
async def memory_stats(ctx: Context) -> dict[str, Any]:
    """Get memory system statistics - totals, by project, by relation type, index status."""
    memories_table = memory_store.get_memories_table()
    relations_table = memory_store.get_relations_table()

    by_project: dict[str, int] = {}
    for project in read_columns(memories_table, ["project"])["project"]:
        name = project or "default"
        by_project[name] = by_project.get(name, 0) + 1

    by_relation_type: dict[str, int] = {}
    for relation_type in read_columns(relations_table, ["relation_type"])["relation_type"]:
        by_relation_type[relation_type] = by_relation_type.get(relation_type, 0) + 1

    embedder = get_embedder()
    return {
        "totalMemories": sum(by_project.values()),
        "totalRelations": sum(by_relation_type.values()),
        "byProject": dict(sorted(by_project.items(), key=lambda x: x[1], reverse=True)),
        "byRelationType": dict(sorted(by_relation_type.items())),
        "vectorIndex": "IVF-PQ" if has_vector_index(memories_table) else "flat (brute-force)",
        "embedder": embedder.name,
        "dimension": embedder.dimension,
        "currentProject": get_session(ctx).project,
        "databasePath": str(CONFIG.db_path),
    }


# =============================================================================
# Server Entry Point
# =============================================================================


async def run_server():
    """Run the MCP server over stdio after opening the database."""
    await init_database()
    await mcp.run_stdio_async()


def main():
    """Entry point."""
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
