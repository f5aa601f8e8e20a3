"""FastAPI route definitions for querying the call-graph index.

Provides endpoints for:

- ``GET /index/info`` — existence, size and age of the index file.
- ``POST /index/reload`` — force a reload from disk.
- ``GET /index/nodes/{node_id}`` — lookup by symbol id.
- ``GET /index/nodes?name=`` — lookup by display name.
- ``GET /index/files?path=`` — all functions declared in a file.
- ``GET /index/position?file=&line=`` — the function at a cursor position.

Every query goes through :meth:`IndexManager.get_or_load`, so the first
request loads the index and later ones hit the cache.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from fastapi import APIRouter, HTTPException, Query, Request, status

from callsite.core.display import format_timestamp
from callsite.core.errors import NotFoundError, ParseError
from callsite.core.index import CallGraphIndex
from callsite.core.index_manager import IndexManager
from callsite.models.graph import GraphNode

index_router = APIRouter(prefix="/index")


# ------------------------------------------------------------------
# Request / Response schemas
# ------------------------------------------------------------------


class IndexInfoResponse(BaseModel):
    """Response from ``GET /index/info``."""

    exists: bool
    path: str
    generated_at: datetime | None = None
    generated_display: str | None = Field(None, description="e.g. 'Jan 5, 2024, 3:07 PM (2 hours ago)'.")
    size: int | None = None
    loaded: bool = Field(False, description="Whether an index is currently cached.")


class IndexSummary(BaseModel):
    """Counts and timestamps of a loaded index."""

    path: str
    total_nodes: int
    total_edges: int
    project_root: str
    generated_at: datetime
    loaded_at: datetime


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _manager(request: Request) -> IndexManager:
    return request.app.state.index_manager


async def _load(request: Request, force_reload: bool = False) -> CallGraphIndex:
    """Load the index, mapping domain errors onto HTTP errors.

    Raises:
        HTTPException: 404 if the index file is missing, 422 if it is
            malformed.
    """
    try:
        return await _manager(request).get_or_load(request.app.state.project_root, force_reload=force_reload)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": f"Call graph index not found: {exc.path}", "hint": exc.hint},
        )
    except ParseError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )


def _summary(index: CallGraphIndex) -> IndexSummary:
    meta = index.metadata
    return IndexSummary(
        path=str(meta.index_path),
        total_nodes=meta.total_nodes,
        total_edges=meta.total_edges,
        project_root=meta.project_root,
        generated_at=meta.generated_at,
        loaded_at=meta.loaded_at,
    )


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------


@index_router.get(
    "/info",
    response_model=IndexInfoResponse,
    summary="Describe the index file",
)
async def index_info(request: Request) -> IndexInfoResponse:
    """Report whether the index file exists and how old it is."""
    info = _manager(request).index_info(request.app.state.project_root)
    return IndexInfoResponse(
        exists=info.exists,
        path=str(info.path),
        generated_at=info.generated_at,
        generated_display=format_timestamp(info.generated_at) if info.generated_at else None,
        size=info.size,
        loaded=_manager(request).cached is not None,
    )


@index_router.post(
    "/reload",
    response_model=IndexSummary,
    summary="Reload the index from disk",
)
async def reload_index(request: Request) -> IndexSummary:
    return _summary(await _load(request, force_reload=True))


@index_router.get(
    "/nodes/{node_id:path}",
    response_model=GraphNode,
    summary="Look up a function by id",
)
async def node_by_id(node_id: str, request: Request) -> GraphNode:
    index = await _load(request)
    node = index.find_node_by_id(node_id)
    if node is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Node not found: {node_id}",
        )
    return node


@index_router.get(
    "/nodes",
    response_model=list[GraphNode],
    summary="Look up functions by display name",
)
async def nodes_by_name(
    request: Request,
    name: str = Query(..., min_length=1, description="Function display name."),
) -> list[GraphNode]:
    index = await _load(request)
    return index.find_nodes_by_name(name)


@index_router.get(
    "/files",
    response_model=list[GraphNode],
    summary="List functions declared in a file",
)
async def nodes_in_file(
    request: Request,
    path: str = Query(..., min_length=1, description="Relative or absolute file path."),
) -> list[GraphNode]:
    index = await _load(request)
    return index.find_nodes_in_file(path)


@index_router.get(
    "/position",
    response_model=GraphNode,
    summary="Find the function at a cursor position",
)
async def node_at_position(
    request: Request,
    file: str = Query(..., min_length=1, description="Relative or absolute file path."),
    line: int = Query(..., ge=1, description="1-indexed line number."),
) -> GraphNode:
    index = await _load(request)
    node = index.find_node_at_position(file, line)
    if node is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No function at {file}:{line}",
        )
    return node
