"""Pydantic v2 data models for the call-graph JSON schema and pipeline options."""

from callsite.models.graph import (
    CallGraph,
    FunctionMode,
    GraphLink,
    GraphMetadata,
    GraphNode,
    LinkType,
    VerificationStatus,
)
from callsite.models.pipeline import PipelineOptions

__all__ = [
    "FunctionMode",
    "VerificationStatus",
    "LinkType",
    "GraphNode",
    "GraphLink",
    "GraphMetadata",
    "CallGraph",
    "PipelineOptions",
]
