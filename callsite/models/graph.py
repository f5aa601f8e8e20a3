"""Graph data models for call-graph nodes, links, and metadata.

These Pydantic v2 models define the JSON schema written by the
``scip-callgraph`` pipeline (D3 force-graph format) and consumed by the
index builder.  Unknown keys are ignored so newer pipeline versions do
not break older readers.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FunctionMode(str, enum.Enum):
    """Verus function mode."""

    EXEC = "exec"
    PROOF = "proof"
    SPEC = "spec"


class VerificationStatus(str, enum.Enum):
    """Outcome of Verus verification for a single function."""

    VERIFIED = "verified"
    FAILED = "failed"
    UNVERIFIED = "unverified"


class LinkType(str, enum.Enum):
    """Where in the caller the call occurs."""

    INNER = "inner"
    PRECONDITION = "precondition"
    POSTCONDITION = "postcondition"


class GraphNode(BaseModel):
    """A single function entity in the call graph.

    ``dependencies`` and ``dependents`` are adjacency lists computed by
    the pipeline.  They may reference ids that are not present in the
    graph when the upstream data is partial.

    Attributes:
        id: Unique SCIP symbol identifier.
        display_name: Short function name (not unique).
        symbol: Fully qualified symbol path.
        relative_path: Repo-relative path of the declaring file.
        file_name: Base name of the declaring file.
        parent_folder: Directory containing the declaring file.
        start_line: 1-indexed first line of the definition.
        end_line: 1-indexed last line of the definition (inclusive).
        is_libsignal: Whether the function belongs to libsignal.
        dependencies: Ids of functions this function calls.
        dependents: Ids of functions that call this function.
        mode: Verus mode, when known.
        verification_status: Verification outcome; ``None`` means unknown.
        full_path: Absolute path of the declaring file, when recorded.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Unique symbol identifier.")
    display_name: str = Field(..., description="Short function name.")
    symbol: str = Field(..., description="Fully qualified symbol.")
    relative_path: str = Field("", description="Repo-relative file path.")
    file_name: str = Field("", description="Base name of the file.")
    parent_folder: str = Field("", description="Folder containing the file.")
    start_line: Optional[int] = Field(None, ge=1, description="First line (1-indexed).")
    end_line: Optional[int] = Field(None, ge=1, description="Last line (1-indexed, inclusive).")
    is_libsignal: bool = Field(False, description="Whether this is a libsignal function.")
    dependencies: list[str] = Field(default_factory=list, description="Ids this node calls.")
    dependents: list[str] = Field(default_factory=list, description="Ids that call this node.")
    mode: Optional[FunctionMode] = Field(None, description="Verus function mode.")
    verification_status: Optional[VerificationStatus] = Field(None, description="Verification outcome.")
    full_path: Optional[str] = Field(None, description="Absolute file path.")

    @property
    def file_key(self) -> str:
        """Key used for the per-file indices (relative path, else file name)."""
        return self.relative_path or self.file_name


class GraphLink(BaseModel):
    """A directed call edge between two nodes.

    Attributes:
        source: Id of the calling node.
        target: Id of the called node.
        type: Position of the call within the caller, when known.
    """

    model_config = ConfigDict(extra="ignore")

    source: str = Field(..., description="Calling node id.")
    target: str = Field(..., description="Called node id.")
    type: Optional[LinkType] = Field(None, description="Call position.")


class GraphMetadata(BaseModel):
    """Optional summary block written by the pipeline."""

    model_config = ConfigDict(extra="ignore")

    total_nodes: int = 0
    total_edges: int = 0
    project_root: str = ""
    generated_at: Optional[datetime] = None
    github_url: Optional[str] = None


class CallGraph(BaseModel):
    """Complete call graph as persisted by the pipeline.

    Attributes:
        nodes: All function entities, in pipeline order.
        links: All call edges, in pipeline order.
        metadata: Optional summary block.
    """

    model_config = ConfigDict(extra="ignore")

    nodes: list[GraphNode] = Field(..., description="Function entities.")
    links: list[GraphLink] = Field(..., description="Call edges.")
    metadata: Optional[GraphMetadata] = Field(None, description="Summary block.")
