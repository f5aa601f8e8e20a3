"""In-memory, multi-keyed index over a parsed call graph.

:func:`build_index` is a pure function: one pass over the nodes fills
every lookup table.  The result is never mutated afterwards; a reload
builds a fresh :class:`CallGraphIndex` and swaps the reference.

When two nodes in the same file claim the same line (nested or
overlapping ranges), the node that appears *later* in the graph wins.
This follows from build order and is not a statement about which
function is innermost.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog

from callsite.models.graph import CallGraph, GraphLink, GraphNode

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IndexMetadata:
    """Summary of a loaded index.

    Attributes:
        total_nodes: Number of nodes in the source graph.
        total_edges: Number of links in the source graph.
        project_root: Project root recorded by the pipeline, may be empty.
        generated_at: Pipeline timestamp, or load time when absent.
        index_path: Resolved file the index was read from.
        loaded_at: When this index was built.
        github_url: Source-link base URL recorded by the pipeline.
    """

    total_nodes: int
    total_edges: int
    project_root: str
    generated_at: datetime
    index_path: Path
    loaded_at: datetime
    github_url: Optional[str] = None


@dataclass
class CallGraphIndex:
    """Lookup tables built once from a :class:`CallGraph`."""

    nodes_by_id: dict[str, GraphNode]
    nodes_by_display_name: dict[str, list[GraphNode]]
    nodes_by_file: dict[str, list[GraphNode]]
    nodes_by_line: dict[str, dict[int, GraphNode]]
    links: list[GraphLink]
    metadata: IndexMetadata

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_node_by_id(self, node_id: str) -> GraphNode | None:
        return self.nodes_by_id.get(node_id)

    def find_nodes_by_name(self, name: str) -> list[GraphNode]:
        return list(self.nodes_by_display_name.get(name, []))

    def find_nodes_in_file(self, file_path: str) -> list[GraphNode]:
        key = self._resolve_file_key(file_path, self.nodes_by_file)
        if key is None:
            return []
        return list(self.nodes_by_file[key])

    def find_node_at_position(self, file_path: str, line: int) -> GraphNode | None:
        """Return the node whose range covers *line* in *file_path*.

        *file_path* may be absolute or relative.  It is matched against
        the indexed keys as-is, relative to the recorded project root,
        from its ``src/`` segment onward, by bare file name, and finally
        against any key ending with that file name.

        Args:
            file_path: Path of the file as seen by the caller.
            line: 1-indexed line number.

        Returns:
            The matching node, or ``None``.
        """
        key = self._resolve_file_key(file_path, self.nodes_by_line)
        if key is None:
            return None
        return self.nodes_by_line[key].get(line)

    def _resolve_file_key(self, file_path: str, table: dict) -> str | None:
        path = str(file_path).replace("\\", "/")
        candidates = [path]

        root = self.metadata.project_root.replace("\\", "/").rstrip("/")
        if root and path.startswith(root + "/"):
            candidates.append(path[len(root) + 1 :])

        src_at = path.find("/src/")
        if src_at >= 0:
            candidates.append(path[src_at + 1 :])

        name = posixpath.basename(path)
        candidates.append(name)

        for candidate in candidates:
            if candidate in table:
                return candidate

        for key in table:
            if key.endswith("/" + name):
                return key
        return None


def build_index(
    graph: CallGraph,
    index_path: Path,
    loaded_at: datetime | None = None,
) -> CallGraphIndex:
    """Build every lookup table from *graph* in a single pass.

    Args:
        graph: The validated call graph.
        index_path: File the graph was read from (kept in metadata).
        loaded_at: Override for the load timestamp, mostly for tests.

    Returns:
        A new, fully populated :class:`CallGraphIndex`.
    """
    nodes_by_id: dict[str, GraphNode] = {}
    nodes_by_display_name: dict[str, list[GraphNode]] = {}
    nodes_by_file: dict[str, list[GraphNode]] = {}
    nodes_by_line: dict[str, dict[int, GraphNode]] = {}

    for node in graph.nodes:
        if node.id in nodes_by_id:
            logger.warning("duplicate_node_id", id=node.id)
        nodes_by_id[node.id] = node

        nodes_by_display_name.setdefault(node.display_name, []).append(node)

        file_key = node.file_key
        if not file_key:
            continue
        nodes_by_file.setdefault(file_key, []).append(node)

        if node.start_line is not None:
            line_map = nodes_by_line.setdefault(file_key, {})
            end_line = node.end_line or node.start_line
            for line in range(node.start_line, end_line + 1):
                line_map[line] = node

    now = loaded_at or datetime.now(timezone.utc)
    meta = graph.metadata
    metadata = IndexMetadata(
        total_nodes=len(graph.nodes),
        total_edges=len(graph.links),
        project_root=meta.project_root if meta else "",
        generated_at=(meta.generated_at if meta and meta.generated_at else now),
        index_path=index_path,
        loaded_at=now,
        github_url=meta.github_url if meta else None,
    )

    return CallGraphIndex(
        nodes_by_id=nodes_by_id,
        nodes_by_display_name=nodes_by_display_name,
        nodes_by_file=nodes_by_file,
        nodes_by_line=nodes_by_line,
        links=graph.links,
        metadata=metadata,
    )
