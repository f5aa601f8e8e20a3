"""Parse and validate the persisted call-graph JSON.

Validation is structural only: ``nodes`` and ``links`` must be present
and well-typed.  Dangling ids in ``dependencies``/``dependents`` or in
links are left alone; the upstream pipeline may emit partial data.
"""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import ValidationError

from callsite.core.errors import ParseError
from callsite.models.graph import CallGraph

logger = structlog.get_logger(__name__)


def parse_graph(text: str | bytes, source: Path | None = None) -> CallGraph:
    """Turn raw JSON text into a validated :class:`CallGraph`.

    Args:
        text: The file contents.
        source: Where the text came from, used in error messages only.

    Returns:
        The typed graph.

    Raises:
        ParseError: If the text is not JSON, is not an object, or any
            node/link fails schema validation.
    """
    try:
        raw = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ParseError(f"Invalid JSON: {exc}", source) from exc

    if not isinstance(raw, dict):
        raise ParseError(f"Expected a JSON object, got {type(raw).__name__}", source)

    for key in ("nodes", "links"):
        if not isinstance(raw.get(key), list):
            raise ParseError(f"Missing or non-array '{key}'", source)

    try:
        graph = CallGraph.model_validate(raw)
    except ValidationError as exc:
        raise ParseError(_summarize(exc), source) from exc

    logger.debug(
        "graph_parsed",
        source=str(source) if source else None,
        nodes=len(graph.nodes),
        links=len(graph.links),
    )
    return graph


def _summarize(exc: ValidationError, limit: int = 5) -> str:
    """Condense a pydantic error into a few ``loc: msg`` lines."""
    errors = exc.errors()
    lines = [
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in errors[:limit]
    ]
    if len(errors) > limit:
        lines.append(f"... and {len(errors) - limit} more")
    return "Schema validation failed:\n" + "\n".join(lines)
