"""Own the current call-graph index and keep it in sync with disk.

:class:`IndexManager` resolves where the call-graph JSON lives, loads it
into a :class:`~callsite.core.index.CallGraphIndex`, caches the result,
and hot-reloads it when the file changes.  The cached index is a single
reference that is replaced wholesale: readers always see either the
previous complete index or the next one.
"""

from __future__ import annotations

import asyncio
import json
import pathlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog

from callsite.config import Settings, settings
from callsite.core.errors import CallsiteError, NotFoundError
from callsite.core.events import EventEmitter
from callsite.core.index import CallGraphIndex, build_index
from callsite.core.parser import parse_graph
from callsite.core.watcher import FileWatcher, WatchdogFileWatcher, on_loop
from callsite.models.graph import GraphMetadata

logger = structlog.get_logger(__name__)

# Default index file path relative to the project root.
DEFAULT_INDEX_PATH: str = ".vscode/call_graph_index.json"


@dataclass(frozen=True)
class IndexInfo:
    """Cheap facts about the index file, without building an index."""

    exists: bool
    path: pathlib.Path
    generated_at: Optional[datetime] = None
    size: Optional[int] = None


def regeneration_hint(root: pathlib.Path, index_path: pathlib.Path) -> str:
    """Return instructions for producing the missing index file."""
    return (
        "To generate the index, run:\n"
        "  POST /pipeline/run  (or PipelineSupervisor.run())\n\n"
        "Or manually:\n"
        "  cd /path/to/scip-callgraph\n"
        "  cargo run --release -p metrics-cli --bin pipeline -- \\\n"
        f"    {root} -o {index_path} --skip-similar-lemmas"
    )


class IndexManager:
    """Cache, load and hot-reload the call-graph index.

    One instance owns one cached index and one file watcher.  Construct
    it once and hand it to consumers; several independent instances can
    coexist (useful in tests).

    Args:
        config: Settings to read ``index_path`` from.  Defaults to the
            global :data:`callsite.config.settings`.
        watcher: File watcher used for hot reload.  Defaults to a
            :class:`~callsite.core.watcher.WatchdogFileWatcher`.

    Attributes:
        index_changed: Emits the new index after every swap, and ``None``
            when the backing file is deleted.
    """

    def __init__(
        self,
        config: Settings | None = None,
        watcher: FileWatcher | None = None,
    ) -> None:
        self._settings = config or settings
        self._watcher = watcher if watcher is not None else WatchdogFileWatcher()
        self._watched_path: Optional[pathlib.Path] = None
        self._index: Optional[CallGraphIndex] = None
        self._reloads: set[asyncio.Task] = set()
        self.index_changed: EventEmitter[Optional[CallGraphIndex]] = EventEmitter("index_changed")

    # ------------------------------------------------------------------
    # Path resolution
    # ------------------------------------------------------------------

    def resolve_path(self, root: str | pathlib.Path) -> pathlib.Path:
        """Compute the index location for *root*.

        A configured ``index_path`` wins; relative values are joined to
        *root*.  Otherwise :data:`DEFAULT_INDEX_PATH` is used.  Does not
        touch the file system.
        """
        root = pathlib.Path(root)
        custom = self._settings.index_path
        if custom:
            custom_path = pathlib.Path(custom)
            if custom_path.is_absolute():
                return custom_path
            return root / custom_path
        return root / DEFAULT_INDEX_PATH

    def index_exists(self, root: str | pathlib.Path) -> bool:
        return self.resolve_path(root).is_file()

    def index_info(self, root: str | pathlib.Path) -> IndexInfo:
        """Describe the index file without validating or indexing it.

        ``generated_at`` comes from the file's metadata block when it can
        be read, otherwise from the file's modification time.
        """
        index_path = self.resolve_path(root)
        try:
            stat = index_path.stat()
        except FileNotFoundError:
            return IndexInfo(exists=False, path=index_path)

        mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        try:
            raw = json.loads(index_path.read_bytes())
            meta = GraphMetadata.model_validate(raw.get("metadata") or {})
            generated_at = meta.generated_at or mtime
        except (OSError, ValueError, AttributeError):
            generated_at = mtime

        return IndexInfo(exists=True, path=index_path, generated_at=generated_at, size=stat.st_size)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @property
    def cached(self) -> Optional[CallGraphIndex]:
        """The current index, or ``None`` if nothing is loaded."""
        return self._index

    async def get_or_load(
        self,
        root: str | pathlib.Path,
        force_reload: bool = False,
    ) -> CallGraphIndex:
        """Return the index for *root*, loading it if necessary.

        The cached index is reused when it was read from the same path
        and *force_reload* is false.  Otherwise the file is read off the
        event loop, parsed, built into a fresh index and swapped in, and
        the watcher is pointed at that file.

        Args:
            root: Project root directory.
            force_reload: Ignore the cache.

        Returns:
            The current :class:`CallGraphIndex`.

        Raises:
            NotFoundError: If the index file does not exist.
            ParseError: If the file is not a valid call graph.
        """
        root = pathlib.Path(root)
        index_path = self.resolve_path(root)

        cached = self._index
        if cached is not None and not force_reload and cached.metadata.index_path == index_path:
            logger.debug("index_cache_hit", path=str(index_path))
            return cached

        logger.info("index_loading", path=str(index_path), forced=force_reload)
        try:
            content = await self._read(index_path)
        except FileNotFoundError as exc:
            raise NotFoundError(index_path, regeneration_hint(root, index_path)) from exc

        graph = parse_graph(content, index_path)
        index = build_index(graph, index_path)

        self._swap(index)
        self._arm_watcher(root, index_path)

        logger.info(
            "index_loaded",
            path=str(index_path),
            nodes=index.metadata.total_nodes,
            links=index.metadata.total_edges,
        )
        return index

    async def _read(self, index_path: pathlib.Path) -> bytes:
        return await asyncio.to_thread(index_path.read_bytes)

    def _swap(self, index: Optional[CallGraphIndex]) -> None:
        self._index = index
        self.index_changed.emit(index)

    # ------------------------------------------------------------------
    # Hot reload
    # ------------------------------------------------------------------

    def _arm_watcher(self, root: pathlib.Path, index_path: pathlib.Path) -> None:
        if self._watched_path == index_path:
            return
        loop = asyncio.get_running_loop()
        try:
            self._watcher.start(
                index_path,
                on_change=on_loop(loop, self._on_file_changed, root),
                on_delete=on_loop(loop, self._on_file_deleted, index_path),
            )
        except OSError:
            logger.exception("index_watch_failed", path=str(index_path))
            return
        self._watched_path = index_path

    def _on_file_changed(self, root: pathlib.Path) -> None:
        logger.info("index_file_changed", root=str(root))
        task = asyncio.ensure_future(self._reload(root))
        self._reloads.add(task)
        task.add_done_callback(self._reloads.discard)

    async def _reload(self, root: pathlib.Path) -> None:
        try:
            await self.get_or_load(root, force_reload=True)
        except (CallsiteError, OSError) as exc:
            # The previous index stays live.
            logger.warning("index_reload_failed", root=str(root), error=str(exc))
        else:
            logger.info("index_reloaded", root=str(root))

    def _on_file_deleted(self, index_path: pathlib.Path) -> None:
        logger.info("index_file_deleted", path=str(index_path))
        current = self._index
        if current is not None and current.metadata.index_path == index_path:
            self._swap(None)

    async def wait_for_reloads(self) -> None:
        """Wait until every in-flight hot reload has finished."""
        while self._reloads:
            await asyncio.gather(*list(self._reloads), return_exceptions=True)

    def clear(self) -> None:
        """Drop the cached index and stop watching the file."""
        self._index = None
        for task in list(self._reloads):
            task.cancel()
        self._reloads.clear()
        self._watcher.stop()
        self._watched_path = None
        logger.debug("index_cache_cleared")
