"""File-system watchers built on ``watchdog``.

Two watchers are provided:

- :class:`WatchdogFileWatcher` follows exactly one file (the call-graph
  index) and reports *change* and *delete*.
- :class:`SourceWatcher` follows a project tree and reports changes to
  files matching gitwildmatch patterns (``pathspec``), used to trigger
  automatic pipeline runs.

``watchdog`` delivers events on its observer thread.  Consumers that
live on an asyncio loop wrap their callbacks with :func:`on_loop`.
``stop()`` never blocks on that thread: handlers are closed first, so
events still in flight are dropped, and the daemon observer winds down
on its own.
"""

from __future__ import annotations

import abc
import asyncio
import os
import pathlib
from typing import Callable, Optional

import pathspec
import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = structlog.get_logger(__name__)

Callback = Callable[[], None]


def on_loop(loop: asyncio.AbstractEventLoop, callback: Callable[..., None], *args: object) -> Callback:
    """Return a thread-safe callback that schedules *callback* on *loop*.

    Events that arrive after the loop has closed are dropped.
    """

    def schedule() -> None:
        if loop.is_closed():
            logger.debug("event_after_loop_closed", callback=getattr(callback, "__name__", repr(callback)))
            return
        loop.call_soon_threadsafe(callback, *args)

    return schedule


def _event_path(raw: str | bytes) -> pathlib.Path:
    return pathlib.Path(os.path.abspath(os.fsdecode(raw)))


class FileWatcher(abc.ABC):
    """Contract for watching a single file.

    Implementations may invoke the callbacks from any thread.
    """

    @abc.abstractmethod
    def start(self, path: pathlib.Path, on_change: Callback, on_delete: Callback) -> None:
        """Begin watching *path*, replacing any previous target."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop watching.  Safe to call more than once."""


class _SingleFileHandler(FileSystemEventHandler):
    """Filter directory events down to one target file."""

    def __init__(self, target: pathlib.Path, on_change: Callback, on_delete: Callback) -> None:
        super().__init__()
        self._target = target
        self._on_change = on_change
        self._on_delete = on_delete
        self._closed = False

    def close(self) -> None:
        self._closed = True

    def _is_target(self, event: FileSystemEvent, raw: str | bytes) -> bool:
        if self._closed:
            return False
        return not event.is_directory and _event_path(raw) == self._target

    def on_created(self, event: FileSystemEvent) -> None:
        if self._is_target(event, event.src_path):
            self._on_change()

    def on_modified(self, event: FileSystemEvent) -> None:
        if self._is_target(event, event.src_path):
            self._on_change()

    def on_deleted(self, event: FileSystemEvent) -> None:
        if self._is_target(event, event.src_path):
            self._on_delete()

    def on_moved(self, event: FileSystemEvent) -> None:
        # Pipelines commonly write a temp file and rename it into place.
        if self._is_target(event, event.dest_path):
            self._on_change()
        elif self._is_target(event, event.src_path):
            self._on_delete()


class WatchdogFileWatcher(FileWatcher):
    """Watch one file by observing its parent directory non-recursively."""

    def __init__(self) -> None:
        self._observer: Optional[Observer] = None
        self._handler: Optional[_SingleFileHandler] = None
        self.path: Optional[pathlib.Path] = None

    def start(self, path: pathlib.Path, on_change: Callback, on_delete: Callback) -> None:
        self.stop()
        target = pathlib.Path(os.path.abspath(path))
        handler = _SingleFileHandler(target, on_change, on_delete)
        observer = Observer()
        observer.schedule(handler, str(target.parent), recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer
        self._handler = handler
        self.path = target
        logger.debug("file_watch_started", path=str(target))

    def stop(self) -> None:
        if self._observer is None:
            return
        if self._handler is not None:
            self._handler.close()
        self._observer.stop()
        logger.debug("file_watch_stopped", path=str(self.path))
        self._observer = None
        self._handler = None
        self.path = None


class _SourceHandler(FileSystemEventHandler):
    def __init__(self, watcher: SourceWatcher) -> None:
        super().__init__()
        self._watcher = watcher
        self._closed = False

    def close(self) -> None:
        self._closed = True

    def on_any_event(self, event: FileSystemEvent) -> None:
        if self._closed:
            return
        if event.is_directory or event.event_type not in ("created", "modified", "deleted", "moved"):
            return
        self._watcher.dispatch(event.src_path)
        dest = getattr(event, "dest_path", "")
        if dest:
            self._watcher.dispatch(dest)


class SourceWatcher:
    """Recursively watch a project and report matching source changes.

    Args:
        root: Project root to observe.
        on_change: Called with the repo-relative POSIX path of each
            matching file that was created, modified, deleted or moved.
        patterns: Gitwildmatch patterns selecting relevant files.
        blacklist: Gitwildmatch patterns excluded even when they match.
    """

    def __init__(
        self,
        root: pathlib.Path,
        on_change: Callable[[str], None],
        patterns: list[str],
        blacklist: list[str] | None = None,
    ) -> None:
        self.root = pathlib.Path(os.path.abspath(root))
        self._on_change = on_change
        self._include = pathspec.PathSpec.from_lines("gitwildmatch", patterns)
        self._exclude = pathspec.PathSpec.from_lines("gitwildmatch", blacklist or [])
        self._observer: Optional[Observer] = None
        self._handler: Optional[_SourceHandler] = None

    def matches(self, relative: str) -> bool:
        """Return ``True`` if *relative* should trigger a regeneration."""
        if self._exclude.match_file(relative):
            return False
        return self._include.match_file(relative)

    def dispatch(self, raw_path: str | bytes) -> None:
        path = _event_path(raw_path)
        try:
            relative = path.relative_to(self.root).as_posix()
        except ValueError:
            return
        if self.matches(relative):
            logger.debug("source_changed", path=relative)
            self._on_change(relative)

    def start(self) -> None:
        if self._observer is not None:
            return
        handler = _SourceHandler(self)
        observer = Observer()
        observer.schedule(handler, str(self.root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        self._handler = handler
        logger.info("source_watch_started", root=str(self.root))

    def stop(self) -> None:
        if self._observer is None:
            return
        if self._handler is not None:
            self._handler.close()
        self._observer.stop()
        self._observer = None
        self._handler = None
        logger.info("source_watch_stopped", root=str(self.root))
