"""Run the ``scip-callgraph`` pipeline, one process at a time.

:class:`PipelineSupervisor` owns the lifecycle of the external pipeline
process:

- **Single flight**: ``run()`` is a no-op while a run is in progress.
- **Debounce**: ``trigger_debounced()`` coalesces bursts of triggers
  into one run, fired a fixed delay after the last trigger.
- **Cancellation**: ``cancel()`` terminates the process and returns to
  ``IDLE`` immediately.  Every run carries a generation token, so the
  late exit of a cancelled process cannot touch a newer run's state.
  Cancelling the task that awaits ``run()`` has the same effect.
- **Streaming**: stdout and stderr are forwarded line by line as they
  arrive.

Process-level failures never propagate as exceptions.  They are
reported through :attr:`PipelineSupervisor.status`, the returned
:class:`PipelineResult`, and the ``status_changed`` event.
"""

from __future__ import annotations

import asyncio
import enum
import os
import pathlib
import shlex
import signal
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import structlog

from callsite.config import Settings, settings
from callsite.core.errors import (
    CallsiteError,
    PipelineCancelledError,
    ProcessExitError,
    ProcessSpawnError,
    SupervisionError,
)
from callsite.core.events import EventEmitter
from callsite.core.index_manager import IndexManager
from callsite.models.pipeline import PipelineOptions

logger = structlog.get_logger(__name__)

OutputSink = Callable[[str], None]

_POSIX = os.name == "posix"

# Output is read in chunks of this size and split into lines here.
READ_CHUNK_BYTES: int = 64 * 1024

# An unterminated line longer than this is forwarded in pieces.
MAX_LINE_BYTES: int = 1024 * 1024

# Argument prefix for running the pipeline from a source checkout.
CARGO_RUN_ARGS: tuple[str, ...] = (
    "cargo", "run", "--release", "-p", "metrics-cli", "--bin", "pipeline", "--",
)

NOT_FOUND_HINT: str = (
    "The pipeline command was not found.\n"
    "Set CALLSITE_PIPELINE_REPO_PATH to your scip-callgraph checkout, e.g.\n"
    "  CALLSITE_PIPELINE_REPO_PATH=/home/user/git_repos/scip-callgraph\n"
    "or put a 'pipeline' executable on PATH."
)


class PipelineStatus(str, enum.Enum):
    """State of the supervisor.

    ``SUCCESS`` and ``ERROR`` are display states; a new run is accepted
    from either, just as from ``IDLE``.
    """

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class PipelineCommand:
    """A fully resolved invocation."""

    argv: list[str]
    cwd: pathlib.Path
    output_path: pathlib.Path

    def display(self) -> str:
        return shlex.join(self.argv)


@dataclass
class PipelineResult:
    """Outcome of a single ``run()``.

    Attributes:
        token: Generation token of the run.
        status: Status the run ended in (``IDLE`` when cancelled).
        returncode: Process exit status, if the process exited.
        duration_s: Wall time from spawn to exit.
        error: The failure, or ``None`` on success.
        output_tail: Last lines of combined output.
        interactive: Whether the run was requested by a user.
    """

    token: int
    status: PipelineStatus
    returncode: Optional[int] = None
    duration_s: float = 0.0
    error: Optional[CallsiteError] = None
    output_tail: list[str] = field(default_factory=list)
    interactive: bool = True

    @property
    def ok(self) -> bool:
        return self.status is PipelineStatus.SUCCESS

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, PipelineCancelledError)


@dataclass(frozen=True)
class StatusChange:
    """Payload of ``status_changed``.

    ``interactive`` is false for debounced or watcher-triggered runs, so
    consumers can choose to notify the user only for runs they asked for.
    """

    status: PipelineStatus
    previous: PipelineStatus
    result: Optional[PipelineResult] = None
    interactive: bool = True


class PipelineSupervisor:
    """Single-flight supervisor for the external pipeline.

    Args:
        project_root: Project the pipeline analyses.
        index_manager: Told to force-reload after each successful run.
        config: Settings; defaults to :data:`callsite.config.settings`.
        executable: Explicit argv prefix for the pipeline, bypassing the
            checkout/``PATH`` resolution.  The positional project root
            and ``-o <output>`` are appended to it.
        sink: Receives every output line as it arrives.

    Attributes:
        status_changed: Emits a :class:`StatusChange` on every transition.
        last_result: Result of the most recent finished run.
    """

    def __init__(
        self,
        project_root: str | pathlib.Path,
        index_manager: IndexManager,
        config: Settings | None = None,
        executable: Sequence[str] | None = None,
        sink: OutputSink | None = None,
    ) -> None:
        self.project_root = pathlib.Path(project_root)
        self.index_manager = index_manager
        self._settings = config or settings
        self._executable = list(executable) if executable else None
        self._sinks: list[OutputSink] = [sink] if sink else []

        self._status = PipelineStatus.IDLE
        self._generation = 0
        self._process: Optional[asyncio.subprocess.Process] = None
        self._debounce: Optional[asyncio.TimerHandle] = None
        self._background: set[asyncio.Task] = set()
        self._output: deque[str] = deque(maxlen=self._settings.output_buffer_lines)

        self.status_changed: EventEmitter[StatusChange] = EventEmitter("pipeline_status_changed")
        self.last_result: Optional[PipelineResult] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> PipelineStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status is PipelineStatus.RUNNING

    @property
    def output(self) -> list[str]:
        """Buffered output of the current (or last) run."""
        return list(self._output)

    def add_sink(self, sink: OutputSink) -> Callable[[], None]:
        """Register an extra output sink; returns a remover."""
        self._sinks.append(sink)

        def remove() -> None:
            if sink in self._sinks:
                self._sinks.remove(sink)

        return remove

    def _set_status(
        self,
        status: PipelineStatus,
        result: Optional[PipelineResult] = None,
        interactive: bool = True,
    ) -> None:
        previous = self._status
        self._status = status
        logger.debug("pipeline_status", status=status.value, previous=previous.value)
        self.status_changed.emit(
            StatusChange(status=status, previous=previous, result=result, interactive=interactive)
        )

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------

    def output_path(self) -> pathlib.Path:
        return self.index_manager.resolve_path(self.project_root)

    def build_command(self, options: PipelineOptions | None = None) -> PipelineCommand:
        """Resolve the executable and arguments for one run.

        Resolution order: an explicit ``executable``; a configured
        ``pipeline_repo_path`` with a release binary; the same checkout
        via ``cargo run``; finally ``pipeline_command`` from ``PATH``.
        """
        options = options or PipelineOptions()
        root = str(self.project_root)
        output = self.output_path()
        positional = [root, "-o", str(output)]
        cwd = self.project_root

        repo = self._settings.pipeline_repo_path
        if self._executable:
            argv = [*self._executable, *positional]
        elif repo and pathlib.Path(repo).is_dir():
            cwd = pathlib.Path(repo)
            release_binary = cwd / "target" / "release" / "pipeline"
            if release_binary.is_file():
                argv = [str(release_binary), *positional]
            else:
                argv = [*CARGO_RUN_ARGS, *positional]
        else:
            argv = [*shlex.split(self._settings.pipeline_command), *positional]
            logger.warning(
                "pipeline_repo_not_configured",
                hint="Set CALLSITE_PIPELINE_REPO_PATH to your scip-callgraph checkout.",
                command=argv[0],
            )

        skip_verification = options.skip_verification
        if skip_verification is None:
            skip_verification = self._settings.skip_verification
        skip_similar_lemmas = options.skip_similar_lemmas
        if skip_similar_lemmas is None:
            skip_similar_lemmas = self._settings.skip_similar_lemmas

        if skip_verification:
            argv.append("--skip-verification")
        if skip_similar_lemmas:
            argv.append("--skip-similar-lemmas")
        if options.use_cached_scip:
            argv.append("--use-cached-scip")
        if options.package:
            argv.extend(["-p", options.package])
        if options.github_url:
            argv.extend(["--github-url", options.github_url])

        return PipelineCommand(argv=argv, cwd=cwd, output_path=output)

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def run(
        self,
        options: PipelineOptions | None = None,
        interactive: bool = True,
    ) -> Optional[PipelineResult]:
        """Run the pipeline once and reload the index on success.

        Returns immediately with ``None`` if a run is already in
        progress.  Otherwise resolves when the process exits, fails to
        start, times out, or is cancelled.

        Args:
            options: Per-run flags.
            interactive: ``True`` for user-requested runs.  Failures of
                non-interactive runs are logged at a lower level.

        Returns:
            The :class:`PipelineResult`, or ``None`` if the call was a
            no-op.
        """
        if self._status is PipelineStatus.RUNNING:
            logger.info("pipeline_already_running")
            return None

        self._generation += 1
        token = self._generation
        self._output.clear()
        self._set_status(PipelineStatus.RUNNING, interactive=interactive)

        try:
            command = self.build_command(options)
            command.output_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            error = ProcessSpawnError([], "os_error", str(exc))
            return self._finish(token, PipelineStatus.ERROR, error=error, interactive=interactive)

        self._emit_line(f"Running: {command.display()}")
        self._emit_line(f"Working directory: {command.cwd}")
        self._emit_line("---")
        logger.info("pipeline_started", command=command.display(), cwd=str(command.cwd), token=token)

        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *command.argv,
                cwd=str(command.cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, "RUST_LOG": "info"},
                start_new_session=_POSIX,
            )
        except asyncio.CancelledError:
            self._task_cancelled(token, None)
            raise
        except FileNotFoundError as exc:
            error = ProcessSpawnError(command.argv, "not_found", str(exc), hint=NOT_FOUND_HINT)
            return self._spawn_failed(token, error, interactive)
        except PermissionError as exc:
            error = ProcessSpawnError(command.argv, "permission_denied", str(exc))
            return self._spawn_failed(token, error, interactive)
        except OSError as exc:
            error = ProcessSpawnError(command.argv, "os_error", str(exc))
            return self._spawn_failed(token, error, interactive)

        if token != self._generation:
            # Cancelled while spawning.
            _terminate(process)
            await process.wait()
            return self._stale_result(token, process.returncode, started, interactive)

        self._process = process
        try:
            timed_out = await self._supervise(process, token)
        except asyncio.CancelledError:
            self._task_cancelled(token, process)
            raise
        except Exception as exc:
            logger.exception("pipeline_supervision_failed", token=token)
            _kill(process)
            await process.wait()
            if token != self._generation:
                return self._stale_result(token, process.returncode, started, interactive)
            self._process = None
            error = SupervisionError(f"Pipeline supervision failed: {exc}")
            self._emit_line("---")
            self._emit_line(f"✗ {error}")
            duration = time.monotonic() - started
            return self._finish(token, PipelineStatus.ERROR, process.returncode, duration, error, interactive)

        duration = time.monotonic() - started
        returncode = process.returncode

        if token != self._generation:
            return self._stale_result(token, returncode, started, interactive)
        self._process = None

        tail = self._tail()
        if timed_out:
            error = ProcessExitError(returncode, tail, cause="timeout")
            self._emit_line("---")
            self._emit_line(f"✗ Pipeline timed out after {duration:.1f}s")
            return self._finish(token, PipelineStatus.ERROR, returncode, duration, error, interactive)

        if returncode != 0:
            error = ProcessExitError(returncode, tail)
            self._emit_line("---")
            self._emit_line(f"✗ Pipeline failed with exit code {returncode}")
            return self._finish(token, PipelineStatus.ERROR, returncode, duration, error, interactive)

        self._emit_line("---")
        self._emit_line(f"✓ Pipeline completed successfully in {duration:.1f}s")
        self._emit_line(f"Output: {command.output_path}")
        result = self._finish(token, PipelineStatus.SUCCESS, returncode, duration, None, interactive)

        try:
            await self.index_manager.get_or_load(self.project_root, force_reload=True)
        except CallsiteError as exc:
            logger.error("index_reload_after_pipeline_failed", error=str(exc))
        return result

    async def _supervise(self, process: asyncio.subprocess.Process, token: int) -> bool:
        """Stream output until *process* exits; return ``True`` on timeout."""
        timeout = self._settings.pipeline_timeout_s or None
        try:
            await asyncio.wait_for(self._communicate(process, token), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("pipeline_timeout", timeout_s=timeout, token=token)
            _kill(process)
            await process.wait()
            return True
        return False

    async def _communicate(self, process: asyncio.subprocess.Process, token: int) -> None:
        await asyncio.gather(
            self._pump(process.stdout, token),
            self._pump(process.stderr, token),
        )
        await process.wait()

    async def _pump(self, stream: Optional[asyncio.StreamReader], token: int) -> None:
        """Forward *stream* line by line.

        Reads fixed-size chunks rather than ``readline()`` so that a line
        longer than the stream buffer limit cannot fail the run.  An
        unterminated line that grows past :data:`MAX_LINE_BYTES` is
        forwarded in pieces.
        """
        if stream is None:
            return
        pending = bytearray()
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            pending.extend(chunk)
            while True:
                newline = pending.find(b"\n")
                if newline < 0:
                    break
                self._forward(bytes(pending[:newline]), token)
                del pending[: newline + 1]
            if len(pending) > MAX_LINE_BYTES:
                self._forward(bytes(pending), token)
                pending.clear()
        if pending:
            self._forward(bytes(pending), token)

    def _forward(self, raw: bytes, token: int) -> None:
        if token != self._generation:
            return
        self._emit_line(raw.decode("utf-8", errors="replace").rstrip("\r"))

    def _emit_line(self, line: str) -> None:
        self._output.append(line)
        logger.debug("pipeline_output", line=line)
        for sink in list(self._sinks):
            try:
                sink(line)
            except Exception:
                logger.exception("pipeline_sink_failed")

    def _tail(self) -> list[str]:
        count = self._settings.diagnostic_tail_lines
        return list(self._output)[-count:] if count > 0 else []

    def _spawn_failed(self, token: int, error: ProcessSpawnError, interactive: bool) -> Optional[PipelineResult]:
        if token != self._generation:
            return self._stale_result(token, None, time.monotonic(), interactive)
        self._emit_line("---")
        self._emit_line(f"✗ Failed to start pipeline: {error}")
        if error.hint:
            self._emit_line("")
            for hint_line in error.hint.splitlines():
                self._emit_line(hint_line)
        return self._finish(token, PipelineStatus.ERROR, error=error, interactive=interactive)

    def _finish(
        self,
        token: int,
        status: PipelineStatus,
        returncode: Optional[int] = None,
        duration: float = 0.0,
        error: Optional[CallsiteError] = None,
        interactive: bool = True,
    ) -> PipelineResult:
        result = PipelineResult(
            token=token,
            status=status,
            returncode=returncode,
            duration_s=duration,
            error=error,
            output_tail=self._tail(),
            interactive=interactive,
        )
        self.last_result = result
        if error is None:
            logger.info("pipeline_succeeded", duration_s=round(duration, 1), token=token)
        elif interactive:
            logger.error("pipeline_failed", error=str(error), returncode=returncode, token=token)
        else:
            logger.warning("pipeline_failed", error=str(error), returncode=returncode, token=token)
        self._set_status(status, result=result, interactive=interactive)
        return result

    def _stale_result(
        self,
        token: int,
        returncode: Optional[int],
        started: float,
        interactive: bool,
    ) -> PipelineResult:
        """Result for a run superseded by ``cancel()``; leaves state untouched."""
        logger.info("pipeline_stale_exit_ignored", token=token, current=self._generation, returncode=returncode)
        return PipelineResult(
            token=token,
            status=PipelineStatus.IDLE,
            returncode=returncode,
            duration_s=time.monotonic() - started,
            error=PipelineCancelledError("Pipeline run was cancelled"),
            interactive=interactive,
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> bool:
        """Terminate the running pipeline, if any.

        Does not wait for the process to exit.  The supervisor moves to
        ``IDLE`` at once and the terminated run's eventual exit is
        ignored.

        Returns:
            ``True`` if a run was cancelled.
        """
        if self._status is not PipelineStatus.RUNNING:
            return False
        self._abort(self._process, "pipeline_cancelled")
        return True

    def _task_cancelled(self, token: int, process: Optional[asyncio.subprocess.Process]) -> None:
        """Clean up after the task awaiting ``run()`` was cancelled."""
        if token == self._generation:
            self._abort(process, "pipeline_task_cancelled")
        elif process is not None:
            _terminate(process)

    def _abort(self, process: Optional[asyncio.subprocess.Process], event: str) -> None:
        # Invalidate the running generation before anything else.
        self._generation += 1
        self._process = None
        if process is not None:
            _terminate(process)
        self._emit_line("---")
        self._emit_line("Pipeline cancelled")
        logger.info(event, pid=process.pid if process else None)
        self._set_status(PipelineStatus.IDLE)

    # ------------------------------------------------------------------
    # Debounce
    # ------------------------------------------------------------------

    def trigger_debounced(
        self,
        delay_ms: int | None = None,
        options: PipelineOptions | None = None,
    ) -> None:
        """Schedule a background run *delay_ms* after the last trigger.

        Each call resets the timer.  If a run is in progress when the
        timer fires, the scheduled run is dropped.  Must be called on the
        event-loop thread.
        """
        delay = self._settings.debounce_delay_ms if delay_ms is None else delay_ms
        loop = asyncio.get_running_loop()
        if self._debounce is not None:
            self._debounce.cancel()
        self._debounce = loop.call_later(delay / 1000.0, self._debounce_fired, options)
        logger.debug("pipeline_debounce_armed", delay_ms=delay)

    def _debounce_fired(self, options: PipelineOptions | None) -> None:
        self._debounce = None
        if self._status is PipelineStatus.RUNNING:
            logger.info("pipeline_debounced_run_dropped")
            return
        self.start(options, interactive=False)

    def start(
        self,
        options: PipelineOptions | None = None,
        interactive: bool = True,
    ) -> Optional[asyncio.Task]:
        """Schedule :meth:`run` as a background task on the running loop.

        Returns ``None`` without scheduling anything if a run is already
        in progress.
        """
        if self._status is PipelineStatus.RUNNING:
            logger.info("pipeline_already_running")
            return None
        task = asyncio.ensure_future(self.run(options, interactive=interactive))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    @property
    def debounce_pending(self) -> bool:
        return self._debounce is not None

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Cancel the timer and any running process, then wait for tasks."""
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        self.cancel()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


def _terminate(process: asyncio.subprocess.Process) -> None:
    _signal_group(process, "SIGTERM", process.terminate)


def _kill(process: asyncio.subprocess.Process) -> None:
    _signal_group(process, "SIGKILL", process.kill)


def _signal_group(process: asyncio.subprocess.Process, name: str, fallback: Callable[[], None]) -> None:
    """Signal the pipeline and every tool it started.

    On POSIX the pipeline leads its own session, so its process group
    covers ``scip``/``verus`` children that may hold the output pipes.
    """
    try:
        if _POSIX:
            os.killpg(process.pid, getattr(signal, name))
        else:
            fallback()
    except (ProcessLookupError, PermissionError):
        pass
