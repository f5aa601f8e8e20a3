"""Exception hierarchy shared by the index manager and pipeline supervisor.

The index manager raises :class:`ParseError` and :class:`NotFoundError`
directly to its callers.  The pipeline supervisor never raises
process-level failures; it attaches the matching exception to the
:class:`~callsite.pipeline.supervisor.PipelineResult` instead.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence


class CallsiteError(Exception):
    """Base class for all Callsite errors."""


class ParseError(CallsiteError):
    """The persisted call graph is not valid JSON or violates the schema."""

    def __init__(self, message: str, source: Path | None = None) -> None:
        self.source = source
        if source is not None:
            message = f"{source}: {message}"
        super().__init__(message)


class NotFoundError(CallsiteError):
    """The call-graph file does not exist.

    Attributes:
        path: The resolved location that was probed.
        hint: Human-readable instructions for regenerating the file.
    """

    def __init__(self, path: Path, hint: str) -> None:
        self.path = path
        self.hint = hint
        super().__init__(f"Call graph index not found: {path}\n\n{hint}")


class ProcessSpawnError(CallsiteError):
    """The pipeline executable could not be started.

    Attributes:
        command: The argv that was attempted.
        cause: ``"not_found"``, ``"permission_denied"`` or ``"os_error"``.
        hint: Remediation text, empty when there is nothing useful to say.
    """

    def __init__(self, command: Sequence[str], cause: str, detail: str, hint: str = "") -> None:
        self.command = list(command)
        self.cause = cause
        self.hint = hint
        super().__init__(f"Failed to start pipeline ({cause}): {detail}")


class ProcessExitError(CallsiteError):
    """The pipeline exited unsuccessfully or was killed after the timeout.

    Attributes:
        returncode: Exit status, ``None`` if the process had to be killed.
        cause: ``"exit"`` or ``"timeout"``.
        tail: Last lines of combined stdout/stderr.
    """

    def __init__(self, returncode: int | None, tail: Sequence[str], cause: str = "exit") -> None:
        self.returncode = returncode
        self.cause = cause
        self.tail = list(tail)
        if cause == "timeout":
            message = "Pipeline timed out and was killed"
        else:
            message = f"Pipeline failed with exit code {returncode}"
        super().__init__(message)


class SupervisionError(CallsiteError):
    """Watching a started pipeline process failed unexpectedly.

    The process is killed and the run is reported as an error.
    """


class PipelineCancelledError(CallsiteError):
    """The run was cancelled by the user.  Not a failure."""


class PrerequisiteMissing(CallsiteError):
    """One or more required external tools are unavailable.

    Informational: the pipeline may still be attempted.
    """

    def __init__(self, missing: Sequence[str]) -> None:
        self.missing = list(missing)
        super().__init__("Missing prerequisites:\n" + "\n".join(f"  - {m}" for m in self.missing))
