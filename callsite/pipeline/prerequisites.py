"""Probe the external tools the pipeline depends on.

Each tool is invoked with a version flag; exit status 0 means the tool
is present and usable.  Results are never cached, so a tool installed
after start-up is picked up by the next :func:`check_prerequisites`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Sequence

import structlog

from callsite.core.errors import PrerequisiteMissing

logger = structlog.get_logger(__name__)

# Seconds to wait for a single version probe.
PROBE_TIMEOUT_S: float = 30.0


@dataclass(frozen=True)
class Tool:
    """An external executable and how to probe it.

    Attributes:
        name: Display name.
        probe: argv that prints a version and exits 0 when usable.
        hint: Shown next to the name when the tool is missing.
        required: Optional tools are probed but never reported missing.
    """

    name: str
    probe: tuple[str, ...]
    hint: str = ""
    required: bool = True

    def describe(self) -> str:
        return f"{self.name} ({self.hint})" if self.hint else self.name


DEFAULT_TOOLS: tuple[Tool, ...] = (
    Tool("verus-analyzer", ("verus-analyzer", "--version"), hint="not found in PATH"),
    Tool(
        "scip",
        ("scip", "--version"),
        hint=(
            "download from https://github.com/sourcegraph/scip/releases or build with: "
            "git clone https://github.com/sourcegraph/scip.git && cd scip && go build ./cmd/scip"
        ),
    ),
    Tool("cargo verus", ("cargo", "verus", "--version"), required=False),
)


@dataclass
class PrerequisiteReport:
    """Outcome of one probe round."""

    missing: list[str] = field(default_factory=list)
    optional_missing: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing

    def raise_if_missing(self) -> None:
        if self.missing:
            raise PrerequisiteMissing(self.missing)


async def probe(argv: Sequence[str], timeout: float = PROBE_TIMEOUT_S) -> bool:
    """Return ``True`` if *argv* runs and exits 0 within *timeout*."""
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        return False

    try:
        returncode = await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
        return False
    return returncode == 0


async def check_prerequisites(tools: Sequence[Tool] = DEFAULT_TOOLS) -> PrerequisiteReport:
    """Probe every tool concurrently and report which are missing.

    Args:
        tools: Tools to probe; defaults to :data:`DEFAULT_TOOLS`.

    Returns:
        A :class:`PrerequisiteReport`.  Only required tools count
        against :attr:`PrerequisiteReport.ok`.
    """
    results = await asyncio.gather(*(probe(tool.probe) for tool in tools))
    report = PrerequisiteReport()
    for tool, available in zip(tools, results):
        if available:
            continue
        if tool.required:
            report.missing.append(tool.describe())
            logger.warning("prerequisite_missing", tool=tool.name)
        else:
            report.optional_missing.append(tool.name)
            logger.info("optional_prerequisite_missing", tool=tool.name)
    return report
