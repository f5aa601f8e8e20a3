"""FastAPI route definitions for the pipeline supervisor.

Provides endpoints for:

- ``POST /pipeline/run`` — start a run (optionally wait for it).
- ``POST /pipeline/trigger`` — debounced, background run.
- ``POST /pipeline/cancel`` — terminate the running process.
- ``GET /pipeline/status`` — current state and last result.
- ``GET /pipeline/output`` — buffered output as NDJSON.
- ``GET /pipeline/prerequisites`` — probe external tools.
"""

from __future__ import annotations

import json
from typing import AsyncIterator, Optional

from pydantic import BaseModel, Field

from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from fastapi.responses import StreamingResponse

from callsite.models.pipeline import PipelineOptions
from callsite.pipeline.prerequisites import check_prerequisites
from callsite.pipeline.supervisor import PipelineResult, PipelineSupervisor

pipeline_router = APIRouter(prefix="/pipeline")


# ------------------------------------------------------------------
# Request / Response schemas
# ------------------------------------------------------------------


class RunResultResponse(BaseModel):
    """Summary of a finished run."""

    token: int
    status: str
    returncode: Optional[int] = None
    duration_s: float = 0.0
    error: Optional[str] = None
    error_type: Optional[str] = None
    hint: Optional[str] = None
    output_tail: list[str] = Field(default_factory=list)


class StatusResponse(BaseModel):
    """Response from ``GET /pipeline/status`` and the action endpoints."""

    status: str
    debounce_pending: bool = False
    last_result: Optional[RunResultResponse] = None


class CancelResponse(BaseModel):
    cancelled: bool
    status: str


class PrerequisitesResponse(BaseModel):
    ok: bool
    missing: list[str] = Field(default_factory=list)
    optional_missing: list[str] = Field(default_factory=list)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _supervisor(request: Request) -> PipelineSupervisor:
    return request.app.state.supervisor


def _result(result: Optional[PipelineResult]) -> Optional[RunResultResponse]:
    if result is None:
        return None
    error = result.error
    return RunResultResponse(
        token=result.token,
        status=result.status.value,
        returncode=result.returncode,
        duration_s=round(result.duration_s, 3),
        error=str(error) if error else None,
        error_type=type(error).__name__ if error else None,
        hint=getattr(error, "hint", None) or None,
        output_tail=result.output_tail,
    )


def _status(supervisor: PipelineSupervisor) -> StatusResponse:
    return StatusResponse(
        status=supervisor.status.value,
        debounce_pending=supervisor.debounce_pending,
        last_result=_result(supervisor.last_result),
    )


async def _stream_ndjson(lines: list[str]) -> AsyncIterator[str]:
    """Yield each output line as ``{"n": <line number>, "line": <text>}``."""
    for number, line in enumerate(lines, start=1):
        yield json.dumps({"n": number, "line": line}, ensure_ascii=False) + "\n"


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------


@pipeline_router.post(
    "/run",
    response_model=StatusResponse,
    summary="Run the pipeline",
    description=(
        "Start the scip-callgraph pipeline for the served project.  By "
        "default the run happens in the background and the response is "
        "202; pass ``wait=true`` to block until it finishes.  Returns 409 "
        "if a run is already in progress."
    ),
)
async def run_pipeline(
    request: Request,
    response: Response,
    options: Optional[PipelineOptions] = None,
    wait: bool = Query(False, description="Wait for the run to finish."),
) -> StatusResponse:
    supervisor = _supervisor(request)
    if wait:
        result = await supervisor.run(options)
        if result is None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Pipeline is already running")
        return _status(supervisor)

    if supervisor.start(options) is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Pipeline is already running")
    response.status_code = status.HTTP_202_ACCEPTED
    return StatusResponse(status="running", last_result=_result(supervisor.last_result))


@pipeline_router.post(
    "/trigger",
    response_model=StatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Schedule a debounced run",
)
async def trigger_pipeline(
    request: Request,
    delay_ms: Optional[int] = Query(None, ge=0, description="Override the configured debounce delay."),
) -> StatusResponse:
    supervisor = _supervisor(request)
    supervisor.trigger_debounced(delay_ms)
    return _status(supervisor)


@pipeline_router.post(
    "/cancel",
    response_model=CancelResponse,
    summary="Cancel the running pipeline",
)
async def cancel_pipeline(request: Request) -> CancelResponse:
    supervisor = _supervisor(request)
    cancelled = supervisor.cancel()
    return CancelResponse(cancelled=cancelled, status=supervisor.status.value)


@pipeline_router.get(
    "/status",
    response_model=StatusResponse,
    summary="Current pipeline status",
)
async def pipeline_status(request: Request) -> StatusResponse:
    return _status(_supervisor(request))


@pipeline_router.get(
    "/output",
    summary="Buffered pipeline output",
    description="Output of the current or last run as NDJSON, one line per record.",
)
async def pipeline_output(request: Request) -> StreamingResponse:
    lines = _supervisor(request).output
    return StreamingResponse(
        _stream_ndjson(lines),
        media_type="application/x-ndjson",
        headers={"X-Total-Lines": str(len(lines))},
    )


@pipeline_router.get(
    "/prerequisites",
    response_model=PrerequisitesResponse,
    summary="Probe external tools",
)
async def prerequisites() -> PrerequisitesResponse:
    report = await check_prerequisites()
    return PrerequisitesResponse(
        ok=report.ok,
        missing=report.missing,
        optional_missing=report.optional_missing,
    )
