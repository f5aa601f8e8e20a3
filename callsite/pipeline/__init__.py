"""Supervision of the external ``scip-callgraph`` pipeline."""

from callsite.pipeline.prerequisites import PrerequisiteReport, Tool, check_prerequisites
from callsite.pipeline.supervisor import (
    PipelineResult,
    PipelineStatus,
    PipelineSupervisor,
    StatusChange,
)

__all__ = [
    "PipelineStatus",
    "PipelineResult",
    "PipelineSupervisor",
    "StatusChange",
    "PrerequisiteReport",
    "Tool",
    "check_prerequisites",
]
