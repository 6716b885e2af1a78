"""Pipeline orchestration: run records, the single-flight state machine and wiring."""

from sitepipe.pipeline.models import PipelineRun
from sitepipe.pipeline.orchestrator import (
    PipelineOrchestrator,
    RunNotRetryableError,
    TriggerOutcome,
)
from sitepipe.pipeline.service import (
    Pipeline,
    RunNotFoundError,
    create_pipeline,
    get_run,
    list_runs,
)

__all__ = [
    "Pipeline",
    "PipelineOrchestrator",
    "PipelineRun",
    "RunNotFoundError",
    "RunNotRetryableError",
    "TriggerOutcome",
    "create_pipeline",
    "get_run",
    "list_runs",
]
