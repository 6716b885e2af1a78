"""Pipeline run endpoints.

- GET /runs - List runs
- GET /runs/state - Orchestrator state and queue slot
- GET /runs/{id} - Get run by ID
- POST /runs/{id}/retry - Queue the revision of a finished run again
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as http_status
from sqlalchemy.orm import Session

from sitepipe.pipeline.orchestrator import RunNotRetryableError
from sitepipe.pipeline.service import (
    Pipeline,
    RunNotFoundError,
    get_run,
    list_runs,
    run_to_dict,
)
from sitepipe.types import RunStatus
from web.deps import get_db, get_pipeline

router = APIRouter()


@router.get("")
def list_runs_endpoint(
    revision: str | None = Query(None, description="Filter by revision id"),
    status: str | None = Query(None, description="Filter by status"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum results"),
    db: Session = Depends(get_db),
) -> list[dict[str, Any]]:
    """List pipeline runs, newest first.

    Args:
        revision: Filter by revision id.
        status: Filter by status.
        limit: Maximum results.
        db: Database session.

    Returns:
        List of run records.
    """
    status_filter: RunStatus | None = None
    if status:
        try:
            status_filter = RunStatus(status)
        except ValueError:
            valid = ", ".join(s.value for s in RunStatus)
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "invalid_status",
                    "message": f"Invalid status: {status}. Valid values: {valid}",
                },
            ) from None

    runs = list_runs(db, revision_id=revision, status=status_filter, limit=limit)
    return [run_to_dict(r) for r in runs]


@router.get("/state")
def pipeline_state(pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    """Get the orchestrator state.

    Returns:
        State, active run and queued revision.
    """
    orchestrator = pipeline.orchestrator
    queued = orchestrator.queued_revision
    return {
        "state": orchestrator.state.value,
        "active_run_id": orchestrator.active_run_id,
        "queued_revision": queued.revision_id if queued else None,
    }


@router.get("/{run_id}")
def get_run_endpoint(
    run_id: int,
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Get a run by ID.

    Raises:
        HTTPException: If the run is not found.
    """
    try:
        return run_to_dict(get_run(db, run_id))
    except RunNotFoundError as e:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={"code": e.code, "message": str(e)},
        ) from None


@router.post("/{run_id}/retry", status_code=http_status.HTTP_202_ACCEPTED)
def retry_run_endpoint(
    run_id: int,
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Queue the revision of a finished run as a new run.

    Raises:
        HTTPException: 404 if the run is unknown, 409 if it is still active.
    """
    try:
        outcome = pipeline.orchestrator.retry(run_id)
    except RunNotFoundError as e:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={"code": e.code, "message": str(e)},
        ) from None
    except RunNotRetryableError as e:
        raise HTTPException(
            status_code=http_status.HTTP_409_CONFLICT,
            detail={"code": e.code, "message": str(e)},
        ) from None
    return {
        "retry_of": run_id,
        "revision_id": outcome.revision.revision_id,
        "state": outcome.state.value,
    }
