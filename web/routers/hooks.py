"""Repository webhook endpoint.

POST /hooks/repository accepts the flat event shape
({revisionId, branch, eventKind}) and the repository state-change shape
({detail: {event, referenceType, referenceName, commitId}}).
"""

import hmac
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException
from fastapi import status as http_status

from sitepipe.config import get_settings
from sitepipe.pipeline.service import Pipeline
from sitepipe.source.events import InvalidTriggerError, parse_event
from web.deps import get_pipeline

router = APIRouter()


@router.post("/repository", status_code=http_status.HTTP_202_ACCEPTED)
def repository_event(
    event: dict[str, Any] = Body(...),
    x_sitepipe_token: str | None = Header(None),
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Receive a repository change event.

    Invalid events are rejected and must not be redelivered; duplicate
    revisions are acknowledged without starting a run.

    Raises:
        HTTPException: 401 on a bad token, 400 on an invalid trigger.
    """
    expected = get_settings().webhook_token
    if expected and not hmac.compare_digest(x_sitepipe_token or "", expected):
        raise HTTPException(
            status_code=http_status.HTTP_401_UNAUTHORIZED,
            detail={"code": "invalid_token", "message": "Invalid webhook token"},
        )

    try:
        revision = parse_event(event, pipeline.site.tracked_branch)
    except InvalidTriggerError as e:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail={"code": e.code, "message": str(e)},
        ) from None

    forwarded = pipeline.watcher.receive(event)
    return {
        "accepted": forwarded is not None,
        "duplicate": forwarded is None,
        "revision_id": revision.revision_id,
        "state": pipeline.orchestrator.state.value,
    }
