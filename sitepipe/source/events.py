"""Repository change events.

This module handles:
- Deciding whether a raw event qualifies for a deployment
- Parsing qualifying events into SourceRevision values

Two event shapes are accepted:

Flat trigger events::

    {"revisionId": "abc123", "branch": "master", "eventKind": "updated"}

Repository state-change notifications::

    {
        "detail-type": "CodeCommit Repository State Change",
        "time": "2024-01-01T00:00:00Z",
        "detail": {
            "event": "referenceUpdated",
            "referenceType": "branch",
            "referenceName": "master",
            "commitId": "abc123",
        },
    }

Filtering is a pure predicate over the event.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sitepipe.types import EventKind, SourceRevision

QUALIFYING_KINDS = frozenset({EventKind.CREATED.value, EventKind.UPDATED.value})

# State-change event names mapped onto flat event kinds
REFERENCE_EVENT_KINDS = {
    "referenceCreated": EventKind.CREATED.value,
    "referenceUpdated": EventKind.UPDATED.value,
    "referenceDeleted": EventKind.DELETED.value,
}

REVISION_ID_PATTERN = re.compile(r"^[A-Za-z0-9._\-]{1,128}$")


class InvalidTriggerError(Exception):
    """Raised when an event is malformed or does not qualify."""

    def __init__(self, message: str, code: str = "invalid_trigger") -> None:
        super().__init__(message)
        self.code = code


def _normalize(event: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten either accepted event shape to revisionId/branch/eventKind."""
    detail = event.get("detail")
    if isinstance(detail, Mapping):
        if detail.get("referenceType", "branch") != "branch":
            kind = None
        else:
            kind = REFERENCE_EVENT_KINDS.get(str(detail.get("event")))
        return {
            "revisionId": detail.get("commitId"),
            "branch": detail.get("referenceName"),
            "eventKind": kind,
            "timestamp": event.get("time"),
        }
    return {
        "revisionId": event.get("revisionId"),
        "branch": event.get("branch"),
        "eventKind": event.get("eventKind"),
        "timestamp": event.get("timestamp"),
    }


def is_qualifying_event(event: Mapping[str, Any], tracked_branch: str) -> bool:
    """Check whether an event should trigger a pipeline run.

    Args:
        event: Raw event mapping.
        tracked_branch: Branch whose changes are deployed.

    Returns:
        True if the branch matches and the kind is created or updated.
    """
    if not isinstance(event, Mapping):
        return False
    flat = _normalize(event)
    return (
        flat["branch"] == tracked_branch
        and flat["eventKind"] in QUALIFYING_KINDS
        and isinstance(flat["revisionId"], str)
        and REVISION_ID_PATTERN.match(flat["revisionId"]) is not None
    )


def _parse_timestamp(value: Any) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise InvalidTriggerError(f"Invalid event timestamp: {value!r}") from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_event(event: Mapping[str, Any], tracked_branch: str) -> SourceRevision:
    """Parse a qualifying event into a SourceRevision.

    Args:
        event: Raw event mapping.
        tracked_branch: Branch whose changes are deployed.

    Returns:
        SourceRevision for the event.

    Raises:
        InvalidTriggerError: If the event is malformed or unqualified.
    """
    if not isinstance(event, Mapping):
        raise InvalidTriggerError(
            f"Event must be a mapping, got {type(event).__name__}"
        )
    if not is_qualifying_event(event, tracked_branch):
        flat = _normalize(event)
        raise InvalidTriggerError(
            "Event does not qualify: "
            f"branch={flat['branch']!r} kind={flat['eventKind']!r} "
            f"revision={flat['revisionId']!r} (tracking {tracked_branch!r})"
        )
    flat = _normalize(event)
    return SourceRevision(
        revision_id=flat["revisionId"],
        branch=flat["branch"],
        timestamp=_parse_timestamp(flat["timestamp"]),
    )


__all__ = [
    "QUALIFYING_KINDS",
    "InvalidTriggerError",
    "is_qualifying_event",
    "parse_event",
]
