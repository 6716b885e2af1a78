"""Shared type definitions for sitepipe.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class RunStatus(str, Enum):
    """Status of a pipeline run."""

    PENDING = "pending"
    BUILDING = "building"
    PUBLISHING = "publishing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether the status is final."""
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED)


class PipelineState(str, Enum):
    """State of the pipeline orchestrator."""

    IDLE = "idle"
    QUEUED = "queued"
    BUILDING = "building"
    PUBLISHING = "publishing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class EventKind(str, Enum):
    """Kind of repository reference change."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class ErrorKind(str, Enum):
    """Error taxonomy surfaced on failed runs and API errors."""

    INVALID_TRIGGER = "invalid_trigger"
    BUILD_FAILURE = "build_failure"
    PUBLISH_FAILURE = "publish_failure"
    CONFIGURATION_ERROR = "configuration_error"


class ViewerProtocolPolicy(str, Enum):
    """How the edge treats plain HTTP viewer requests."""

    REDIRECT_TO_HTTPS = "redirect-to-https"
    ALLOW_ALL = "allow-all"


@dataclass(frozen=True)
class SourceRevision:
    """An immutable commit on a tracked branch."""

    revision_id: str
    branch: str
    timestamp: datetime


@dataclass(frozen=True)
class ArtifactFile:
    """A single file inside a build artifact."""

    path: str
    size_bytes: int
    sha256: str


@dataclass
class StageOutcome:
    """Result of a pipeline stage.

    A stage either succeeds (optionally handing over an artifact) or fails
    with an error kind, a stable code and a message. Stages never raise
    into the orchestrator.
    """

    success: bool
    artifact: object | None = None
    error_type: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    log_path: str | None = None
    details: dict[str, object] = field(default_factory=dict)

    @classmethod
    def ok(cls, artifact: object | None = None, **details: object) -> "StageOutcome":
        """Build a successful outcome."""
        return cls(success=True, artifact=artifact, details=dict(details))

    @classmethod
    def failed(
        cls,
        error_type: ErrorKind,
        message: str,
        code: str | None = None,
        log_path: str | None = None,
    ) -> "StageOutcome":
        """Build a failed outcome."""
        return cls(
            success=False,
            error_type=error_type.value,
            error_code=code,
            error_message=message,
            log_path=log_path,
        )


__all__ = [
    "ArtifactFile",
    "ErrorKind",
    "EventKind",
    "PipelineState",
    "RunStatus",
    "SourceRevision",
    "StageOutcome",
    "ViewerProtocolPolicy",
]
