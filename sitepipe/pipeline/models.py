"""Pipeline ORM models.

This module defines the PipelineRun model storing one build-and-publish
attempt for a source revision.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sitepipe.db import Base
from sitepipe.types import RunStatus, SourceRevision


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PipelineRun(Base):
    """ORM model for pipeline runs.

    A PipelineRun captures a single execution attempt: the triggering
    revision, the stage it reached, its terminal status, and the artifact
    it produced. Once succeeded or failed, a run is never modified again;
    retrying a revision creates a new run.

    Attributes:
        id: Primary key.
        revision_id: Triggering commit.
        branch: Branch of the commit.
        revision_timestamp: Commit timestamp as reported by the event.
        status: Run status (pending, building, publishing, succeeded, failed).
        stage: Last stage entered (build, publish).
        requested_at: Timestamp when the run was created.
        started_at: Timestamp when the build started.
        finished_at: Timestamp when the run reached a terminal status.
        artifact_id: Content address of the built artifact.
        manifest: Relative paths of the artifact.
        log_path: Path to the build log.
        error_type: Error kind if the run failed.
        error_code: Stable error code if the run failed.
        error_message: Error message if the run failed.
        retry_of: ID of the run this one retries.
    """

    __tablename__ = "pipeline_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Triggering revision
    revision_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    branch: Mapped[str] = mapped_column(String(255), nullable=False)
    revision_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Status and timing
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RunStatus.PENDING.value, index=True
    )
    stage: Mapped[str | None] = mapped_column(String(20), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Output
    artifact_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    manifest: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Error tracking
    error_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    retry_of: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_pipeline_runs_revision_status", "revision_id", "status"),
    )

    def __init__(self, **kwargs: object) -> None:
        # Column defaults only apply on insert; runs change state before that
        kwargs.setdefault("status", RunStatus.PENDING.value)
        kwargs.setdefault("requested_at", _now())
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        """Return string representation of PipelineRun."""
        return (
            f"<PipelineRun(id={self.id}, revision_id='{self.revision_id}', "
            f"status='{self.status}')>"
        )

    @property
    def revision(self) -> SourceRevision:
        """The triggering revision."""
        return SourceRevision(
            revision_id=self.revision_id,
            branch=self.branch,
            timestamp=self.revision_timestamp or self.requested_at,
        )

    @property
    def is_terminal(self) -> bool:
        """Whether the run has finished."""
        return RunStatus(self.status).is_terminal

    def _check_not_terminal(self) -> None:
        if self.is_terminal:
            raise ValueError(f"Run {self.id} is already {self.status}")

    def mark_building(self) -> None:
        """Mark this run as building."""
        self._check_not_terminal()
        self.status = RunStatus.BUILDING.value
        self.stage = "build"
        self.started_at = _now()

    def mark_publishing(self, artifact_id: str, manifest: list[str]) -> None:
        """Mark this run as publishing an artifact."""
        self._check_not_terminal()
        self.status = RunStatus.PUBLISHING.value
        self.stage = "publish"
        self.artifact_id = artifact_id
        self.manifest = manifest

    def mark_succeeded(self) -> None:
        """Mark this run as succeeded."""
        self._check_not_terminal()
        self.status = RunStatus.SUCCEEDED.value
        self.finished_at = _now()

    def mark_failed(
        self,
        error_type: str | None = None,
        message: str | None = None,
        code: str | None = None,
    ) -> None:
        """Mark this run as failed.

        Args:
            error_type: Error kind.
            message: Error message details.
            code: Stable error code.
        """
        self._check_not_terminal()
        self.status = RunStatus.FAILED.value
        self.finished_at = _now()
        if error_type:
            self.error_type = error_type
        if message:
            self.error_message = message
        if code:
            self.error_code = code

    def is_succeeded(self) -> bool:
        """Check if this run succeeded."""
        return self.status == RunStatus.SUCCEEDED.value


__all__ = ["PipelineRun"]
