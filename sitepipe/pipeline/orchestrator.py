"""Pipeline orchestrator.

The orchestrator is a single-writer state machine driving one run at a
time through the build and publish stages:

    idle --trigger--> queued --start--> building --ok--> publishing --ok--> succeeded
                                            |                 |
                                            +------fail-------+-----------> failed

    succeeded | failed --drain--> queued (revision waiting) or idle

Triggers land in a single queue slot that keeps only the latest revision.
The slot and the active-run marker are guarded by one lock; stage work
always runs outside it.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.orm import Session, sessionmaker

from sitepipe.builds.artifacts import BuildArtifact
from sitepipe.db import get_session
from sitepipe.pipeline.models import PipelineRun
from sitepipe.types import (
    ErrorKind,
    PipelineState,
    RunStatus,
    SourceRevision,
    StageOutcome,
)

logger = logging.getLogger(__name__)

# Number of state transitions kept for inspection
HISTORY_SIZE = 256


class RunNotRetryableError(Exception):
    """Raised when a run cannot be retried."""

    def __init__(
        self, run_id: int, status: str, code: str = "run_not_retryable"
    ) -> None:
        super().__init__(
            f"Run {run_id} is {status}; only finished runs can be retried"
        )
        self.run_id = run_id
        self.status = status
        self.code = code


class BuildRunner(Protocol):
    """Interface of the build stage as seen by the orchestrator."""

    def run(
        self,
        run_id: int,
        revision: SourceRevision,
        cancel_event: threading.Event | None = None,
    ) -> StageOutcome:
        """Build a revision."""
        ...


class Publisher(Protocol):
    """Interface of the publish stage as seen by the orchestrator."""

    def run(self, run_id: int, artifact: BuildArtifact) -> StageOutcome:
        """Publish an artifact."""
        ...


@dataclass(frozen=True)
class TriggerOutcome:
    """Result of placing a revision in the queue slot.

    Attributes:
        revision: The revision now waiting in the slot.
        state: Orchestrator state after the trigger.
        superseded: Previously queued revision that will never run, if any.
        cancelled_active: Whether the active build was asked to stop.
    """

    revision: SourceRevision
    state: PipelineState
    superseded: SourceRevision | None = None
    cancelled_active: bool = False


@dataclass(frozen=True)
class _QueuedRevision:
    revision: SourceRevision
    retry_of: int | None = None


class PipelineOrchestrator:
    """Coordinates build and publish for one site.

    Args:
        build_stage: Stage producing artifacts.
        publish_stage: Stage making artifacts live.
        session_factory: Session factory for run records.
        cancel_stale_builds: Stop the active build when a newer revision
            is queued.
    """

    def __init__(
        self,
        build_stage: BuildRunner,
        publish_stage: Publisher,
        session_factory: sessionmaker[Session],
        cancel_stale_builds: bool = False,
    ) -> None:
        self.build_stage = build_stage
        self.publish_stage = publish_stage
        self.session_factory = session_factory
        self.cancel_stale_builds = cancel_stale_builds

        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._slot: _QueuedRevision | None = None
        self._active_run_id: int | None = None
        self._active_claimed = False
        self._cancel_event: threading.Event | None = None
        self._state = PipelineState.IDLE
        self._history: deque[PipelineState] = deque(
            [PipelineState.IDLE], maxlen=HISTORY_SIZE
        )

        self._worker: threading.Thread | None = None
        self._stopping = False

    # -- observation ------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        """Current orchestrator state."""
        with self._lock:
            return self._state

    @property
    def queued_revision(self) -> SourceRevision | None:
        """Revision waiting in the queue slot."""
        with self._lock:
            return self._slot.revision if self._slot else None

    @property
    def active_run_id(self) -> int | None:
        """ID of the run in building or publishing."""
        with self._lock:
            return self._active_run_id

    @property
    def history(self) -> list[PipelineState]:
        """Recent state transitions, oldest first."""
        with self._lock:
            return list(self._history)

    def _set_state(self, state: PipelineState) -> None:
        # Caller holds the lock
        if state != self._state:
            logger.debug("Pipeline state %s -> %s", self._state.value, state.value)
            self._state = state
            self._history.append(state)

    # -- triggering -------------------------------------------------------

    def trigger(
        self, revision: SourceRevision, retry_of: int | None = None
    ) -> TriggerOutcome:
        """Place a revision in the queue slot.

        The slot holds only the latest revision; an older revision still
        waiting there is superseded and never runs.

        Args:
            revision: Revision to build and publish.
            retry_of: ID of the run this request retries.

        Returns:
            TriggerOutcome describing the slot after the update.
        """
        cancelled = False
        with self._lock:
            superseded = self._slot.revision if self._slot else None
            self._slot = _QueuedRevision(revision, retry_of)
            if not self._active_claimed:
                self._set_state(PipelineState.QUEUED)
            elif (
                self.cancel_stale_builds
                and self._state == PipelineState.BUILDING
                and self._cancel_event is not None
            ):
                self._cancel_event.set()
                cancelled = True
            state = self._state
            self._wakeup.notify_all()

        if superseded is not None:
            logger.info(
                "Revision %s superseded by %s before it ran",
                superseded.revision_id,
                revision.revision_id,
            )
        logger.info("Revision %s queued (state %s)", revision.revision_id, state.value)
        return TriggerOutcome(
            revision=revision,
            state=state,
            superseded=superseded,
            cancelled_active=cancelled,
        )

    def retry(self, run_id: int) -> TriggerOutcome:
        """Queue the revision of a finished run again.

        The retry becomes a new run; the original record is never changed.

        Args:
            run_id: ID of a succeeded or failed run.

        Returns:
            TriggerOutcome of the re-queued revision.

        Raises:
            RunNotFoundError: If the run does not exist.
            RunNotRetryableError: If the run has not finished.
        """
        from sitepipe.pipeline.service import get_run

        with get_session(self.session_factory) as session:
            run = get_run(session, run_id)
            if not run.is_terminal:
                raise RunNotRetryableError(run_id, run.status)
            revision = run.revision
        return self.trigger(revision, retry_of=run_id)

    # -- execution --------------------------------------------------------

    def _claim(self) -> tuple[_QueuedRevision, threading.Event] | None:
        """Take the slot if no run is active."""
        with self._lock:
            if self._active_claimed or self._slot is None:
                return None
            queued = self._slot
            self._slot = None
            self._active_claimed = True
            self._cancel_event = threading.Event()
            self._set_state(PipelineState.BUILDING)
            return queued, self._cancel_event

    def _release(self, status: RunStatus) -> None:
        """Leave the terminal state and drain the queue slot."""
        with self._lock:
            self._set_state(
                PipelineState.SUCCEEDED
                if status == RunStatus.SUCCEEDED
                else PipelineState.FAILED
            )
            self._active_run_id = None
            self._active_claimed = False
            self._cancel_event = None
            self._set_state(
                PipelineState.QUEUED if self._slot is not None else PipelineState.IDLE
            )
            self._wakeup.notify_all()

    def _invoke(
        self, stage: str, func: Callable[[], StageOutcome], kind: ErrorKind
    ) -> StageOutcome:
        """Call a stage, turning any escaped exception into a failure."""
        try:
            return func()
        except Exception as e:
            logger.exception("Unexpected error in %s stage", stage)
            return StageOutcome.failed(
                kind, f"Unexpected {stage} error: {e}", code=f"{stage}_internal_error"
            )

    def _update_run(
        self, run_id: int, update: Callable[[PipelineRun], None]
    ) -> PipelineRun:
        with get_session(self.session_factory) as session:
            run = session.get(PipelineRun, run_id)
            if run is None:
                raise RuntimeError(f"Run record {run_id} disappeared")
            update(run)
            return run

    def _fail(self, run_id: int, outcome: StageOutcome) -> PipelineRun:
        def apply(run: PipelineRun) -> None:
            if outcome.log_path:
                run.log_path = outcome.log_path
            run.mark_failed(
                outcome.error_type, outcome.error_message, outcome.error_code
            )

        return self._update_run(run_id, apply)

    def run_next(self) -> PipelineRun | None:
        """Run the queued revision if no run is active.

        Returns:
            The finished PipelineRun, or None if nothing ran.
        """
        claimed = self._claim()
        if claimed is None:
            return None
        queued, cancel_event = claimed
        revision = queued.revision

        status = RunStatus.FAILED
        try:
            with get_session(self.session_factory) as session:
                run = PipelineRun(
                    revision_id=revision.revision_id,
                    branch=revision.branch,
                    revision_timestamp=revision.timestamp,
                    retry_of=queued.retry_of,
                )
                run.mark_building()
                session.add(run)
                session.flush()
                run_id = run.id
            with self._lock:
                self._active_run_id = run_id
            logger.info("Run %d started for revision %s", run_id, revision.revision_id)

            build = self._invoke(
                "build",
                lambda: self.build_stage.run(run_id, revision, cancel_event),
                ErrorKind.BUILD_FAILURE,
            )
            if build.success and cancel_event.is_set():
                # A newer revision is waiting; this artifact must not go live
                build = StageOutcome.failed(
                    ErrorKind.BUILD_FAILURE,
                    "Build superseded by a newer revision; artifact discarded",
                    code="build_cancelled",
                    log_path=build.log_path,
                )
            if not build.success or not isinstance(build.artifact, BuildArtifact):
                if build.success:
                    build = StageOutcome.failed(
                        ErrorKind.BUILD_FAILURE,
                        "Build stage returned no artifact",
                        code="missing_artifact",
                        log_path=build.log_path,
                    )
                return self._fail(run_id, build)

            artifact = build.artifact

            def start_publish(run: PipelineRun) -> None:
                run.log_path = build.log_path
                run.mark_publishing(artifact.artifact_id, artifact.manifest)

            self._update_run(run_id, start_publish)
            with self._lock:
                self._set_state(PipelineState.PUBLISHING)

            published = self._invoke(
                "publish",
                lambda: self.publish_stage.run(run_id, artifact),
                ErrorKind.PUBLISH_FAILURE,
            )
            if not published.success:
                return self._fail(run_id, published)

            run = self._update_run(run_id, PipelineRun.mark_succeeded)
            status = RunStatus.SUCCEEDED
            logger.info(
                "Run %d succeeded: %s is live", run_id, artifact.artifact_id[:23]
            )
            return run
        finally:
            self._release(status)

    def run_until_idle(self) -> list[PipelineRun]:
        """Run queued revisions until the slot is empty.

        Returns:
            The finished runs in execution order.
        """
        runs = []
        while True:
            run = self.run_next()
            if run is None:
                return runs
            runs.append(run)

    # -- background worker ------------------------------------------------

    def _worker_loop(self) -> None:
        while True:
            with self._lock:
                while not self._stopping and (
                    self._slot is None or self._active_claimed
                ):
                    self._wakeup.wait()
                if self._stopping:
                    return
            try:
                self.run_until_idle()
            except Exception:
                logger.exception("Pipeline worker iteration failed")

    def start(self) -> None:
        """Start a background worker draining the queue."""
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._stopping = False
            self._worker = threading.Thread(
                target=self._worker_loop, name="sitepipe-worker", daemon=True
            )
            self._worker.start()
        logger.info("Pipeline worker started")

    def stop(self, timeout: float | None = None) -> None:
        """Stop the background worker after the active run finishes."""
        with self._lock:
            worker = self._worker
            self._stopping = True
            self._wakeup.notify_all()
        if worker is not None:
            worker.join(timeout)
        with self._lock:
            self._worker = None
        logger.info("Pipeline worker stopped")

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no run is active and the slot is empty.

        Returns:
            True if the pipeline went idle within the timeout.
        """
        with self._lock:
            return self._wakeup.wait_for(
                lambda: not self._active_claimed and self._slot is None, timeout
            )


__all__ = [
    "BuildRunner",
    "PipelineOrchestrator",
    "Publisher",
    "RunNotRetryableError",
    "TriggerOutcome",
]
