"""Pipeline service.

This module wires a complete pipeline from settings and provides the run
queries used by the CLI and the HTTP API.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from sitepipe.builds.service import BuildStage
from sitepipe.config import ConfigurationError, SiteConfig, load_site_config
from sitepipe.pipeline.models import PipelineRun
from sitepipe.pipeline.orchestrator import PipelineOrchestrator
from sitepipe.publish.service import PublishStage
from sitepipe.publish.target import LocalDirectoryTarget
from sitepipe.source.checkout import GitSource, SourceProvider
from sitepipe.source.watcher import SourceWatcher
from sitepipe.store import LocalArtifactStore
from sitepipe.types import RunStatus

if TYPE_CHECKING:
    from sitepipe.config import Settings

logger = logging.getLogger(__name__)


class RunNotFoundError(Exception):
    """Raised when a pipeline run is not found."""

    def __init__(self, run_id: int, code: str = "run_not_found") -> None:
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id
        self.code = code


def get_run(session: Session, run_id: int) -> PipelineRun:
    """Get a pipeline run by ID.

    Args:
        session: Database session.
        run_id: Run ID.

    Returns:
        PipelineRun instance.

    Raises:
        RunNotFoundError: If the run is not found.
    """
    run = session.get(PipelineRun, run_id)
    if run is None:
        raise RunNotFoundError(run_id)
    return run


def list_runs(
    session: Session,
    revision_id: str | None = None,
    status: RunStatus | None = None,
    limit: int = 100,
) -> list[PipelineRun]:
    """List pipeline runs, newest first.

    Args:
        session: Database session.
        revision_id: Filter by revision.
        status: Filter by status.
        limit: Maximum results to return.

    Returns:
        List of PipelineRun instances.
    """
    stmt = select(PipelineRun)

    if revision_id is not None:
        stmt = stmt.where(PipelineRun.revision_id == revision_id)
    if status is not None:
        stmt = stmt.where(PipelineRun.status == status.value)

    stmt = stmt.order_by(PipelineRun.id.desc()).limit(limit)

    return list(session.execute(stmt).scalars().all())


def latest_succeeded_run(session: Session) -> PipelineRun | None:
    """Return the most recent successful run, if any."""
    stmt = (
        select(PipelineRun)
        .where(PipelineRun.status == RunStatus.SUCCEEDED.value)
        .order_by(PipelineRun.id.desc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


def run_to_dict(run: PipelineRun) -> dict[str, Any]:
    """Convert a run to a JSON-compatible dict with stable keys."""
    return {
        "id": run.id,
        "revision_id": run.revision_id,
        "branch": run.branch,
        "status": run.status,
        "stage": run.stage,
        "requested_at": run.requested_at.isoformat() if run.requested_at else None,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
        "artifact_id": run.artifact_id,
        "manifest": run.manifest,
        "log_path": run.log_path,
        "error_type": run.error_type,
        "error_code": run.error_code,
        "error_message": run.error_message,
        "retry_of": run.retry_of,
    }


@dataclass
class Pipeline:
    """A fully wired pipeline for one site.

    Attributes:
        site: Validated site configuration.
        orchestrator: Run coordinator.
        watcher: Event gate feeding the orchestrator.
        target: Origin holding the published set.
        store: Artifact store.
    """

    site: SiteConfig
    orchestrator: PipelineOrchestrator
    watcher: SourceWatcher
    target: LocalDirectoryTarget
    store: LocalArtifactStore


def remember_deployed(pipeline: Pipeline, session: Session, limit: int) -> None:
    """Seed the watcher with revisions that were already deployed."""
    deployed = list_runs(session, status=RunStatus.SUCCEEDED, limit=limit)
    pipeline.watcher.mark_seen(reversed([r.revision_id for r in deployed]))


def create_pipeline(
    settings: Settings,
    session_factory: sessionmaker[Session],
    source: SourceProvider | None = None,
    site: SiteConfig | None = None,
) -> Pipeline:
    """Build a pipeline from settings.

    The site configuration is validated before anything else is created,
    so an invalid configuration never yields a running pipeline.

    Args:
        settings: Application settings.
        session_factory: Session factory for run records.
        source: Source provider; defaults to cloning settings.repository_url.
        site: Pre-validated site configuration.

    Returns:
        Pipeline with an orchestrator whose worker is not started.

    Raises:
        ConfigurationError: If the site or source configuration is invalid.
    """
    if site is None:
        site = load_site_config(settings)

    if source is None:
        if not settings.repository_url:
            raise ConfigurationError("repository_url is required")
        source = GitSource(settings.repository_url)

    store = LocalArtifactStore(settings.artifacts_dir)
    target = LocalDirectoryTarget(settings.publish_dir)
    build_stage = BuildStage.from_settings(
        settings, source, store, index_document=site.index_document
    )
    publish_stage = PublishStage.from_settings(settings, target)

    orchestrator = PipelineOrchestrator(
        build_stage=build_stage,
        publish_stage=publish_stage,
        session_factory=session_factory,
        cancel_stale_builds=settings.cancel_stale_builds,
    )
    watcher = SourceWatcher(
        tracked_branch=site.tracked_branch,
        on_revision=orchestrator.trigger,
        window=settings.dedup_window,
    )
    logger.info(
        "Pipeline ready for %s (branch %s)", site.canonical_host, site.tracked_branch
    )
    return Pipeline(
        site=site,
        orchestrator=orchestrator,
        watcher=watcher,
        target=target,
        store=store,
    )


__all__ = [
    "Pipeline",
    "RunNotFoundError",
    "create_pipeline",
    "get_run",
    "latest_succeeded_run",
    "list_runs",
    "remember_deployed",
    "run_to_dict",
]
