"""Build stage.

This module provides the high-level build API used by the orchestrator:
- Materialize the revision into a fresh working tree
- Load the build specification
- Run the install/pre_build/build/post_build phases
- Validate the site output
- Hand the artifact over to the artifact store

A build either produces a complete stored artifact or nothing at all; the
working tree is always removed. Failures are returned as StageOutcome, never
raised.
"""

from __future__ import annotations

import logging
import shutil
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from sitepipe.builds.artifacts import BuildArtifact, create_artifact
from sitepipe.builds.buildspec import BuildSpecError, load_buildspec
from sitepipe.builds.runner import (
    BuildExecutionError,
    ExecutionResult,
    LocalBuildEnvironment,
    compose_environment,
)
from sitepipe.source.checkout import CheckoutError, SourceProvider
from sitepipe.store import ArtifactStore, ArtifactStoreError
from sitepipe.types import ErrorKind, SourceRevision, StageOutcome

if TYPE_CHECKING:
    from sitepipe.config import Settings

logger = logging.getLogger(__name__)


class BuildValidationError(Exception):
    """Raised when build output is not a deployable site."""

    def __init__(self, message: str, code: str = "invalid_build_output") -> None:
        super().__init__(message)
        self.code = code


class BuildEnvironment(Protocol):
    """Interface of the sandbox that runs build commands."""

    def execute(
        self,
        commands: list[tuple[str, str]],
        env: dict[str, str],
        working_tree: Path,
        timeout: float,
        log_path: Path,
        cancel_event: threading.Event | None = None,
    ) -> ExecutionResult:
        """Run commands and report the exit status."""
        ...


def validate_output(base_dir: Path, index_document: str) -> None:
    """Validate that a build output directory is a deployable site.

    Args:
        base_dir: Build output directory.
        index_document: Document that must exist at the site root.

    Raises:
        BuildValidationError: If the output is missing, empty, or has no
            index document.
    """
    if not base_dir.is_dir():
        raise BuildValidationError(f"Build output directory not found: {base_dir}")
    if not any(base_dir.iterdir()):
        raise BuildValidationError(f"Build output directory is empty: {base_dir}")
    if not (base_dir / index_document).is_file():
        raise BuildValidationError(
            f"Build output has no {index_document} at its root",
            code="missing_index_document",
        )


class BuildStage:
    """Builds a revision into a stored artifact.

    Args:
        source: Provider that materializes revisions.
        store: Artifact store receiving successful builds.
        workspace_dir: Root for per-run working trees.
        logs_dir: Root for build logs.
        timeout: Hard wall-clock build timeout in seconds.
        compute_type: Declared compute profile.
        index_document: Document required at the site root.
        environment: Command sandbox (local subprocesses by default).
    """

    def __init__(
        self,
        source: SourceProvider,
        store: ArtifactStore,
        workspace_dir: Path,
        logs_dir: Path,
        timeout: float = 3600,
        compute_type: str = "small",
        index_document: str = "index.html",
        environment: BuildEnvironment | None = None,
    ) -> None:
        self.source = source
        self.store = store
        self.workspace_dir = workspace_dir
        self.logs_dir = logs_dir
        self.timeout = timeout
        self.compute_type = compute_type
        self.index_document = index_document
        self.environment = environment or LocalBuildEnvironment()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        source: SourceProvider,
        store: ArtifactStore,
        index_document: str = "index.html",
    ) -> BuildStage:
        """Create a build stage from application settings."""
        return cls(
            source=source,
            store=store,
            workspace_dir=settings.workspace_dir,
            logs_dir=settings.logs_dir,
            timeout=settings.build_timeout,
            compute_type=settings.compute_type,
            index_document=index_document,
        )

    def log_path_for(self, run_id: int) -> Path:
        """Return the build log path of a run."""
        return self.logs_dir / "builds" / f"run-{run_id:06d}.log"

    def run(
        self,
        run_id: int,
        revision: SourceRevision,
        cancel_event: threading.Event | None = None,
    ) -> StageOutcome:
        """Build a revision.

        Args:
            run_id: Pipeline run ID (names the working tree and log).
            revision: Revision to build.
            cancel_event: Optional event that aborts the build when set.

        Returns:
            StageOutcome carrying the stored BuildArtifact on success.
        """
        log_path = self.log_path_for(run_id)
        work_dir = self.workspace_dir / f"run-{run_id:06d}"
        if work_dir.exists():
            shutil.rmtree(work_dir)

        logger.info("Building revision %s (run %d)", revision.revision_id, run_id)
        try:
            tree = self.source.materialize(revision, work_dir / "src")
            spec = load_buildspec(tree)
            env = compose_environment(
                variables={
                    **spec.env.variables,
                    "SITEPIPE_REVISION": revision.revision_id,
                    "SITEPIPE_BRANCH": revision.branch,
                },
                compute_type=self.compute_type,
            )
            result = self.environment.execute(
                spec.command_sequence(),
                env=env,
                working_tree=tree,
                timeout=self.timeout,
                log_path=log_path,
                cancel_event=cancel_event,
            )
            if not result.success:
                return StageOutcome.failed(
                    ErrorKind.BUILD_FAILURE,
                    result.error_message or "Build failed",
                    code="build_failed",
                    log_path=str(log_path),
                )

            base_dir = tree / spec.artifacts.base_directory
            validate_output(base_dir, self.index_document)
            artifact: BuildArtifact = create_artifact(base_dir, spec.artifacts.files)
            stored = self.store.put(artifact)
        except (
            BuildExecutionError,
            BuildSpecError,
            BuildValidationError,
            CheckoutError,
            ArtifactStoreError,
        ) as e:
            logger.error("Build of %s failed: %s", revision.revision_id, e)
            return StageOutcome.failed(
                ErrorKind.BUILD_FAILURE, str(e), code=e.code, log_path=str(log_path)
            )
        except OSError as e:
            logger.error("Build of %s failed: %s", revision.revision_id, e)
            return StageOutcome.failed(
                ErrorKind.BUILD_FAILURE,
                f"Build I/O error: {e}",
                code="build_io_error",
                log_path=str(log_path),
            )
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        logger.info(
            "Build of %s produced %s with %d files",
            revision.revision_id,
            stored.artifact_id[:23],
            len(stored.files),
        )
        outcome = StageOutcome.ok(stored, file_count=len(stored.files))
        outcome.log_path = str(log_path)
        return outcome


__all__ = [
    "BuildEnvironment",
    "BuildStage",
    "BuildValidationError",
    "validate_output",
]
