"""Publish stage.

This module replaces the live site with a build artifact:
1. Read the published state token
2. Upload new and changed files (unchanged checksums are skipped)
3. Delete files absent from the new manifest
4. Commit the new state with a compare-and-swap on the token

Uploading before deleting means that while a publish is in flight the live
set is a superset of old and new content: a file that stays is never
missing, at the cost of stale files lingering until the delete pass. If a
publish is interrupted, the target stays in that superset state and the
next successful publish converges it.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from sitepipe.builds.artifacts import BuildArtifact
from sitepipe.publish.target import PublishTarget, StateConflictError
from sitepipe.types import ErrorKind, StageOutcome

if TYPE_CHECKING:
    from sitepipe.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PublishError(Exception):
    """Raised when a publish cannot complete."""

    def __init__(self, message: str, code: str = "publish_failed") -> None:
        super().__init__(message)
        self.code = code


@contextmanager
def publish_lock(
    lock_dir: Path,
    name: str,
    timeout: float | None = None,
) -> Iterator[None]:
    """Acquire an exclusive lock for publishing to a target.

    Uses a file-based lock so publishers in other processes are serialized
    as well.

    Args:
        lock_dir: Directory for lock files.
        name: Target name to lock on.
        timeout: Lock acquisition timeout in seconds (None = blocking).

    Yields:
        None when lock is acquired.

    Raises:
        TimeoutError: If lock cannot be acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    safe_name = name.replace(":", "_").replace("/", "_")[:64]
    lock_file = lock_dir / f"publish_{safe_name}.lock"

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        if timeout is not None:
            start = time.monotonic()
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= timeout:
                        raise TimeoutError(
                            f"Timeout waiting for publish lock on {name}"
                        ) from None
                    time.sleep(0.1)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX)
            lock_acquired = True

        logger.debug("Publish lock acquired for %s", name)
        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Publish lock released for %s", name)
        os.close(fd)


def plan_publish(
    current: dict[str, str], desired: dict[str, str]
) -> tuple[list[str], list[str]]:
    """Compute which files to upload and which to delete.

    Args:
        current: Live files as path -> sha256.
        desired: Artifact files as path -> sha256.

    Returns:
        Tuple of (paths to upload, paths to delete), both sorted.
    """
    uploads = sorted(p for p, sha in desired.items() if current.get(p) != sha)
    deletes = sorted(p for p in current if p not in desired)
    return uploads, deletes


class PublishStage:
    """Publishes artifacts to a target.

    Args:
        target: The origin receiving files.
        lock_dir: Directory for cross-process publish locks.
        op_timeout: Timeout per file operation in seconds.
        max_attempts: Attempts per file operation.
        backoff: Base delay of the exponential backoff in seconds.
        max_workers: Concurrent uploads.
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        target: PublishTarget,
        lock_dir: Path,
        op_timeout: float = 30.0,
        max_attempts: int = 4,
        backoff: float = 0.5,
        max_workers: int = 4,
        sleep: Callable[[float], None] = time.sleep,
        lock_name: str = "site",
    ) -> None:
        self.target = target
        self.lock_dir = lock_dir
        self.op_timeout = op_timeout
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.max_workers = max_workers
        self.lock_name = lock_name
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, target: PublishTarget) -> PublishStage:
        """Create a publish stage from application settings."""
        return cls(
            target=target,
            lock_dir=settings.workspace_dir / ".locks",
            op_timeout=settings.publish_op_timeout,
            max_attempts=settings.publish_max_attempts,
            backoff=settings.publish_backoff,
            max_workers=settings.publish_max_workers,
        )

    def _with_retry(
        self,
        executor: ThreadPoolExecutor,
        description: str,
        func: Callable[[], T],
    ) -> T:
        """Run one idempotent operation with timeout and bounded retry.

        Raises:
            PublishError: If every attempt fails.
        """
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            future = executor.submit(func)
            try:
                return future.result(timeout=self.op_timeout)
            except FutureTimeoutError:
                future.cancel()
                last_error = TimeoutError(
                    f"{description} timed out after {self.op_timeout}s"
                )
            except OSError as e:
                last_error = e

            if attempt < self.max_attempts:
                delay = self.backoff * (2 ** (attempt - 1))
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    description,
                    attempt,
                    self.max_attempts,
                    last_error,
                    delay,
                )
                self._sleep(delay)

        raise PublishError(
            f"{description} failed after {self.max_attempts} attempts: {last_error}"
        )

    def _upload(
        self, executor: ThreadPoolExecutor, artifact: BuildArtifact, path: str
    ) -> None:
        data = (artifact.root / path).read_bytes()
        self._with_retry(
            executor, f"put {path}", partial(self.target.put_file, path, data)
        )

    def publish(self, artifact: BuildArtifact) -> dict[str, int]:
        """Replace the live site with an artifact.

        Args:
            artifact: Stored artifact to publish.

        Returns:
            Counts of uploaded, deleted and unchanged files.

        Raises:
            PublishError: If a file operation exhausts its retries, the
                artifact is unreadable, or another publish ran concurrently.
        """
        desired = artifact.checksums()
        try:
            with publish_lock(
                self.lock_dir, self.lock_name, timeout=self.op_timeout * 10
            ):
                state = self.target.read_state()
                current = self.target.list_current()
                uploads, deletes = plan_publish(current, desired)
                logger.info(
                    "Publishing %s: %d uploads, %d deletes, %d unchanged",
                    artifact.artifact_id[:23],
                    len(uploads),
                    len(deletes),
                    len(desired) - len(uploads),
                )

                # Timed-out operations may still be running; never join them
                ops = ThreadPoolExecutor(
                    max_workers=self.max_workers * 2,
                    thread_name_prefix="publish-op",
                )
                try:
                    # Every upload finishes before the first delete starts
                    with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                        futures = [
                            pool.submit(self._upload, ops, artifact, path)
                            for path in uploads
                        ]
                        try:
                            for future in futures:
                                future.result()
                        except BaseException:
                            for future in futures:
                                future.cancel()
                            raise

                    for path in deletes:
                        self._with_retry(
                            ops,
                            f"delete {path}",
                            partial(self.target.delete_file, path),
                        )
                finally:
                    ops.shutdown(wait=False, cancel_futures=True)

                self.target.commit_state(
                    state.version, artifact.artifact_id, artifact.manifest
                )
        except StateConflictError as e:
            raise PublishError(str(e), code=e.code) from e
        except TimeoutError as e:
            raise PublishError(str(e), code="publish_lock_timeout") from e
        except (OSError, ValueError) as e:
            raise PublishError(f"Publish I/O error: {e}") from e

        return {
            "uploaded": len(uploads),
            "deleted": len(deletes),
            "unchanged": len(desired) - len(uploads),
        }

    def run(self, run_id: int, artifact: BuildArtifact) -> StageOutcome:
        """Publish an artifact for a pipeline run.

        Args:
            run_id: Pipeline run ID.
            artifact: Stored artifact to publish.

        Returns:
            StageOutcome; on failure the target may be in the superset state.
        """
        logger.info("Run %d: publishing %s", run_id, artifact.artifact_id[:23])
        try:
            counts = self.publish(artifact)
        except PublishError as e:
            logger.error("Run %d: publish failed: %s", run_id, e)
            return StageOutcome.failed(ErrorKind.PUBLISH_FAILURE, str(e), code=e.code)
        logger.info("Run %d: publish complete %s", run_id, counts)
        return StageOutcome.ok(artifact, **counts)


__all__ = ["PublishError", "PublishStage", "plan_publish", "publish_lock"]
