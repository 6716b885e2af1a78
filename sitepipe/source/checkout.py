"""Source checkout.

Materializes a revision into a fresh working tree for the build stage.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Protocol

from sitepipe.types import SourceRevision

logger = logging.getLogger(__name__)

# Timeout for git commands (seconds)
GIT_TIMEOUT = 600


class CheckoutError(Exception):
    """Raised when a revision cannot be materialized."""

    def __init__(self, message: str, code: str = "checkout_error") -> None:
        super().__init__(message)
        self.code = code


class SourceProvider(Protocol):
    """Anything that can produce a working tree for a revision."""

    def materialize(self, revision: SourceRevision, dest: Path) -> Path:
        """Write the tree of a revision into dest and return it."""
        ...


class GitSource:
    """Checks revisions out of a git repository.

    Args:
        repository_url: URL or path accepted by `git clone`.
        timeout: Timeout for each git command in seconds.
    """

    def __init__(self, repository_url: str, timeout: int = GIT_TIMEOUT) -> None:
        self.repository_url = repository_url
        self.timeout = timeout

    def _git(self, args: list[str], cwd: Path | None = None) -> None:
        try:
            subprocess.run(
                ["git", *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )
        except subprocess.TimeoutExpired as e:
            raise CheckoutError(
                f"git {args[0]} timed out after {self.timeout}s",
                code="checkout_timeout",
            ) from e
        except subprocess.CalledProcessError as e:
            raise CheckoutError(
                f"git {args[0]} failed: {e.stderr.strip()}",
                code="checkout_failed",
            ) from e
        except OSError as e:
            raise CheckoutError(f"Failed to run git: {e}") from e

    def materialize(self, revision: SourceRevision, dest: Path) -> Path:
        """Clone the repository and check out the revision detached.

        Args:
            revision: Revision to check out.
            dest: Empty or missing destination directory.

        Returns:
            Path to the working tree.

        Raises:
            CheckoutError: If a git command fails.
        """
        logger.info(
            "Checking out %s@%s into %s",
            self.repository_url,
            revision.revision_id,
            dest,
        )
        dest.parent.mkdir(parents=True, exist_ok=True)
        self._git(["clone", "--quiet", "--no-checkout", self.repository_url, str(dest)])
        self._git(["checkout", "--quiet", "--detach", revision.revision_id], cwd=dest)
        return dest


class LocalTreeSource:
    """Copies a local directory as the tree of every revision.

    Useful for deploying from a directory that is already checked out.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def materialize(self, revision: SourceRevision, dest: Path) -> Path:
        """Copy the local tree into dest.

        Raises:
            CheckoutError: If the local tree is missing.
        """
        if not self.root.is_dir():
            raise CheckoutError(f"Source tree not found: {self.root}")
        logger.info("Copying %s for revision %s", self.root, revision.revision_id)
        shutil.copytree(
            self.root, dest, ignore=shutil.ignore_patterns(".git"), symlinks=True
        )
        return dest


__all__ = [
    "GIT_TIMEOUT",
    "CheckoutError",
    "GitSource",
    "LocalTreeSource",
    "SourceProvider",
]
