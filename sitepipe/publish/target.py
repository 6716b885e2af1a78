"""Publish target.

The publish target is the origin holding the live site files (the
PublishedSet) plus a small versioned state record describing which artifact
is live. File operations are individually idempotent; the state record is
updated with a compare-and-swap on its version number so that concurrent
publishers are detected.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Protocol

from sitepipe.builds.artifacts import compute_file_hash

logger = logging.getLogger(__name__)


class StateConflictError(Exception):
    """Raised when the published state changed under a publisher."""

    def __init__(
        self, expected: int, actual: int, code: str = "publish_conflict"
    ) -> None:
        super().__init__(
            f"Published state version is {actual}, expected {expected}: "
            "another publish ran concurrently"
        )
        self.expected = expected
        self.actual = actual
        self.code = code


@dataclass
class PublishedState:
    """Version token of the published set.

    Attributes:
        version: Monotonic counter, 0 before the first publish.
        artifact_id: Artifact currently live.
        manifest: Sorted relative paths of the live artifact.
        published_at: ISO timestamp of the last commit.
    """

    version: int = 0
    artifact_id: str | None = None
    manifest: list[str] = field(default_factory=list)
    published_at: str | None = None


class PublishTarget(Protocol):
    """Interface of a content origin."""

    def list_current(self) -> dict[str, str]:
        """Return live files as relative path -> sha256."""
        ...

    def put_file(self, path: str, data: bytes) -> None:
        """Create or replace one file."""
        ...

    def delete_file(self, path: str) -> None:
        """Delete one file; deleting a missing file is not an error."""
        ...

    def read_file(self, path: str) -> bytes | None:
        """Return file contents, or None if missing."""
        ...

    def read_state(self) -> PublishedState:
        """Return the current version token."""
        ...

    def commit_state(
        self, expected_version: int, artifact_id: str, manifest: list[str]
    ) -> PublishedState:
        """Swap in a new state if the version still matches."""
        ...


def normalize_key(path: str) -> str:
    """Validate and normalize a relative object key.

    Raises:
        ValueError: If the key is empty, absolute, or escapes the root.
    """
    pure = PurePosixPath(path)
    if not path or pure.is_absolute() or ".." in pure.parts:
        raise ValueError(f"Invalid object key: {path!r}")
    return pure.as_posix()


def _atomic_write(dest: Path, data: bytes) -> None:
    """Write a file so readers see either the old or the new content."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", dir=dest.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, dest)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class LocalDirectoryTarget:
    """Publish target backed by a local directory.

    Args:
        root: Directory served as the site origin.
        state_path: Location of the state record (outside root by default
            so it is never served).
    """

    def __init__(self, root: Path, state_path: Path | None = None) -> None:
        self.root = root
        self.state_path = state_path or root.parent / f".{root.name}.state.json"
        self._state_lock = threading.Lock()
        self._layout_lock = threading.Lock()

    def _file(self, path: str) -> Path:
        return self.root / normalize_key(path)

    def list_current(self) -> dict[str, str]:
        """Return live files as relative path -> sha256."""
        if not self.root.is_dir():
            return {}
        current: dict[str, str] = {}
        for path in sorted(self.root.rglob("*")):
            if not path.is_file() or path.name.startswith(".tmp_"):
                continue
            current[path.relative_to(self.root).as_posix()] = compute_file_hash(path)
        return current

    def _clear_conflicts(self, dest: Path) -> None:
        """Remove old entries that block writing a file at dest.

        A key that was a file may become a directory and the other way
        round. The blocking entry is never part of the new manifest.
        """
        parent = dest.parent
        while parent != self.root and self.root in parent.parents:
            if parent.is_file():
                logger.info("Replacing file %s with a directory", parent)
                parent.unlink(missing_ok=True)
                break
            parent = parent.parent
        if dest.is_dir():
            logger.info("Replacing directory %s with a file", dest)
            shutil.rmtree(dest)

    def put_file(self, path: str, data: bytes) -> None:
        """Create or replace one file atomically."""
        dest = self._file(path)
        with self._layout_lock:
            self._clear_conflicts(dest)
            dest.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(dest, data)

    def delete_file(self, path: str) -> None:
        """Delete one file and prune now-empty parent directories.

        A key that is no longer a file (missing, or now a directory of the
        new site) counts as already deleted.
        """
        target = self._file(path)
        if not target.is_file():
            return
        target.unlink(missing_ok=True)
        parent = target.parent
        while parent != self.root and parent.is_dir():
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent

    def read_file(self, path: str) -> bytes | None:
        """Return file contents, or None if missing."""
        try:
            target = self._file(path)
        except ValueError:
            return None
        if not target.is_file():
            return None
        return target.read_bytes()

    def stat_file(self, path: str) -> os.stat_result | None:
        """Return file metadata, or None if missing."""
        try:
            target = self._file(path)
        except ValueError:
            return None
        return target.stat() if target.is_file() else None

    def read_state(self) -> PublishedState:
        """Return the current version token."""
        if not self.state_path.is_file():
            return PublishedState()
        with self.state_path.open(encoding="utf-8") as f:
            data = json.load(f)
        return PublishedState(**data)

    def commit_state(
        self, expected_version: int, artifact_id: str, manifest: list[str]
    ) -> PublishedState:
        """Swap in a new state if the version still matches.

        Args:
            expected_version: Version read before publishing started.
            artifact_id: Artifact now live.
            manifest: Its relative paths.

        Returns:
            The committed state.

        Raises:
            StateConflictError: If another publisher committed first.
        """
        with self._state_lock:
            current = self.read_state()
            if current.version != expected_version:
                raise StateConflictError(expected_version, current.version)
            new_state = PublishedState(
                version=current.version + 1,
                artifact_id=artifact_id,
                manifest=sorted(manifest),
                published_at=datetime.now(timezone.utc).isoformat(),
            )
            _atomic_write(
                self.state_path,
                json.dumps(asdict(new_state), indent=2, sort_keys=True).encode(),
            )
        logger.info(
            "Published state v%d -> %s", new_state.version, artifact_id[:23]
        )
        return new_state


__all__ = [
    "LocalDirectoryTarget",
    "PublishTarget",
    "PublishedState",
    "StateConflictError",
    "normalize_key",
]
