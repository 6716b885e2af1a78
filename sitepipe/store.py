"""Artifact store.

Durable, content-addressed storage for build artifacts. Each artifact lives
in its own directory named after its content address, next to a
manifest.json describing its files. Because the address is derived from the
content, storing the same build twice is a no-op and a stored artifact
never changes.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Protocol

from sitepipe.builds.artifacts import (
    BuildArtifact,
    generate_manifest,
    read_manifest,
    write_manifest,
)

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"
FILES_DIRNAME = "files"


class ArtifactStoreError(Exception):
    """Raised when an artifact cannot be stored or read."""

    def __init__(self, message: str, code: str = "artifact_store_error") -> None:
        super().__init__(message)
        self.code = code


class ArtifactStore(Protocol):
    """Storage interface used by the build and publish stages."""

    def put(self, artifact: BuildArtifact) -> BuildArtifact:
        """Store an artifact and return it rooted in the store."""
        ...

    def get(self, artifact_id: str) -> BuildArtifact | None:
        """Return a stored artifact, or None if not found."""
        ...


def _dirname(artifact_id: str) -> str:
    """Safe directory name for an artifact id."""
    return artifact_id.replace(":", "_").replace("/", "_")


class LocalArtifactStore:
    """Artifact store backed by a local directory.

    Layout::

        <root>/sha256_<hex>/manifest.json
        <root>/sha256_<hex>/files/<relative paths>
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def _path(self, artifact_id: str) -> Path:
        return self.root / _dirname(artifact_id)

    def exists(self, artifact_id: str) -> bool:
        """Check whether an artifact is stored."""
        return (self._path(artifact_id) / MANIFEST_FILENAME).is_file()

    def put(self, artifact: BuildArtifact) -> BuildArtifact:
        """Store an artifact.

        The copy is staged in a temporary directory and moved into place
        with a single rename, so readers never see a partial artifact.

        Args:
            artifact: Artifact rooted in a build output directory.

        Returns:
            The same artifact rooted in the store.

        Raises:
            ArtifactStoreError: If the copy fails.
        """
        dest = self._path(artifact.artifact_id)
        if self.exists(artifact.artifact_id):
            logger.info("Artifact %s already stored", artifact.artifact_id[:23])
            return self._rooted(artifact, dest)

        self.root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".staging_", dir=self.root))
        try:
            files_dir = staging / FILES_DIRNAME
            files_dir.mkdir()
            for f in artifact.files:
                target = files_dir / f.path
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(artifact.root / f.path, target)
            write_manifest(generate_manifest(artifact), staging / MANIFEST_FILENAME)
            try:
                os.rename(staging, dest)
            except OSError:
                # A concurrent put of the same content won the rename
                if not self.exists(artifact.artifact_id):
                    raise
        except OSError as e:
            raise ArtifactStoreError(
                f"Failed to store artifact {artifact.artifact_id}: {e}"
            ) from e
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        logger.info(
            "Stored artifact %s (%d files, %d bytes)",
            artifact.artifact_id[:23],
            len(artifact.files),
            artifact.total_size(),
        )
        return self._rooted(artifact, dest)

    @staticmethod
    def _rooted(artifact: BuildArtifact, dest: Path) -> BuildArtifact:
        return BuildArtifact(
            artifact_id=artifact.artifact_id,
            root=dest / FILES_DIRNAME,
            files=artifact.files,
        )

    def get(self, artifact_id: str) -> BuildArtifact | None:
        """Load a stored artifact.

        Args:
            artifact_id: Content address of the artifact.

        Returns:
            BuildArtifact rooted in the store, or None if not found.

        Raises:
            ArtifactStoreError: If the manifest is unreadable.
        """
        path = self._path(artifact_id)
        manifest_path = path / MANIFEST_FILENAME
        if not manifest_path.is_file():
            return None
        try:
            return read_manifest(manifest_path, path / FILES_DIRNAME)
        except (OSError, ValueError, KeyError) as e:
            raise ArtifactStoreError(
                f"Corrupt manifest for {artifact_id}: {e}", code="corrupt_manifest"
            ) from e

    def list_ids(self) -> list[str]:
        """List stored artifact ids."""
        if not self.root.is_dir():
            return []
        ids = []
        for entry in sorted(self.root.iterdir()):
            if entry.name.startswith(".") or not (entry / MANIFEST_FILENAME).is_file():
                continue
            algo, _, digest = entry.name.partition("_")
            ids.append(f"{algo}:{digest}")
        return ids


__all__ = ["ArtifactStore", "ArtifactStoreError", "LocalArtifactStore"]
