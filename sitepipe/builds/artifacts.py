"""Artifact discovery and manifest generation.

This module handles:
- Discovering site files in a build output directory
- Computing checksums
- Deriving the content address of an artifact
- Generating and reading artifact manifests
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sitepipe.types import ArtifactFile

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB

MANIFEST_VERSION = "1.0"


@dataclass(frozen=True)
class BuildArtifact:
    """An immutable bundle of site files plus their manifest.

    Attributes:
        artifact_id: Content address of the bundle (sha256:...).
        root: Directory holding the files.
        files: Files with sizes and checksums, sorted by path.
    """

    artifact_id: str
    root: Path
    files: tuple[ArtifactFile, ...] = field(default_factory=tuple)

    @property
    def manifest(self) -> list[str]:
        """Sorted relative paths of the bundle."""
        return [f.path for f in self.files]

    def checksums(self) -> dict[str, str]:
        """Map of relative path to sha256."""
        return {f.path: f.sha256 for f in self.files}

    def total_size(self) -> int:
        """Total size of all files in bytes."""
        return sum(f.size_bytes for f in self.files)


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def discover_files(
    base_dir: Path,
    patterns: list[str] | None = None,
) -> list[ArtifactFile]:
    """Discover files in a build output directory.

    Args:
        base_dir: Directory containing build outputs.
        patterns: Glob patterns relative to base_dir (default: everything).

    Returns:
        ArtifactFile entries sorted by relative path.
    """
    if not base_dir.is_dir():
        logger.warning("Build output directory does not exist: %s", base_dir)
        return []

    found: dict[str, ArtifactFile] = {}
    for pattern in patterns or ["**/*"]:
        for path in base_dir.glob(pattern):
            if path.is_symlink():
                logger.warning("Skipping symlink in build output: %s", path)
                continue
            if not path.is_file():
                continue
            relative_path = path.relative_to(base_dir).as_posix()
            if relative_path in found:
                continue
            found[relative_path] = ArtifactFile(
                path=relative_path,
                size_bytes=path.stat().st_size,
                sha256=compute_file_hash(path),
            )

    files = [found[p] for p in sorted(found)]
    logger.info("Discovered %d files in %s", len(files), base_dir)
    return files


def compute_artifact_id(files: list[ArtifactFile] | tuple[ArtifactFile, ...]) -> str:
    """Compute the content address of a set of files.

    The address depends only on relative paths and file contents, so
    identical builds map to the same artifact.

    Args:
        files: Artifact files.

    Returns:
        Artifact id as hex string (sha256:...).
    """
    digest = hashlib.sha256()
    for f in sorted(files, key=lambda item: item.path):
        digest.update(f"{f.path}\0{f.sha256}\n".encode())
    return f"sha256:{digest.hexdigest()}"


def create_artifact(
    base_dir: Path,
    patterns: list[str] | None = None,
) -> BuildArtifact:
    """Discover files and wrap them into a BuildArtifact.

    Args:
        base_dir: Directory containing build outputs.
        patterns: Glob patterns relative to base_dir.

    Returns:
        BuildArtifact rooted at base_dir.
    """
    files = discover_files(base_dir, patterns)
    return BuildArtifact(
        artifact_id=compute_artifact_id(files),
        root=base_dir,
        files=tuple(files),
    )


def generate_manifest(
    artifact: BuildArtifact,
    run_id: int | None = None,
    revision_id: str | None = None,
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate an artifact manifest.

    Args:
        artifact: The artifact to describe.
        run_id: Optional pipeline run ID.
        revision_id: Optional source revision.
        extra_metadata: Optional additional metadata.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    manifest: dict[str, Any] = {
        "version": MANIFEST_VERSION,
        "artifact_id": artifact.artifact_id,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "files": [asdict(f) for f in artifact.files],
    }

    if run_id is not None:
        manifest["run_id"] = run_id
    if revision_id:
        manifest["revision_id"] = revision_id
    if extra_metadata:
        manifest["metadata"] = extra_metadata

    manifest["summary"] = {
        "total_files": len(artifact.files),
        "total_size_bytes": artifact.total_size(),
    }

    return manifest


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Write manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.debug("Wrote manifest to %s", output_path)
    return output_path


def read_manifest(manifest_path: Path, root: Path) -> BuildArtifact:
    """Rebuild a BuildArtifact from a written manifest.

    Args:
        manifest_path: Path to manifest.json.
        root: Directory holding the files.

    Returns:
        BuildArtifact described by the manifest.
    """
    with manifest_path.open(encoding="utf-8") as f:
        data = json.load(f)
    files = tuple(
        ArtifactFile(
            path=item["path"], size_bytes=item["size_bytes"], sha256=item["sha256"]
        )
        for item in data["files"]
    )
    return BuildArtifact(artifact_id=data["artifact_id"], root=root, files=files)


__all__ = [
    "HASH_CHUNK_SIZE",
    "MANIFEST_VERSION",
    "BuildArtifact",
    "compute_artifact_id",
    "compute_file_hash",
    "create_artifact",
    "discover_files",
    "generate_manifest",
    "read_manifest",
    "write_manifest",
]
