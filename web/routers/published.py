"""Published set endpoints."""

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends

from sitepipe.pipeline.service import Pipeline
from web.deps import get_pipeline

router = APIRouter()


@router.get("")
def get_published(pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    """Get the state record of the published set.

    Returns:
        Version, live artifact, manifest and publish time.
    """
    return asdict(pipeline.target.read_state())


@router.get("/files")
def list_published_files(
    pipeline: Pipeline = Depends(get_pipeline),
) -> list[dict[str, str]]:
    """List live files with their checksums."""
    current = pipeline.target.list_current()
    return [{"path": path, "sha256": sha} for path, sha in sorted(current.items())]
