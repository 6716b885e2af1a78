"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter, Request

from sitepipe import __version__

router = APIRouter()


@router.get("/health")
def health(request: Request) -> dict[str, Any]:
    """Health check endpoint.

    Returns:
        Health status with version and pipeline state.
    """
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        return {
            "status": "degraded",
            "version": __version__,
            "pipeline": None,
            "error": getattr(request.app.state, "configuration_error", None),
        }
    return {
        "status": "ok",
        "version": __version__,
        "pipeline": pipeline.orchestrator.state.value,
    }


@router.get("/")
def root() -> dict[str, str]:
    """Root endpoint.

    Returns:
        API name and version.
    """
    return {"name": "sitepipe API", "version": __version__}
