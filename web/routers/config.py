"""Configuration endpoints."""

from typing import Any

from fastapi import APIRouter, HTTPException

from sitepipe.config import ConfigurationError, get_settings, load_site_config
from sitepipe.edge.bindings import DomainBinding

router = APIRouter()


@router.get("")
def get_config() -> dict[str, Any]:
    """Get effective operational configuration.

    Returns:
        Current configuration as JSON.
    """
    settings = get_settings()
    return {
        "workspace_dir": str(settings.workspace_dir),
        "artifacts_dir": str(settings.artifacts_dir),
        "publish_dir": str(settings.publish_dir),
        "logs_dir": str(settings.logs_dir),
        "db_url": settings.db_url,
        "log_level": settings.log_level,
        "tracked_branch": settings.tracked_branch,
        "build_timeout": settings.build_timeout,
        "compute_type": settings.compute_type,
        "cancel_stale_builds": settings.cancel_stale_builds,
        "publish_op_timeout": settings.publish_op_timeout,
        "publish_max_attempts": settings.publish_max_attempts,
        "poll_interval": settings.poll_interval,
    }


@router.get("/site")
def get_site() -> dict[str, Any]:
    """Get the validated site configuration.

    Raises:
        HTTPException: 422 if the site configuration is invalid.
    """
    try:
        site = load_site_config(get_settings())
    except ConfigurationError as e:
        raise HTTPException(
            status_code=422,
            detail={"code": e.code, "message": str(e)},
        ) from None
    binding = DomainBinding.from_site(site)
    return {
        **site.model_dump(mode="json"),
        "canonical_host": binding.canonical_host,
        "alias_host": binding.alias_host,
    }
