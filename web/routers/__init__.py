"""Router modules for FastAPI web API."""

from web.routers import config, health, hooks, published, runs

__all__ = ["config", "health", "hooks", "published", "runs"]
