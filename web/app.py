"""FastAPI application factory and main app.

This module creates the control API: repository webhooks, run history and
retries, and the published set. Web routes are thin proxies to core APIs.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sitepipe import __version__
from sitepipe.config import ConfigurationError, get_settings
from sitepipe.db import create_all_tables, get_engine, get_session_factory
from sitepipe.pipeline.service import create_pipeline, remember_deployed
from web.routers import config, health, hooks, published, runs

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Initializes database tables and starts the pipeline worker. An invalid
    site configuration leaves the API up with the pipeline disabled.
    """
    settings = get_settings()
    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    app.state.session_factory = get_session_factory(engine)
    app.state.settings = settings

    try:
        pipeline = create_pipeline(settings, app.state.session_factory)
    except ConfigurationError as e:
        logger.error("Pipeline not started: %s", e)
        app.state.pipeline = None
        app.state.configuration_error = str(e)
    else:
        with app.state.session_factory() as session:
            remember_deployed(pipeline, session, settings.dedup_window)
        app.state.pipeline = pipeline
        app.state.configuration_error = None
        pipeline.orchestrator.start()

    yield

    if app.state.pipeline is not None:
        app.state.pipeline.orchestrator.stop(timeout=30)
    engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application.
    """
    application = FastAPI(
        title="sitepipe API",
        description="Control API of the static site deployment pipeline",
        version=__version__,
        lifespan=lifespan,
    )

    # Include routers
    application.include_router(health.router, tags=["health"])
    application.include_router(config.router, prefix="/config", tags=["config"])
    application.include_router(runs.router, prefix="/runs", tags=["runs"])
    application.include_router(hooks.router, prefix="/hooks", tags=["hooks"])
    application.include_router(
        published.router, prefix="/published", tags=["published"]
    )

    return application


# Create the default application instance
app = create_app()
