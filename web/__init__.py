"""FastAPI web application for sitepipe.

This module provides the control HTTP API that mirrors the core services.
All business logic is delegated to core modules in sitepipe/.
"""

from web.app import app, create_app

__all__ = ["app", "create_app"]
