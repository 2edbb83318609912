"""
FastAPI application entrypoint for the M365 CRM portal.
"""

from __future__ import annotations

from fastapi import FastAPI

from portal.api.errors import register_exception_handlers
from portal.api.graph_routes import router as graph_router
from portal.api.routes import router as auth_router
from portal.core.config import get_settings
from portal.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="M365 CRM Portal",
        version="0.1.0",
        description="Microsoft sign-in, token lifecycle and Graph proxy for the portal front-end.",
    )
    app.include_router(auth_router, prefix="/api")
    app.include_router(graph_router, prefix="/api")
    register_exception_handlers(app)
    return app


app = create_app()

__all__ = ["app", "create_app"]
