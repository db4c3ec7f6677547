"""
FastAPI application entrypoint for the APEX to Microsoft Graph bridge.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI

from graph_bridge.api.routes import router as api_router
from graph_bridge.core.config import AppSettings, get_settings
from graph_bridge.core.logging import configure_logging
from graph_bridge.dependencies import build_graph_token_service, build_token_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the token store for this app instance and close it on shutdown."""
    settings: AppSettings = app.state.settings
    store = build_token_store(settings)
    app.state.token_service = build_graph_token_service(settings, store)
    logger.info(
        "Token store ready",
        extra={"backend": settings.storage.backend, "flow": settings.oauth.flow},
    )
    try:
        yield
    finally:
        store.close()
        logger.info("Token store closed")


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Factory for the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="APEX Microsoft Graph Bridge",
        version="0.1.0",
        description="Sends Outlook mail and creates Teams meetings for Oracle APEX.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.include_router(api_router)
    return app


app = create_app()

__all__ = ["app", "create_app", "lifespan"]


if __name__ == "__main__":  # pragma: no cover - script entry point
    uvicorn.run("graph_bridge.main:app", host="0.0.0.0", port=10000)
