import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tessera.services import build_services

logger = logging.getLogger(__name__)


# ============================================================================
# Lifespan Context Manager
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore
    """
    Lifespan context manager for startup and shutdown events.

    Builds the shared services unless the application was created with
    prebuilt ones (tests), and releases what it built on shutdown.
    """
    settings = app.state.settings
    logger.info(f"Starting {settings.app_name} v{settings.version}")
    logger.info(f"Environment: {settings.environment}")

    owned = app.state.services is None
    if owned:
        app.state.services = build_services(settings)

    yield

    logger.info("Shutting down application")
    if owned:
        await app.state.services.close()
        app.state.services = None
