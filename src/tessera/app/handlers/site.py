"""
Site handlers: landing page, health check and route listing.

Timestamps are UTC.
"""

from datetime import datetime, timezone
from typing import Any, Callable

from tessera.core.exceptions import AppException
from tessera.http import Request, Router


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


async def index(request: Request) -> dict[str, Any]:
    """GET /"""
    return {
        "name": request.services.settings.app_name,
        "status": "Up and running",
        "timestamp": _timestamp(),
    }


async def health(request: Request) -> dict[str, Any]:
    """
    GET /health

    Returns 503 when the database does not answer.
    """
    settings = request.services.settings
    if not await request.services.database.ping():
        raise AppException(
            message="Database unavailable",
            status_code=503,
            error_code="SERVICE_UNAVAILABLE",
        )

    request.set_message(f"{settings.app_name} is running")
    return {
        "status": "healthy",
        "environment": settings.environment,
        "version": settings.version,
        "database": "connected",
        "timestamp": _timestamp(),
    }


async def info(request: Request) -> dict[str, Any]:
    """GET /site/info"""
    settings = request.services.settings
    return {
        "site_name": settings.app_name,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": _timestamp(),
    }


def endpoints(router: Router) -> Callable[[Request], list[str]]:
    """Build the GET /site/endpoints handler listing every registered route."""

    def list_endpoints(request: Request) -> list[str]:
        return [f"{route.method} {route.pattern}" for route in router.routes]

    return list_endpoints
