"""
ASGI application entry point.

This module sets up:
- FastAPI application with transport middleware
- Exception handlers for failures that escape the dispatcher
- A catch-all route forwarding every request to the Tessera dispatcher
- CORS configuration

Run with ``uvicorn tessera.main:app``.
"""

import json
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response

from tessera.app.routes import build_middleware, build_router
from tessera.core.config import Settings, get_settings
from tessera.core.exceptions import AppException, BadRequestError
from tessera.core.handlers import app_exception_handler, general_exception_handler
from tessera.core.lifespan import lifespan
from tessera.core.logging import setup_logging
from tessera.core.rate_limit import create_limiter
from tessera.http import Dispatcher, Request
from tessera.http.routing import HTTP_METHODS
from tessera.http.transport import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from tessera.services import Services

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def read_body(request: StarletteRequest) -> dict:
    """
    Decode a JSON or form body into a dict.

    Raises:
        BadRequestError: For malformed JSON or a JSON body that is not an object
    """
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()

    if content_type in FORM_CONTENT_TYPES:
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}

    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise BadRequestError("Malformed JSON body") from None
    if not isinstance(body, dict):
        raise BadRequestError("Request body must be a JSON object")
    return body


async def forward(request: StarletteRequest) -> Response:
    """Hand the request to the dispatcher."""
    state = request.app.state
    tessera_request = Request(
        method=request.method,
        path=request.url.path,
        services=state.services,
        query=dict(request.query_params),
        body=await read_body(request),
        headers=dict(request.headers),
        client=request.client.host if request.client else None,
        request_id=getattr(request.state, "request_id", None),
    )
    return await state.dispatcher.dispatch(tessera_request)


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """
    Build the ASGI application.

    Args:
        settings: Resolved settings (defaults to the environment)
        services: Prebuilt shared services; when omitted they are built on
            startup and released on shutdown

    Raises:
        ConfigurationError: If a route references an unknown middleware
    """
    if settings is None:
        settings = services.settings if services is not None else get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    limiter = create_limiter(settings)
    app.state.limiter = limiter
    app.state.dispatcher = Dispatcher(
        build_router(settings),
        build_middleware(settings, limiter),
        debug=settings.debug,
    )

    # ========================================================================
    # Exception Handlers
    # ========================================================================
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # ========================================================================
    # Middleware Setup (last added runs first)
    # ========================================================================
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=settings.is_production)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    app.add_route("/{path:path}", forward, methods=list(HTTP_METHODS))
    return app


def get_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings)
    return create_app(settings)


app = get_app()
