"""
Exception handlers for the ASGI host.

The dispatcher renders every failure raised by middleware and handlers.
These handlers only cover what escapes it (malformed request bodies, errors
in the transport layer) and render them in the same envelope.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from tessera.core.exceptions import AppException
from tessera.http.dispatcher import render_failure, render_unexpected

logger = logging.getLogger(__name__)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        f"Application exception: {exc.error_code} - {exc.message} "
        f"(request_id={getattr(request.state, 'request_id', 'unknown')})"
    )
    return render_failure(exc)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions.

    Logs the full error and returns a generic message unless debug is on.
    """
    logger.error(
        f"Unexpected error: {exc} "
        f"(request_id={getattr(request.state, 'request_id', 'unknown')})",
        exc_info=True,
    )
    return render_unexpected(exc, request.app.state.settings.debug)
