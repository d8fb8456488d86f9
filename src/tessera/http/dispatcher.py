"""
Request dispatcher.

The dispatcher resolves the route, runs its middleware in order, invokes the
handler and renders the response envelope. It is the single place where
raised failures become HTTP responses:

    success: {"success": true, "data": ..., "message": ...}
    failure: {"success": false, "message": ..., "errors": {...}}
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.responses import Response

from tessera.core.context import reset_user_id, set_user_id
from tessera.core.exceptions import (
    AppException,
    ConfigurationError,
    NotFoundError,
    RateLimited,
)
from tessera.http.request import Request
from tessera.http.routing import Router

logger = logging.getLogger(__name__)

Middleware = Callable[[Request], Awaitable[None]]

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please contact support."


def render_success(request: Request, result: Any) -> Response:
    if isinstance(result, Response):
        return result

    if request.status_code == status.HTTP_204_NO_CONTENT:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    body: dict[str, Any] = {"success": True}
    if result is not None:
        body["data"] = result
    if request.message:
        body["message"] = request.message
    return JSONResponse(status_code=request.status_code, content=jsonable_encoder(body))


def render_failure(exc: AppException) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimited) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def render_unexpected(exc: Exception, debug: bool = False) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "message": str(exc) if debug else GENERIC_ERROR_MESSAGE,
        },
    )


class Dispatcher:
    """
    Args:
        router: Route table
        middleware: Registry of named middleware
        debug: Expose raw messages of unexpected errors

    Raises:
        ConfigurationError: If a route references an unregistered middleware
    """

    def __init__(self, router: Router, middleware: Mapping[str, Middleware], debug: bool = False):
        unknown = router.middleware_names() - set(middleware)
        if unknown:
            raise ConfigurationError(f"Unknown middleware: {', '.join(sorted(unknown))}")
        self.router = router
        self.middleware = dict(middleware)
        self.debug = debug

    async def dispatch(self, request: Request) -> Response:
        user_token = set_user_id(None)
        try:
            return await self._dispatch(request)
        except AppException as exc:
            log = logger.error if exc.status_code >= 500 else logger.warning
            log(
                f"{exc.error_code} on {request.method} {request.path}: {exc.message}"
                + (f" details={exc.details}" if exc.details else "")
            )
            return render_failure(exc)
        except Exception as exc:
            logger.error(
                f"Unexpected error on {request.method} {request.path}: {exc}",
                exc_info=True,
            )
            return render_unexpected(exc, self.debug)
        finally:
            await request.close()
            reset_user_id(user_token)

    async def _dispatch(self, request: Request) -> Response:
        matched = self.router.match(request.method, request.path)
        if matched is None:
            raise NotFoundError(message="Route not found")

        request.route, request.params = matched
        for name in request.route.middleware:
            await self.middleware[name](request)

        result = request.route.handler(request)
        if inspect.isawaitable(result):
            result = await result
        return render_success(request, result)
