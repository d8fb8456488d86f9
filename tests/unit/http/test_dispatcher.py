"""
Unit tests for the dispatcher and the response envelope.

No database: requests never open a connection here.
"""

import json
from types import SimpleNamespace

import pytest
from starlette.responses import PlainTextResponse

from tessera.core.context import get_user_id, set_user_id
from tessera.core.exceptions import (
    AppException,
    ConfigurationError,
    NotFoundError,
    RateLimited,
    StorageConstraintError,
    Unauthorized,
    ValidationFailure,
)
from tessera.http import Dispatcher, Request, Router


def make_request(method: str = "GET", path: str = "/", **kwargs) -> Request:
    return Request(method, path, services=SimpleNamespace(), **kwargs)


def body_of(response) -> dict:
    return json.loads(response.body)


async def dispatch(router: Router, request: Request, middleware=None, debug: bool = False):
    return await Dispatcher(router, middleware or {}, debug=debug).dispatch(request)


class TestSuccessEnvelope:
    @pytest.mark.asyncio
    async def test_value_becomes_data(self):
        router = Router()
        router.get("/items", lambda request: [{"id": 1}])

        response = await dispatch(router, make_request("GET", "/items"))

        assert response.status_code == 200
        assert body_of(response) == {"success": True, "data": [{"id": 1}]}

    @pytest.mark.asyncio
    async def test_none_omits_data(self):
        router = Router()
        router.post("/ping", lambda request: None)

        response = await dispatch(router, make_request("POST", "/ping"))

        assert body_of(response) == {"success": True}

    @pytest.mark.asyncio
    async def test_async_handler_with_status_and_message(self):
        async def create(request):
            request.set_status(201)
            request.set_message("Created")
            return {"id": 3}

        router = Router()
        router.post("/items", create)

        response = await dispatch(router, make_request("POST", "/items"))

        assert response.status_code == 201
        assert body_of(response) == {"success": True, "data": {"id": 3}, "message": "Created"}

    @pytest.mark.asyncio
    async def test_no_content_has_empty_body(self):
        def destroy(request):
            request.set_status(204)

        router = Router()
        router.delete("/items/{id}", destroy)

        response = await dispatch(router, make_request("DELETE", "/items/1"))

        assert response.status_code == 204
        assert response.body == b""

    @pytest.mark.asyncio
    async def test_raw_response_passes_through(self):
        raw = PlainTextResponse("pong", status_code=202)
        router = Router()
        router.get("/raw", lambda request: raw)

        response = await dispatch(router, make_request("GET", "/raw"))

        assert response is raw

    @pytest.mark.asyncio
    async def test_path_params_are_bound(self):
        router = Router()
        router.get("/items/{id}", lambda request: request.params)

        response = await dispatch(router, make_request("GET", "/items/42"))

        assert body_of(response)["data"] == {"id": "42"}


class TestFailureEnvelope:
    @pytest.mark.asyncio
    async def test_route_not_found(self):
        response = await dispatch(Router(), make_request("GET", "/missing"))

        assert response.status_code == 404
        assert body_of(response) == {"success": False, "message": "Route not found"}

    @pytest.mark.asyncio
    async def test_validation_failure_carries_errors(self):
        def handler(request):
            raise ValidationFailure(errors={"email": ["The email field is required."]})

        router = Router()
        router.post("/x", handler)

        response = await dispatch(router, make_request("POST", "/x"))

        assert response.status_code == 422
        assert body_of(response) == {
            "success": False,
            "message": "Validation failed",
            "errors": {"email": ["The email field is required."]},
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "exc, status",
        [
            (Unauthorized(), 401),
            (NotFoundError("User"), 404),
            (AppException("Teapot", status_code=418), 418),
        ],
    )
    async def test_app_exception_status(self, exc, status):
        def handler(request):
            raise exc

        router = Router()
        router.get("/x", handler)

        response = await dispatch(router, make_request("GET", "/x"))

        assert response.status_code == status
        assert body_of(response) == {"success": False, "message": exc.message}

    @pytest.mark.asyncio
    async def test_rate_limited_sets_retry_after(self):
        def handler(request):
            raise RateLimited(retry_after=30)

        router = Router()
        router.get("/x", handler)

        response = await dispatch(router, make_request("GET", "/x"))

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "30"

    @pytest.mark.asyncio
    async def test_storage_error_message_is_sanitized(self):
        def handler(request):
            raise StorageConstraintError(statement="INSERT INTO users ...", params={"email": "a@b.com"})

        router = Router()
        router.post("/x", handler)

        response = await dispatch(router, make_request("POST", "/x"))

        assert response.status_code == 500
        assert "INSERT" not in response.body.decode()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_generic(self):
        def handler(request):
            raise RuntimeError("secret internals")

        router = Router()
        router.get("/x", handler)

        response = await dispatch(router, make_request("GET", "/x"))

        assert response.status_code == 500
        assert body_of(response)["success"] is False
        assert "secret internals" not in body_of(response)["message"]

    @pytest.mark.asyncio
    async def test_unexpected_error_message_in_debug(self):
        def handler(request):
            raise RuntimeError("secret internals")

        router = Router()
        router.get("/x", handler)

        response = await dispatch(router, make_request("GET", "/x"), debug=True)

        assert body_of(response)["message"] == "secret internals"


class TestMiddleware:
    @pytest.mark.asyncio
    async def test_runs_in_order_before_handler(self):
        calls = []

        def recorder(name):
            async def middleware(request):
                calls.append(name)

            return middleware

        def handler(request):
            calls.append("handler")

        router = Router()
        with router.group(middleware=["outer"]):
            router.get("/x", handler, middleware=["inner"])

        await dispatch(
            router,
            make_request("GET", "/x"),
            middleware={"outer": recorder("outer"), "inner": recorder("inner")},
        )

        assert calls == ["outer", "inner", "handler"]

    @pytest.mark.asyncio
    async def test_raising_middleware_short_circuits(self):
        calls = []

        async def deny(request):
            raise Unauthorized("Unauthorized - No token provided")

        async def later(request):
            calls.append("later")

        def handler(request):
            calls.append("handler")

        router = Router()
        router.get("/x", handler, middleware=["deny", "later"])

        response = await dispatch(router, make_request("GET", "/x"), middleware={"deny": deny, "later": later})

        assert response.status_code == 401
        assert body_of(response)["message"] == "Unauthorized - No token provided"
        assert calls == []

    def test_unknown_middleware_fails_at_build_time(self):
        router = Router()
        router.get("/x", lambda request: None, middleware=["missing"])

        with pytest.raises(ConfigurationError, match="missing"):
            Dispatcher(router, {})

    @pytest.mark.asyncio
    async def test_user_context_is_reset_after_dispatch(self):
        async def bind_user(request):
            set_user_id(11)

        router = Router()
        router.get("/x", lambda request: get_user_id(), middleware=["bind"])

        response = await dispatch(router, make_request("GET", "/x"), middleware={"bind": bind_user})

        assert body_of(response)["data"] == 11
        assert get_user_id() is None
