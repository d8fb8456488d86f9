"""
User management handlers.

Admins manage every account. Other users may only update or delete their
own account and cannot change their role or status.
"""

import logging
from typing import Any

from tessera.app.models import UserModel
from tessera.core.exceptions import (
    BadRequestError,
    Forbidden,
    InvalidIdentifierError,
    NotFoundError,
    ValidationFailure,
)
from tessera.core.security import validate_password_strength
from tessera.http import Request
from tessera.validation import RuleSet

logger = logging.getLogger(__name__)

MAX_SEARCH_LENGTH = 255
PRIVILEGED_FIELDS = ("role", "status")

STORE_RULES = RuleSet.parse(
    {
        "name": "required|string|min:3|max:100",
        "email": "required|email|max:255|unique:users,email",
        "password": "required|string|min:8",
        "role": "in:user,admin",
        "status": "in:active,inactive",
    }
)


def _update_rules(user_id: int) -> RuleSet:
    return RuleSet.parse(
        {
            "name": "string|min:3|max:100",
            "email": f"email|max:255|unique:users,email,{user_id}",
            "password": "string|min:8",
            "role": "in:user,admin",
            "status": "in:active,inactive",
        }
    )


def _is_admin(request: Request) -> bool:
    return request.principal is not None and request.principal.role == "admin"


def _route_id(request: Request) -> int:
    try:
        return int(request.params["id"])
    except (KeyError, ValueError):
        raise NotFoundError("User") from None


def _int_query(request: Request, *names: str, default: int) -> int:
    for name in names:
        value = request.query.get(name)
        if value not in (None, ""):
            try:
                return int(value)
            except ValueError:
                raise BadRequestError(f"Query parameter '{name}' must be an integer") from None
    return default


def _check_password(password: str | None) -> None:
    if password is None:
        return
    ok, message = validate_password_strength(password)
    if not ok:
        raise ValidationFailure(errors={"password": [message]})


async def _find_or_404(users: UserModel, user_id: int) -> dict[str, Any]:
    user = await users.find(user_id)
    if user is None:
        raise NotFoundError("User")
    return user


async def index(request: Request) -> Any:
    """
    GET /users

    Query: ``page``, ``per_page`` (or ``per-page``), ``with`` (comma-separated
    relations) and ``search``.
    """
    users = await request.mapper(UserModel)

    search = request.query.get("search")
    if search:
        return await users.search(search[:MAX_SEARCH_LENGTH])

    relations = [name.strip() for name in request.query.get("with", "").split(",") if name.strip()]
    if relations:
        try:
            users = users.with_relations(*relations)
        except InvalidIdentifierError as e:
            raise BadRequestError(str(e)) from e

    page = _int_query(request, "page", default=1)
    per_page = _int_query(request, "per_page", "per-page", default=10)
    return await users.paginate(page, per_page)


async def list_all(request: Request) -> list[dict[str, Any]]:
    """GET /users/all"""
    users = await request.mapper(UserModel)
    return await users.all()


async def show(request: Request) -> dict[str, Any]:
    """GET /users/{id}"""
    users = await request.mapper(UserModel)
    return await _find_or_404(users, _route_id(request))


async def store(request: Request) -> dict[str, Any]:
    """POST /users (admins only)"""
    if not _is_admin(request):
        raise Forbidden("Only administrators can create users")

    data = await request.validate(STORE_RULES)
    _check_password(data["password"])
    data.setdefault("role", "user")
    data.setdefault("status", "active")

    users = await request.mapper(UserModel)
    user_id = await users.create(data)
    logger.info(f"User {user_id} created by {request.principal.user_id}")

    request.set_status(201)
    request.set_message("User created")
    return await users.find(user_id)


async def update(request: Request) -> dict[str, Any]:
    """PUT /users/{id}"""
    user_id = _route_id(request)
    if not _is_admin(request) and request.principal.user_id != user_id:
        raise Forbidden("You can only update your own account")

    users = await request.mapper(UserModel)
    await _find_or_404(users, user_id)

    data = await request.validate(_update_rules(user_id))
    _check_password(data.get("password"))
    if not _is_admin(request):
        for name in PRIVILEGED_FIELDS:
            data.pop(name, None)

    if data:
        await users.update(user_id, data)
        logger.info(f"User {user_id} updated by {request.principal.user_id}")

    request.set_message("User updated")
    return await users.find(user_id)


async def destroy(request: Request) -> None:
    """DELETE /users/{id}"""
    user_id = _route_id(request)
    if not _is_admin(request) and request.principal.user_id != user_id:
        raise Forbidden("You can only delete your own account")

    users = await request.mapper(UserModel)
    await _find_or_404(users, user_id)
    await users.delete(user_id)

    logger.info(f"User {user_id} deleted by {request.principal.user_id}")
    request.set_status(204)
