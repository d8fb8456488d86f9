"""
Request-scoped context.

Values are kept in ``contextvars`` so concurrent requests served on the same
event loop never see each other's state.
"""

from contextvars import ContextVar, Token

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_user_id: ContextVar[int | None] = ContextVar("user_id", default=None)


def get_request_id() -> str | None:
    return _request_id.get()


def set_request_id(request_id: str | None) -> Token:
    return _request_id.set(request_id)


def reset_request_id(token: Token) -> None:
    _request_id.reset(token)


def get_user_id() -> int | None:
    return _user_id.get()


def set_user_id(user_id: int | None) -> Token:
    return _user_id.set(user_id)


def reset_user_id(token: Token) -> None:
    _user_id.reset(token)
