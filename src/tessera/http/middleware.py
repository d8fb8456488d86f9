"""
Named request middleware.

A middleware is an async callable taking the framework Request. It returns
nothing on success and raises an AppException to stop the chain.

- ``auth``: requires a valid bearer token and binds the principal
- ``throttle``: fixed-window rate limit per client address and route
"""

import logging
import time

from limits import parse
from slowapi import Limiter

from tessera.core.context import set_user_id
from tessera.core.exceptions import RateLimited, Unauthorized
from tessera.http.request import Request

logger = logging.getLogger(__name__)


async def authenticate(request: Request) -> None:
    """
    Verify the bearer token and bind the principal to the request.

    Raises:
        Unauthorized: If the token is missing, invalid or expired
    """
    token = request.bearer_token()
    if not token:
        raise Unauthorized("Unauthorized - No token provided")

    principal = request.services.token_auth.verify_token(token)
    if principal is None:
        raise Unauthorized("Unauthorized - Invalid or expired token")

    request.principal = principal
    set_user_id(principal.user_id)


class Throttle:
    """
    Rate limit middleware backed by the slowapi limiter's storage.

    Args:
        limiter: Limiter whose strategy and storage are used
        limit: Limit string such as ``"10/minute"``
    """

    def __init__(self, limiter: Limiter, limit: str):
        self.limiter = limiter
        self.item = parse(limit)

    def key(self, request: Request) -> str:
        pattern = request.route.pattern if request.route else request.path
        return f"{request.client or 'unknown'}:{pattern}"

    async def __call__(self, request: Request) -> None:
        if not self.limiter.enabled:
            return

        key = self.key(request)
        strategy = self.limiter.limiter
        if strategy.hit(self.item, key):
            return

        reset_at, _remaining = strategy.get_window_stats(self.item, key)
        retry_after = max(1, int(reset_at - time.time()))
        logger.warning(f"Rate limit exceeded: {key} ({self.item})")
        raise RateLimited(retry_after=retry_after)
