"""
Framework request object.

One instance per request. It carries the transport data, the bound route
and path parameters, the authenticated principal, the success status and
message chosen by the handler, and a lazily opened database connection that
the dispatcher releases when the request ends.
"""

from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any, Mapping, TypeVar

from sqlalchemy.ext.asyncio import AsyncConnection

from tessera.core.security import Principal
from tessera.records.mapper import RecordMapper
from tessera.validation import RuleSet

if TYPE_CHECKING:
    from tessera.http.routing import Route
    from tessera.services import Services

M = TypeVar("M", bound=RecordMapper)


class Request:
    def __init__(
        self,
        method: str,
        path: str,
        services: "Services",
        query: Mapping[str, Any] | None = None,
        body: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        client: str | None = None,
        request_id: str | None = None,
    ):
        self.method = method.upper()
        self.path = path
        self.services = services
        self.query = dict(query or {})
        self.body = dict(body or {})
        self.headers = {key.lower(): value for key, value in (headers or {}).items()}
        self.client = client
        self.request_id = request_id

        self.route: "Route | None" = None
        self.params: dict[str, str] = {}
        self.principal: Principal | None = None

        self.status_code = 200
        self.message: str | None = None

        self._stack = AsyncExitStack()
        self._conn: AsyncConnection | None = None

    # -------------------------------------------------------------------------
    # Input
    # -------------------------------------------------------------------------

    def all(self) -> dict[str, Any]:
        """Query string and body merged; body wins on conflicts."""
        return {**self.query, **self.body}

    def input(self, key: str, default: Any = None) -> Any:
        return self.all().get(key, default)

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    def bearer_token(self) -> str | None:
        """Extract the token from ``Authorization: Bearer <token>``."""
        value = self.header("authorization")
        if not value:
            return None
        scheme, _, token = value.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()

    # -------------------------------------------------------------------------
    # Response shaping
    # -------------------------------------------------------------------------

    def set_status(self, status_code: int) -> None:
        self.status_code = status_code

    def set_message(self, message: str) -> None:
        self.message = message

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------

    async def db(self) -> AsyncConnection:
        """The request's connection, opened on first use."""
        if self._conn is None:
            self._conn = await self._stack.enter_async_context(self.services.database.connect())
        return self._conn

    async def mapper(self, model: type[M], conn: AsyncConnection | None = None) -> M:
        """
        Bind a model to this request's cache and principal.

        Without ``conn`` the mapper uses the request's connection and commits
        each write. Pass a connection from ``Database.transaction()`` to
        group writes; the transaction then owns the commit.
        """
        settings = self.services.settings
        return model(
            conn if conn is not None else await self.db(),
            cache=self.services.cache,
            actor=self.principal,
            autocommit=conn is None,
            timestamp_format=settings.timestamp_format,
            count_ttl=settings.count_cache_ttl,
        )

    async def validate(self, rules: Mapping[str, Any] | RuleSet) -> dict[str, Any]:
        """Validate the merged input; raises ValidationFailure."""
        rule_set = rules if isinstance(rules, RuleSet) else RuleSet.parse(rules)
        conn = await self.db() if rule_set.needs_connection else None
        return await rule_set.validate(self.all(), conn=conn)

    async def close(self) -> None:
        """Release the connection, if one was opened."""
        await self._stack.aclose()
        self._conn = None
