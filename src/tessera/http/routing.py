"""
Route table.

    router = Router()
    with router.group(prefix="/api"):
        router.get("/health", health)
        with router.group(prefix="/users", middleware=["auth"]):
            router.get("/{id}", show_user)

Routes are immutable once registered. Matching is by exact method and
segment-by-segment path comparison; the first registered match wins.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Sequence

Handler = Callable[..., Any]

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


def split_path(path: str) -> tuple[str, ...]:
    """Split a path into segments, ignoring leading, trailing and repeated slashes."""
    return tuple(segment for segment in path.split("/") if segment)


def join_paths(*parts: str) -> str:
    segments: list[str] = []
    for part in parts:
        segments.extend(split_path(part))
    return "/" + "/".join(segments)


def _is_param(segment: str) -> bool:
    return len(segment) > 2 and segment.startswith("{") and segment.endswith("}")


@dataclass(frozen=True)
class Route:
    method: str
    pattern: str
    handler: Handler
    middleware: tuple[str, ...] = ()
    segments: tuple[str, ...] = field(init=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "segments", split_path(self.pattern))

    def match(self, method: str, segments: Sequence[str]) -> dict[str, str] | None:
        """Return the bound path parameters, or None if this route does not match."""
        if method != self.method or len(segments) != len(self.segments):
            return None
        params: dict[str, str] = {}
        for expected, actual in zip(self.segments, segments):
            if _is_param(expected):
                params[expected[1:-1]] = actual
            elif expected != actual:
                return None
        return params


class Router:
    def __init__(self):
        self.routes: list[Route] = []
        self._prefixes: list[str] = []
        self._middleware: list[tuple[str, ...]] = []

    def add(
        self,
        method: str,
        pattern: str,
        handler: Handler,
        middleware: Sequence[str] = (),
    ) -> Route:
        """
        Register a route inside the current group scope.

        Group prefixes are prepended to ``pattern`` and group middleware runs
        before ``middleware``.
        """
        method = method.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        inherited = tuple(name for names in self._middleware for name in names)
        route = Route(
            method=method,
            pattern=join_paths(*self._prefixes, pattern),
            handler=handler,
            middleware=inherited + tuple(middleware),
        )
        self.routes.append(route)
        return route

    def get(self, pattern: str, handler: Handler, middleware: Sequence[str] = ()) -> Route:
        return self.add("GET", pattern, handler, middleware)

    def post(self, pattern: str, handler: Handler, middleware: Sequence[str] = ()) -> Route:
        return self.add("POST", pattern, handler, middleware)

    def put(self, pattern: str, handler: Handler, middleware: Sequence[str] = ()) -> Route:
        return self.add("PUT", pattern, handler, middleware)

    def patch(self, pattern: str, handler: Handler, middleware: Sequence[str] = ()) -> Route:
        return self.add("PATCH", pattern, handler, middleware)

    def delete(self, pattern: str, handler: Handler, middleware: Sequence[str] = ()) -> Route:
        return self.add("DELETE", pattern, handler, middleware)

    @contextmanager
    def group(self, prefix: str = "", middleware: Sequence[str] = ()) -> Iterator["Router"]:
        """Scope a prefix and middleware over every route registered inside."""
        self._prefixes.append(prefix)
        self._middleware.append(tuple(middleware))
        try:
            yield self
        finally:
            self._prefixes.pop()
            self._middleware.pop()

    def match(self, method: str, path: str) -> tuple[Route, dict[str, str]] | None:
        segments = split_path(path)
        method = method.upper()
        for route in self.routes:
            params = route.match(method, segments)
            if params is not None:
                return route, params
        return None

    def middleware_names(self) -> set[str]:
        return {name for route in self.routes for name in route.middleware}
