import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

JobHandler = Callable[[dict[str, Any]], Any | Awaitable[Any]]


class JobRegistry:
    """
    Maps handler names stored on jobs to callables.

        registry = JobRegistry()

        @registry.handler("send_email")
        async def send_email(payload): ...
    """

    def __init__(self):
        self._handlers: dict[str, JobHandler] = {}

    def register(self, name: str, handler: JobHandler) -> None:
        if name in self._handlers:
            logger.warning(f"Job handler {name!r} replaced")
        self._handlers[name] = handler

    def handler(self, name: str) -> Callable[[JobHandler], JobHandler]:
        def decorator(func: JobHandler) -> JobHandler:
            self.register(name, func)
            return func

        return decorator

    def get(self, name: str) -> JobHandler | None:
        return self._handlers.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def names(self) -> list[str]:
        return sorted(self._handlers)
