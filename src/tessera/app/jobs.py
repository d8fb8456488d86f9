"""
Background jobs of the reference application.

Email transport is out of scope: ``LogEmailSender`` records each message in
the log. Swap in another ``EmailSender`` to deliver for real.
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from tessera.core.config import Settings
from tessera.queue import JobRegistry

logger = logging.getLogger(__name__)

SEND_EMAIL = "send_email"


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    body: str
    from_address: str
    from_name: str


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> None: ...


class LogEmailSender:
    async def send(self, message: EmailMessage) -> None:
        logger.info(
            f"Email to={message.to} from={message.from_name} <{message.from_address}> "
            f"subject={message.subject!r} ({len(message.body)} chars)"
        )


def build_job_registry(settings: Settings, sender: EmailSender | None = None) -> JobRegistry:
    """Register every job handler the worker can run."""
    registry = JobRegistry()
    sender = sender or LogEmailSender()

    @registry.handler(SEND_EMAIL)
    async def send_email(payload: dict[str, Any]) -> None:
        # KeyError on a malformed payload fails the job into the retry path
        message = EmailMessage(
            to=payload["email"],
            subject=payload["subject"],
            body=payload.get("body", ""),
            from_address=settings.mail_from_address,
            from_name=settings.mail_from_name,
        )
        await sender.send(message)

    return registry
