"""Email sending via Resend API.

Simple HTTP POST to Resend with plain-text bodies. Delivery is best-effort:
send() never raises, it reports failure in the returned MailResult so the
auth flows can tell the client whether a message went out without undoing
the token write that preceded it.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from tokengate.core.config import Settings

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class MailResult:
    """Outcome of a send attempt.

    Attributes:
        success: Whether the transport accepted the message.
        message_id: Transport message id on success.
        error: Short failure description (never includes the body).
    """

    success: bool
    message_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class EmailMessage:
    """A rendered email ready to send."""

    subject: str
    body: str


class Mailer(Protocol):
    """Anything that can deliver a rendered plain-text email."""

    async def send(self, *, to: str, subject: str, body: str) -> MailResult:
        """Send one email. Must not raise on delivery failure."""
        ...


class ResendMailer:
    """Mailer backed by the Resend HTTP API.

    Args:
        api_key: Resend API key. Empty disables delivery (every send fails).
        sender: From address.
        timeout: Upper bound in seconds for one send, connect included.
    """

    def __init__(self, *, api_key: str, sender: str, timeout: float) -> None:
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResendMailer":
        """Build a mailer from application settings."""
        return cls(
            api_key=settings.resend_api_key.get_secret_value(),
            sender=settings.email_from,
            timeout=settings.email_timeout_seconds,
        )

    async def send(self, *, to: str, subject: str, body: str) -> MailResult:
        """Send a plain-text email.

        Args:
            to: Recipient email address.
            subject: Subject line.
            body: Plain-text body.

        Returns:
            MailResult describing the outcome.
        """
        if not self._api_key:
            logger.warning("Email delivery not configured (RESEND_API_KEY unset)")
            return MailResult(success=False, error="Email delivery not configured")

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    _RESEND_API_URL,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={
                        "from": self._sender,
                        "to": to,
                        "subject": subject,
                        "text": body,
                    },
                )
                resp.raise_for_status()
        except httpx.TimeoutException:
            logger.warning("Timed out sending email via Resend")
            return MailResult(success=False, error="Email delivery timed out")
        except httpx.HTTPError:
            logger.warning("Failed to send email via Resend", exc_info=True)
            return MailResult(success=False, error="Email delivery failed")

        message_id = None
        try:
            message_id = resp.json().get("id")
        except ValueError:
            logger.debug("Resend response had no JSON body")
        return MailResult(success=True, message_id=message_id)
