"""Notification delivery adapters."""

import logging
from typing import Optional

import httpx

from app.config import settings
from app.services.collaborators import CollaboratorError, Notification

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Log notifications instead of sending them (no email API configured)."""

    async def send(self, notification: Notification) -> None:
        logger.info(f"Notification to {notification.to}: {notification.subject}")


class EmailNotifier:
    """Send notifications through a transactional email HTTP API."""

    def __init__(
        self,
        api_key: str,
        api_url: Optional[str] = None,
        sender: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url or settings.EMAIL_API_URL
        self.sender = sender or settings.EMAIL_FROM
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))

    async def send(self, notification: Notification) -> None:
        payload = {
            "from": self.sender,
            "to": [notification.to],
            "subject": notification.subject,
            "text": notification.body,
            "tags": [{"name": k, "value": v} for k, v in notification.tags.items()],
        }
        try:
            response = await self.client.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Email delivery to {notification.to} failed: {e}") from e

    async def aclose(self):
        await self.client.aclose()


def get_notifier():
    """Email when an API key is configured, logging otherwise."""
    if settings.EMAIL_API_KEY:
        return EmailNotifier(settings.EMAIL_API_KEY)
    logger.warning("EMAIL_API_KEY not set, notifications will only be logged")
    return LoggingNotifier()
