"""Fire-and-forget notification sender for lifecycle events."""

import asyncio
import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    """Notification sender interface."""

    async def send(self, event: str, recipient: str, payload: dict[str, Any]) -> None:
        """Send a notification.

        Args:
            event: Lifecycle event name (e.g. "payout.requested")
            recipient: Recipient address
            payload: Template variables
        """
        ...


class LoggingNotificationSender:
    """Sender used when no notification service is configured."""

    async def send(self, event: str, recipient: str, payload: dict[str, Any]) -> None:
        logger.info("Notification %s for %s (not delivered: no sender configured)", event, recipient)


class HttpNotificationSender:
    """Notification service reached over HTTP."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def send(self, event: str, recipient: str, payload: dict[str, Any]) -> None:
        response = await self._client.post(
            "/notifications",
            json={"event": event, "to": recipient, "data": payload},
        )
        response.raise_for_status()


class NotificationDispatcher:
    """Schedules sends in the background; failures are logged only."""

    def __init__(self, sender: NotificationSender) -> None:
        self._sender = sender
        self._tasks: set[asyncio.Task[None]] = set()

    def dispatch(self, event: str, recipient: str | None, payload: dict[str, Any]) -> None:
        if not recipient:
            return
        task = asyncio.create_task(self._send(event, recipient, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight sends to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _send(self, event: str, recipient: str, payload: dict[str, Any]) -> None:
        try:
            await self._sender.send(event, recipient, payload)
        except Exception as e:
            logger.warning("Notification %s to %s failed: %s", event, recipient, e)
