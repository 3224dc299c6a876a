from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from crypto_signals.errors import (
    AuthenticationError,
    DeliveryError,
    NotFoundError,
    PayloadRejectedError,
)
from crypto_signals.monitoring.logger import SignalConsole
from crypto_signals.signals.models import Signal

from .base import Alert, NotificationChannel, Priority

logger = logging.getLogger(__name__)

_PRIORITY_LEVELS = {
    Priority.LOW: "info",
    Priority.NORMAL: "info",
    Priority.HIGH: "warning",
    Priority.CRITICAL: "error",
}


class ConsoleChannel(NotificationChannel):
    name = "console"

    def __init__(self, console: SignalConsole | None = None) -> None:
        self._console = console or SignalConsole()

    async def send_signal(self, signal: Signal) -> None:
        self._console.log_signal(signal)

    async def send_alert(self, alert: Alert) -> None:
        self._console.log_event(
            alert.title,
            level=_PRIORITY_LEVELS.get(alert.priority, "info"),
            details={"message": alert.message, "priority": alert.priority.value},
        )


class WebhookChannel(NotificationChannel):
    """POSTs JSON documents to a webhook URL."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def send_signal(self, signal: Signal) -> None:
        await self._post({"type": "signal", "signal": signal.to_dict()})

    async def send_alert(self, alert: Alert) -> None:
        await self._post(
            {
                "type": "alert",
                "title": alert.title,
                "message": alert.message,
                "priority": alert.priority.value,
            }
        )

    async def _post(self, payload: Mapping[str, Any]) -> None:
        try:
            response = await self._client.post(self._url, json=payload)
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Webhook request failed: {exc}") from exc
        status = response.status_code
        if status < 400:
            return
        detail = f"Webhook responded {status}"
        if status in (401, 403):
            raise AuthenticationError(detail)
        if status == 404:
            raise NotFoundError(detail)
        if status in (400, 422):
            raise PayloadRejectedError(detail)
        raise DeliveryError(detail)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
