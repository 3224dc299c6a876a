from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from crypto_signals.config.models import NotificationConfig
from crypto_signals.errors import DeliveryError
from crypto_signals.signals.models import Signal

from .base import Alert, NotificationChannel, NotificationResult, Priority

logger = logging.getLogger(__name__)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, DeliveryError):
        return exc.retryable
    return not isinstance(exc, (TypeError, ValueError))


class NotificationService:
    """Fans a message out to every channel in parallel.

    Each channel gets its own retry budget; one failing channel never blocks
    or fails the others.
    """

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        config: NotificationConfig | None = None,
    ) -> None:
        self._channels = list(channels)
        self._config = config or NotificationConfig()

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            wait=wait_exponential(multiplier=1, max=self._config.max_backoff_seconds),
            stop=stop_after_attempt(max(1, self._config.retry_attempts)),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )

    async def _deliver(
        self,
        channel: NotificationChannel,
        send: Callable[[NotificationChannel], Awaitable[None]],
    ) -> None:
        async for attempt in self._retrying():
            with attempt:
                await send(channel)

    async def _fan_out(
        self, send: Callable[[NotificationChannel], Awaitable[None]], what: str
    ) -> NotificationResult:
        if not self._channels:
            return NotificationResult(success=False, errors=["No notification channels configured"])
        outcomes = await asyncio.gather(
            *(self._deliver(channel, send) for channel in self._channels),
            return_exceptions=True,
        )
        result = NotificationResult(success=False)
        for channel, outcome in zip(self._channels, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Channel %s failed to deliver %s: %s", channel.name, what, outcome)
                result.failed.append(channel.name)
                result.errors.append(f"{channel.name}: {outcome}")
            else:
                result.delivered.append(channel.name)
        result.success = bool(result.delivered)
        return result

    async def send_signal_notification(self, signal: Signal) -> NotificationResult:
        result = await self._fan_out(lambda channel: channel.send_signal(signal), f"signal {signal.id}")
        if result.delivered:
            logger.info("Signal %s delivered via %s", signal.id, ", ".join(result.delivered))
        return result

    async def send_alert(
        self, title: str, message: str, priority: Priority = Priority.NORMAL
    ) -> NotificationResult:
        alert = Alert(title=title, message=message, priority=Priority(priority))
        return await self._fan_out(lambda channel: channel.send_alert(alert), f"alert {title!r}")

    async def close(self) -> None:
        for channel in self._channels:
            await channel.close()
