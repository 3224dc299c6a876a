"""In-process publish/subscribe bus.

Delivery is at-most-once to the handlers subscribed at publish time. All
handlers of one event run concurrently and a failing handler is logged and
counted without affecting the others or the publisher.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Union

from crypto_signals.data.models import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    MONITORING_STARTED = "monitoring.started"
    MONITORING_STOPPED = "monitoring.stopped"
    MONITORING_ERROR = "monitoring.error"
    MARKET_DATA_UPDATED = "market.data.updated"
    SIGNAL_GENERATED = "signal.generated"
    SIGNAL_GENERATION_FAILED = "signal.generation.failed"
    SIGNAL_BATCH_COMPLETED = "signal.batch.completed"
    PAIR_DEACTIVATED = "pair.deactivated"


@dataclass(slots=True, frozen=True)
class Event:
    type: str
    payload: Mapping[str, Any]
    source: str = "unknown"
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=utcnow)
    correlation_id: str | None = None


EventHandler = Callable[[Event], Union[None, Awaitable[None]]]


@dataclass(slots=True)
class EventBusMetrics:
    total_published: int = 0
    total_handled: int = 0
    error_count: int = 0
    events_by_type: Dict[str, int] = field(default_factory=dict)
    handlers_by_type: Dict[str, int] = field(default_factory=dict)
    average_handling_ms: float = 0.0
    last_event_at: datetime | None = None


class EventBus:
    def __init__(self, history_size: int = 1000) -> None:
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._metrics = EventBusMetrics()
        self._handling_times: Deque[float] = deque(maxlen=history_size)

    @staticmethod
    def _key(event_type: str | EventType) -> str:
        return event_type.value if isinstance(event_type, EventType) else event_type

    def subscribe(self, event_type: str | EventType, handler: EventHandler) -> None:
        key = self._key(event_type)
        handlers = self._handlers.setdefault(key, [])
        if handler not in handlers:
            handlers.append(handler)
        self._metrics.handlers_by_type[key] = len(handlers)

    def unsubscribe(self, event_type: str | EventType, handler: EventHandler) -> bool:
        key = self._key(event_type)
        handlers = self._handlers.get(key)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        if handlers:
            self._metrics.handlers_by_type[key] = len(handlers)
        else:
            del self._handlers[key]
            self._metrics.handlers_by_type.pop(key, None)
        return True

    def clear(self) -> None:
        self._handlers.clear()
        self._metrics.handlers_by_type.clear()

    async def publish(
        self,
        event_type: str | EventType,
        payload: Mapping[str, Any] | None = None,
        source: str = "unknown",
        correlation_id: str | None = None,
    ) -> Event:
        event = Event(
            type=self._key(event_type),
            payload=dict(payload or {}),
            source=source,
            correlation_id=correlation_id,
        )
        metrics = self._metrics
        metrics.total_published += 1
        metrics.events_by_type[event.type] = metrics.events_by_type.get(event.type, 0) + 1
        metrics.last_event_at = event.timestamp
        logger.debug("Publishing %s from %s", event.type, source)

        handlers = list(self._handlers.get(event.type, ()))
        if handlers:
            await asyncio.gather(*(self._dispatch(handler, event) for handler in handlers))
        return event

    async def _dispatch(self, handler: EventHandler, event: Event) -> None:
        started = time.perf_counter()
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            self._metrics.error_count += 1
            logger.exception("Handler %r failed for event %s", handler, event.type)
            return
        self._handling_times.append((time.perf_counter() - started) * 1000)
        self._metrics.total_handled += 1

    def metrics(self) -> EventBusMetrics:
        times = self._handling_times
        average = sum(times) / len(times) if times else 0.0
        current = self._metrics
        return EventBusMetrics(
            total_published=current.total_published,
            total_handled=current.total_handled,
            error_count=current.error_count,
            events_by_type=dict(current.events_by_type),
            handlers_by_type=dict(current.handlers_by_type),
            average_handling_ms=average,
            last_event_at=current.last_event_at,
        )
