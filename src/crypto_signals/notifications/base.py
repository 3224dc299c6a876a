from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List

from crypto_signals.signals.models import Signal


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(slots=True)
class Alert:
    title: str
    message: str
    priority: Priority = Priority.NORMAL


@dataclass(slots=True)
class NotificationResult:
    success: bool
    delivered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class NotificationChannel(ABC):
    """A single delivery transport.

    Implementations raise ``DeliveryError`` (or a subclass) on failure; the
    ``retryable`` flag of the raised error decides whether the service tries
    again.
    """

    name: str

    @abstractmethod
    async def send_signal(self, signal: Signal) -> None:
        raise NotImplementedError

    @abstractmethod
    async def send_alert(self, alert: Alert) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None
