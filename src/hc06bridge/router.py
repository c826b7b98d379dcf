"""
Typed event routing between the serial session and its consumers.

The serial session publishes ``SerialEvent`` objects; the event hub (and
anything else interested, e.g. tests) subscribes per ``EventKind``.
"""
import time
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from .logging_setup import get_logger

logger = get_logger(__name__)


class EventKind(Enum):
    """Events raised by the serial session"""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    DATA = "data"
    ERROR = "error"


@dataclass(frozen=True)
class SerialEvent:
    kind: EventKind
    data: Any = None
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))


EventHandler = Callable[[SerialEvent], Awaitable[None]]


class EventRouter:
    def __init__(self):
        self._subscribers: dict[EventKind, list[EventHandler]] = defaultdict(list)

    def subscribe(self, kind: EventKind, handler: EventHandler) -> None:
        """Subscribe to one event kind"""
        self._subscribers[kind].append(handler)
        logger.debug("%s subscribed to '%s'", getattr(handler, "__name__", handler), kind.value)

    def subscribe_all(self, handler: EventHandler) -> None:
        for kind in EventKind:
            self.subscribe(kind, handler)

    def unsubscribe(self, kind: EventKind, handler: EventHandler) -> None:
        try:
            self._subscribers[kind].remove(handler)
        except ValueError:
            pass

    async def publish(self, event: SerialEvent) -> None:
        """Deliver an event to every subscriber of its kind, in subscription order"""
        for handler in list(self._subscribers[event.kind]):
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    "Failed to route %s to %s: %s",
                    event.kind.value, getattr(handler, "__name__", handler), e,
                    exc_info=True,
                )

    def subscription_count(self) -> int:
        return sum(len(handlers) for handlers in self._subscribers.values())
