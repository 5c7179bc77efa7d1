"""In-process event bus connecting conversion producers and consumers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from peanut.attribution.schema import AttributionModel, AttributionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversionRecorded:
    """Published after a conversion has been stored."""

    conversion_id: int
    visitor_id: str
    conversion_type: str
    value: float | None
    occurred_at: datetime


@dataclass(frozen=True)
class AttributionCalculated:
    """Published after all models were computed for a new conversion."""

    conversion_id: int
    results: dict[AttributionModel, list[AttributionResult]] = field(default_factory=dict)


Handler = Callable[[Any], None]


class EventBus:
    """Synchronous publish/subscribe keyed by event class.

    Handlers run in subscription order on the publisher's thread; an
    exception in a handler propagates to the publisher.

    Example:
        bus = EventBus()
        bus.subscribe(ConversionRecorded, calculator.handle_conversion_recorded)
        bus.publish(ConversionRecorded(...))
    """

    def __init__(self):
        self._handlers: dict[type, list[Handler]] = {}

    def subscribe(self, event_type: type, handler: Handler) -> None:
        """Register a handler for an event class."""
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed {getattr(handler, '__qualname__', handler)} to {event_type.__name__}")

    def unsubscribe(self, event_type: type, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: Any) -> None:
        """Deliver an event to every handler subscribed to its class."""
        for handler in list(self._handlers.get(type(event), [])):
            handler(event)

    def handlers(self, event_type: type) -> list[Handler]:
        return list(self._handlers.get(event_type, []))
