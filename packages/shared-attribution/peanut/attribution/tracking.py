"""Recording touches and conversions from visitor and webhook events."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from peanut.attribution.events import ConversionRecorded, EventBus
from peanut.attribution.normalizer import build_touch
from peanut.attribution.schema import Conversion, ConversionType, Touch, TouchType
from peanut.attribution.stores import ConversionStore, TouchStore

logger = logging.getLogger(__name__)

TOUCH_EVENTS = frozenset({
    TouchType.PAGEVIEW.value,
    TouchType.CLICK.value,
    TouchType.FORM_VIEW.value,
    TouchType.FORM_START.value,
})

CONVERSION_FORM_TYPES = frozenset({"lead", "contact", "signup", "newsletter"})

FORM_SOURCE = "formflow-lite"


class TouchTracker:
    """Append touches for significant visitor events."""

    def __init__(self, touch_store: TouchStore):
        self.touch_store = touch_store

    def handle_visitor_event(
        self,
        visitor_id: str,
        event_type: str,
        event_data: dict[str, Any],
        occurred_at: datetime | None = None,
    ) -> Touch | None:
        """
        Record a touch if the event is attribution-relevant.

        Only pageviews, clicks and form views/starts count. Events other
        than pageviews additionally need UTM data or a referrer.

        Returns:
            The stored Touch, or None if the event was ignored
        """
        if event_type not in TOUCH_EVENTS:
            return None

        has_utm = bool(event_data.get("utm_source") or event_data.get("utm_campaign"))
        has_referrer = bool(event_data.get("referrer"))
        if not has_utm and not has_referrer and event_type != TouchType.PAGEVIEW.value:
            return None

        touch = build_touch(visitor_id, {**event_data, "event_type": event_type}, occurred_at)
        stored = self.touch_store.append(touch)
        logger.info(f"Recorded {event_type} touch {stored.id} for visitor {visitor_id} ({stored.channel_group})")
        return stored

    def record_many(self, touches: list[Touch]) -> list[Touch]:
        """Append already-normalized touches in order."""
        return [self.touch_store.append(t) for t in touches]

    def purge_expired(self, retention_days: int, now: datetime | None = None) -> int:
        """Delete touches older than the retention window."""
        cutoff = (now or datetime.now(UTC)) - timedelta(days=retention_days)
        deleted = self.touch_store.delete_older_than(cutoff)
        if deleted:
            logger.info(f"Cleaned up {deleted} touches older than {retention_days} days")
        return deleted


class ConversionRecorder:
    """
    Store conversions and publish ConversionRecorded.

    Example:
        recorder = ConversionRecorder(conversion_store, bus)
        conversion = recorder.record("v_123", "purchase", value=99.0)
    """

    def __init__(self, conversion_store: ConversionStore, event_bus: EventBus):
        self.conversion_store = conversion_store
        self.event_bus = event_bus

    def record(
        self,
        visitor_id: str,
        conversion_type: str,
        value: float | None = None,
        occurred_at: datetime | None = None,
        source: str | None = None,
        source_id: str | None = None,
        email: str | None = None,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Conversion:
        """Persist a conversion and notify subscribers."""
        conversion = self.conversion_store.add(
            Conversion(
                visitor_id=visitor_id,
                conversion_type=conversion_type,
                value=value,
                occurred_at=occurred_at or datetime.now(UTC),
                source=source,
                source_id=source_id,
                customer_email=email,
                customer_name=name,
                metadata=metadata or {},
            )
        )
        logger.info(f"Recorded {conversion_type} conversion {conversion.id} for visitor {visitor_id}")

        self.event_bus.publish(
            ConversionRecorded(
                conversion_id=conversion.id,
                visitor_id=conversion.visitor_id,
                conversion_type=conversion.conversion_type,
                value=conversion.value,
                occurred_at=conversion.occurred_at,
            )
        )
        return conversion

    def record_form_submission(self, payload: dict[str, Any]) -> Conversion | None:
        """Record lead-style form submissions; other forms are ignored."""
        visitor_id = payload.get("visitor_id")
        if not visitor_id:
            return None

        if payload.get("form_type", "general") not in CONVERSION_FORM_TYPES:
            return None

        return self.record(
            visitor_id,
            ConversionType.FORM_SUBMISSION.value,
            source=FORM_SOURCE,
            source_id=payload.get("submission_id"),
            email=payload.get("email"),
            name=payload.get("name"),
            metadata={
                "form_id": payload.get("form_id"),
                "form_name": payload.get("form_name"),
            },
        )

    def record_enrollment(self, payload: dict[str, Any]) -> Conversion | None:
        """Record a completed enrollment."""
        visitor_id = payload.get("visitor_id")
        if not visitor_id:
            return None

        return self.record(
            visitor_id,
            ConversionType.ENROLLMENT.value,
            source=FORM_SOURCE,
            source_id=payload.get("enrollment_id"),
            email=payload.get("email"),
            name=payload.get("name"),
            metadata={
                "workflow_id": payload.get("workflow_id"),
                "workflow_name": payload.get("workflow_name"),
            },
        )
