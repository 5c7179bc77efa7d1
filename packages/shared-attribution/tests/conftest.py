"""Pytest fixtures for shared-attribution tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest
from peanut.attribution.cache import TTLCache
from peanut.attribution.calculator import AttributionCalculator
from peanut.attribution.config import AttributionConfig
from peanut.attribution.events import EventBus
from peanut.attribution.schema import Conversion, Touch
from peanut.attribution.stores import (
    InMemoryAttributionResultStore,
    InMemoryConversionStore,
    InMemoryTouchStore,
)


@pytest.fixture
def converted_at() -> datetime:
    """Reference conversion time."""
    return datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def touch_store() -> InMemoryTouchStore:
    return InMemoryTouchStore()


@pytest.fixture
def conversion_store() -> InMemoryConversionStore:
    return InMemoryConversionStore()


@pytest.fixture
def result_store() -> InMemoryAttributionResultStore:
    return InMemoryAttributionResultStore()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def calculator(touch_store, conversion_store, result_store, event_bus) -> AttributionCalculator:
    """Calculator over in-memory stores with a report cache."""
    return AttributionCalculator(
        touch_store=touch_store,
        conversion_store=conversion_store,
        result_store=result_store,
        config=AttributionConfig(),
        cache=TTLCache(),
        event_bus=event_bus,
    )


@pytest.fixture
def add_touch(touch_store, converted_at) -> Callable[..., Touch]:
    """Append a touch ``days_before`` the reference conversion time."""

    def _add(
        visitor_id: str = "v1",
        days_before: float = 1.0,
        utm_source: str | None = "google",
        utm_medium: str | None = "cpc",
        utm_campaign: str | None = None,
        channel_group: str = "Paid Search",
    ) -> Touch:
        return touch_store.append(
            Touch(
                visitor_id=visitor_id,
                occurred_at=converted_at - timedelta(days=days_before),
                channel_group=channel_group,
                utm_source=utm_source,
                utm_medium=utm_medium,
                utm_campaign=utm_campaign,
            )
        )

    return _add


@pytest.fixture
def add_conversion(conversion_store, converted_at) -> Callable[..., Conversion]:
    """Store a conversion; it does not publish any event."""

    def _add(
        visitor_id: str = "v1",
        value: float | None = 100.0,
        occurred_at: datetime | None = None,
        conversion_type: str = "purchase",
    ) -> Conversion:
        return conversion_store.add(
            Conversion(
                visitor_id=visitor_id,
                conversion_type=conversion_type,
                value=value,
                occurred_at=occurred_at or converted_at,
            )
        )

    return _add
