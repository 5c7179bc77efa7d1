"""Wiring of stores, event bus, calculator and recorders into one engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from peanut.attribution.cache import Cache, TTLCache
from peanut.attribution.calculator import AttributionCalculator
from peanut.attribution.config import AttributionConfig, BigQueryStorageConfig
from peanut.attribution.events import ConversionRecorded, EventBus
from peanut.attribution.stores import (
    AttributionResultStore,
    ConversionStore,
    InMemoryAttributionResultStore,
    InMemoryConversionStore,
    InMemoryTouchStore,
    TouchStore,
)
from peanut.attribution.tracking import ConversionRecorder, TouchTracker

logger = logging.getLogger(__name__)


@dataclass
class AttributionEngine:
    """Ready-to-use set of attribution components sharing one event bus."""

    config: AttributionConfig
    event_bus: EventBus
    calculator: AttributionCalculator
    tracker: TouchTracker
    recorder: ConversionRecorder

    @classmethod
    def create(
        cls,
        touch_store: TouchStore,
        conversion_store: ConversionStore,
        result_store: AttributionResultStore,
        config: AttributionConfig | None = None,
        cache: Cache | None = None,
        attribute_on_record: bool = True,
    ) -> AttributionEngine:
        """
        Build an engine over the given stores.

        Args:
            touch_store: Visitor touch log
            conversion_store: Conversion records
            result_store: Attribution result rows
            config: Attribution settings (defaults if not provided)
            cache: Report cache (in-memory TTL cache if not provided)
            attribute_on_record: Compute all models as soon as a conversion is recorded
        """
        config = config or AttributionConfig()
        bus = EventBus()
        calculator = AttributionCalculator(
            touch_store=touch_store,
            conversion_store=conversion_store,
            result_store=result_store,
            config=config,
            cache=cache if cache is not None else TTLCache(),
            event_bus=bus,
        )
        if attribute_on_record:
            bus.subscribe(ConversionRecorded, calculator.handle_conversion_recorded)

        return cls(
            config=config,
            event_bus=bus,
            calculator=calculator,
            tracker=TouchTracker(touch_store),
            recorder=ConversionRecorder(conversion_store, bus),
        )

    @classmethod
    def in_memory(cls, config: AttributionConfig | None = None, **kwargs) -> AttributionEngine:
        """Engine over fresh in-memory stores."""
        return cls.create(
            InMemoryTouchStore(),
            InMemoryConversionStore(),
            InMemoryAttributionResultStore(),
            config=config,
            **kwargs,
        )

    @classmethod
    def bigquery(
        cls,
        config: AttributionConfig | None = None,
        storage_config: BigQueryStorageConfig | None = None,
        **kwargs,
    ) -> AttributionEngine:
        """Engine over BigQuery storage; tables are created if missing."""
        from peanut.attribution.storage import BigQueryAttributionStorage

        storage = BigQueryAttributionStorage(storage_config)
        storage.ensure_tables_exist()
        logger.info(f"Using BigQuery attribution storage in {storage.touches.dataset_id}")
        return cls.create(
            storage.touches,
            storage.conversions,
            storage.results,
            config=config,
            **kwargs,
        )
