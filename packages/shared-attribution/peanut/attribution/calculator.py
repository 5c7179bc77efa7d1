"""
Attribution calculator - orchestrates stores, models and report aggregation.

The calculator is the only component that writes attribution results. For a
conversion it loads the visitor's touches up to the conversion time, applies
a model, and atomically replaces the stored rows for that
(conversion, model) pair. Reports compute missing results lazily.

Results are not invalidated when new touches arrive after a calculation;
they change only when recomputed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from peanut.attribution import models
from peanut.attribution.aggregator import Report, ReportAggregator
from peanut.attribution.cache import Cache, NullCache
from peanut.attribution.config import AttributionConfig
from peanut.attribution.events import AttributionCalculated, ConversionRecorded, EventBus
from peanut.attribution.exceptions import (
    AttributionError,
    ConversionNotFound,
    StorageError,
)
from peanut.attribution.schema import (
    AttributionModel,
    AttributionResult,
    Conversion,
    DateRange,
    Touch,
)
from peanut.attribution.stores import (
    AttributionResultStore,
    ConversionStore,
    TouchStore,
)

logger = logging.getLogger(__name__)

REPORT_CACHE_PREFIX = "attribution:report:"

LOCK_STRIPES = 64


@dataclass
class PendingRunResult:
    """Outcome of a batch run over unattributed conversions."""

    processed: int = 0
    pending: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "errors": len(self.errors),
            "pending": self.pending,
            "messages": list(self.errors),
        }


@dataclass
class ConversionDetail:
    """A conversion enriched with its touches and attribution rows."""

    conversion: Conversion
    model: AttributionModel
    touches: list[Touch]
    attribution: list[AttributionResult]
    model_comparison: dict[AttributionModel, dict[str, float]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.conversion.to_dict(),
            "model": self.model.value,
            "touches": [t.to_dict() for t in self.touches],
            "attribution": [r.to_dict() for r in self.attribution],
            "model_comparison": {m.value: credit for m, credit in self.model_comparison.items()},
        }


@contextmanager
def _storage_call(operation: str) -> Iterator[None]:
    """Surface unexpected store failures as StorageError."""
    try:
        yield
    except AttributionError:
        raise
    except Exception as e:
        raise StorageError(f"{operation} failed: {e}") from e


class AttributionCalculator:
    """
    Compute, persist and report multi-touch attribution.

    Example:
        calculator = AttributionCalculator(
            touch_store=InMemoryTouchStore(),
            conversion_store=InMemoryConversionStore(),
            result_store=InMemoryAttributionResultStore(),
        )
        results = calculator.calculate_for_conversion(42, "linear")
        report = calculator.get_report("time_decay", DateRange.parse("2025-01-01", "2025-01-31"))
    """

    def __init__(
        self,
        touch_store: TouchStore,
        conversion_store: ConversionStore,
        result_store: AttributionResultStore,
        config: AttributionConfig | None = None,
        cache: Cache | None = None,
        event_bus: EventBus | None = None,
        aggregator: ReportAggregator | None = None,
    ):
        self.touch_store = touch_store
        self.conversion_store = conversion_store
        self.result_store = result_store
        self.config = config or AttributionConfig()
        self.cache = cache if cache is not None else NullCache()
        self.event_bus = event_bus
        self.aggregator = aggregator or ReportAggregator()

        # Striped; unrelated keys may share a lock
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _key_lock(self, conversion_id: int, model: AttributionModel) -> threading.Lock:
        return self._locks[hash((conversion_id, model.value)) % LOCK_STRIPES]

    def _load_conversion(self, conversion_id: int) -> Conversion:
        with _storage_call("Loading conversion"):
            conversion = self.conversion_store.get(conversion_id)
        if conversion is None:
            raise ConversionNotFound(conversion_id)
        return conversion

    def _qualifying_touches(self, conversion: Conversion) -> list[Touch]:
        after = None
        if self.config.lookback_days is not None:
            after = conversion.occurred_at - timedelta(days=self.config.lookback_days)
        with _storage_call("Loading touches"):
            touches = self.touch_store.get_visitor_touches(
                conversion.visitor_id,
                before_or_at=conversion.occurred_at,
                after_or_at=after,
            )
        return [t for t in touches if t.occurred_at <= conversion.occurred_at]

    def _compute(
        self,
        conversion: Conversion,
        touches: list[Touch],
        model: AttributionModel,
    ) -> list[AttributionResult]:
        weights = models.calculate(
            model,
            touches,
            conversion.occurred_at,
            half_life_days=self.config.half_life_days,
        )
        return [
            AttributionResult(
                conversion_id=conversion.id,
                model=model,
                touch_id=touch_id,
                weight=weight,
                credited_value=weight * conversion.value if conversion.value is not None else None,
            )
            for touch_id, weight in weights.items()
            if weight > 0
        ]

    def calculate_for_conversion(
        self,
        conversion_id: int,
        model: AttributionModel | str,
    ) -> list[AttributionResult]:
        """
        Compute and persist attribution for one conversion under one model.

        Replaces any previously stored rows for this (conversion, model).
        Only touches with positive weight are returned and stored.

        Raises:
            InvalidModel: If model is not a supported model name
            ConversionNotFound: If the conversion does not exist
            StorageError: If a store call fails
        """
        model = AttributionModel.parse(model)
        conversion = self._load_conversion(conversion_id)

        with self._key_lock(conversion.id, model):
            touches = self._qualifying_touches(conversion)
            results = self._compute(conversion, touches, model)
            with _storage_call("Saving attribution results"):
                self.result_store.replace(conversion.id, model, results)

        self.cache.invalidate_prefix(REPORT_CACHE_PREFIX)
        logger.info(
            f"Calculated {model.value} attribution for conversion {conversion.id}: "
            f"{len(touches)} touches, {len(results)} credited"
        )
        return results

    def calculate_all_models(self, conversion_id: int) -> dict[AttributionModel, list[AttributionResult]]:
        """Compute every model for one conversion."""
        return {
            model: self.calculate_for_conversion(conversion_id, model)
            for model in AttributionModel
        }

    def _ensure_results(
        self,
        conversion: Conversion,
        model: AttributionModel,
    ) -> list[AttributionResult]:
        with _storage_call("Loading attribution results"):
            computed = self.result_store.has(conversion.id, model)
            if computed:
                return self.result_store.get(conversion.id, model)
        return self.calculate_for_conversion(conversion.id, model)

    def _build_report(self, model: AttributionModel, date_range: DateRange) -> Report:
        with _storage_call("Listing conversions"):
            conversions = self.conversion_store.list_conversions(date_range)
        conversions.sort(key=lambda c: (c.occurred_at, c.id))

        results = {c.id: self._ensure_results(c, model) for c in conversions}
        touch_ids = sorted({r.touch_id for rows in results.values() for r in rows})
        with _storage_call("Loading touches"):
            touches = self.touch_store.get_many(touch_ids)

        return self.aggregator.build_report(
            model=model,
            date_range=date_range,
            conversions=conversions,
            results=results,
            touches=touches,
            half_life_days=self.config.half_life_days,
        )

    def get_report(
        self,
        model: AttributionModel | str,
        date_range: DateRange | None = None,
    ) -> Report:
        """
        Channel performance report for conversions within a date range.

        A missing range covers all time. Missing results are computed on
        demand; the assembled report is cached under a key derived from the
        model and range.

        Raises:
            InvalidModel: If model is not a supported model name
            StorageError: If a store call fails
        """
        model = AttributionModel.parse(model)
        date_range = date_range or DateRange.all_time()
        key = f"{REPORT_CACHE_PREFIX}{model.value}:{date_range.cache_token}"
        return self.cache.get_or_compute(
            key,
            self.config.report_cache_ttl,
            lambda: self._build_report(model, date_range),
        )

    def compare_models(self, date_range: DateRange | None = None) -> dict[AttributionModel, Report]:
        """Run get_report for every model over the same range."""
        date_range = date_range or DateRange.all_time()
        return {model: self.get_report(model, date_range) for model in AttributionModel}

    def get_conversion_detail(
        self,
        conversion_id: int,
        model: AttributionModel | str | None = None,
    ) -> ConversionDetail:
        """
        Conversion with its qualifying touches and attribution rows.

        Uses the configured default model when none is given; results are
        computed if they have not been yet.

        Raises:
            InvalidModel: If model is not a supported model name
            ConversionNotFound: If the conversion does not exist
        """
        model = AttributionModel.parse(model if model is not None else self.config.default_model)
        conversion = self._load_conversion(conversion_id)
        touches = self._qualifying_touches(conversion)
        attribution = self._ensure_results(conversion, model)

        return ConversionDetail(
            conversion=conversion,
            model=model,
            touches=touches,
            attribution=attribution,
            model_comparison=models.compare_channel_credit(
                touches,
                conversion.occurred_at,
                half_life_days=self.config.half_life_days,
            ),
        )

    def process_pending_conversions(self, limit: int | None = None) -> PendingRunResult:
        """
        Compute all models for conversions that have no stored results yet.

        Failures for one conversion are recorded and the batch continues.
        """
        if limit is None:
            limit = self.config.pending_batch_size
        with _storage_call("Listing conversions"):
            conversions = self.conversion_store.list_conversions()
            computed = self.result_store.computed_models([c.id for c in conversions])
        all_models = set(AttributionModel)
        pending = [c for c in conversions if computed.get(c.id, set()) != all_models][:limit]

        outcome = PendingRunResult(pending=len(pending))
        for conversion in pending:
            try:
                self.calculate_all_models(conversion.id)
                outcome.processed += 1
            except AttributionError as e:
                logger.exception(f"Attribution failed for conversion {conversion.id}")
                outcome.errors.append(f"{conversion.id}: {e}")

        if outcome.processed or outcome.errors:
            logger.info(
                f"Processed {outcome.processed} pending conversions, {len(outcome.errors)} errors"
            )
        return outcome

    def handle_conversion_recorded(self, event: ConversionRecorded) -> None:
        """
        Event handler: attribute a newly recorded conversion under every model.

        Failures are logged and not raised; the conversion is already stored
        and stays pending until process_pending_conversions picks it up.
        """
        try:
            results = self.calculate_all_models(event.conversion_id)
        except AttributionError:
            logger.exception(
                f"Attribution failed for new conversion {event.conversion_id}; left pending"
            )
            return
        if self.event_bus is not None:
            self.event_bus.publish(
                AttributionCalculated(conversion_id=event.conversion_id, results=results)
            )
