"""
Peanut Attribution - multi-touch attribution for visitor journeys.

Provides:
- Touch / Conversion / AttributionResult schema
- Five credit models (first touch, last touch, linear, time decay, position based)
- A calculator that persists results and builds channel reports
- In-memory and BigQuery stores, a report cache and an in-process event bus

A visitor's touches are recorded as they happen. When the visitor converts,
the conversion is attributed to those touches under every model, and reports
roll the credit up per (utm_source, utm_medium, utm_campaign) channel.

Usage:
    from peanut.attribution import AttributionEngine, DateRange

    engine = AttributionEngine.in_memory()
    engine.tracker.handle_visitor_event("v1", "pageview", {"utm_source": "google", "utm_medium": "cpc"})
    engine.recorder.record("v1", "purchase", value=120.0)

    report = engine.calculator.get_report("linear", DateRange.parse("2025-01-01", "2025-01-31"))
"""

from peanut.attribution.aggregator import (
    ChannelSummary,
    PeriodSummary,
    Report,
    ReportAggregator,
)
from peanut.attribution.cache import NullCache, TTLCache
from peanut.attribution.calculator import (
    AttributionCalculator,
    ConversionDetail,
    PendingRunResult,
)
from peanut.attribution.channels import determine_channel
from peanut.attribution.config import AttributionConfig, BigQueryStorageConfig
from peanut.attribution.engine import AttributionEngine
from peanut.attribution.events import AttributionCalculated, ConversionRecorded, EventBus
from peanut.attribution.exceptions import (
    AttributionError,
    ConversionNotFound,
    InvalidModel,
    StorageError,
)
from peanut.attribution.models import MODEL_NAMES, describe
from peanut.attribution.normalizer import TouchNormalizer
from peanut.attribution.schema import (
    AttributionModel,
    AttributionResult,
    Channel,
    Conversion,
    ConversionType,
    DateRange,
    Touch,
    TouchType,
)
from peanut.attribution.stores import (
    InMemoryAttributionResultStore,
    InMemoryConversionStore,
    InMemoryTouchStore,
)
from peanut.attribution.tracking import ConversionRecorder, TouchTracker

__all__ = [
    # Schema
    "AttributionModel",
    "AttributionResult",
    "Channel",
    "Conversion",
    "ConversionType",
    "DateRange",
    "Touch",
    "TouchType",
    # Models
    "MODEL_NAMES",
    "describe",
    # Calculation and reporting
    "AttributionCalculator",
    "ConversionDetail",
    "PendingRunResult",
    "ReportAggregator",
    "Report",
    "ChannelSummary",
    "PeriodSummary",
    # Infrastructure
    "AttributionConfig",
    "BigQueryStorageConfig",
    "AttributionEngine",
    "EventBus",
    "ConversionRecorded",
    "AttributionCalculated",
    "TTLCache",
    "NullCache",
    "InMemoryTouchStore",
    "InMemoryConversionStore",
    "InMemoryAttributionResultStore",
    # Tracking
    "TouchTracker",
    "ConversionRecorder",
    "TouchNormalizer",
    "determine_channel",
    # Errors
    "AttributionError",
    "ConversionNotFound",
    "InvalidModel",
    "StorageError",
]
