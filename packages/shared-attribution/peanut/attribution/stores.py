"""
Store interfaces consumed by the attribution engine, with in-memory backends.

The engine treats persistence as three narrow collaborators:
- TouchStore: append-only log of visitor touches
- ConversionStore: conversion records
- AttributionResultStore: derived credit rows, replaced per (conversion, model)

The in-memory implementations are thread-safe and assign increasing
integer ids, so insertion order can break timestamp ties.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import datetime
from typing import Protocol, runtime_checkable

from peanut.attribution.schema import (
    AttributionModel,
    AttributionResult,
    Conversion,
    DateRange,
    Touch,
    ensure_utc,
)


@runtime_checkable
class TouchStore(Protocol):
    """Append-only visitor touch log."""

    def append(self, touch: Touch) -> Touch: ...

    def get_visitor_touches(
        self,
        visitor_id: str,
        before_or_at: datetime | None = None,
        after_or_at: datetime | None = None,
    ) -> list[Touch]: ...

    def get_many(self, touch_ids: list[int]) -> dict[int, Touch]: ...

    def delete_older_than(self, cutoff: datetime) -> int: ...

    def count(self) -> int: ...


@runtime_checkable
class ConversionStore(Protocol):
    """Conversion records."""

    def add(self, conversion: Conversion) -> Conversion: ...

    def get(self, conversion_id: int) -> Conversion | None: ...

    def list_conversions(self, date_range: DateRange | None = None) -> list[Conversion]: ...


@runtime_checkable
class AttributionResultStore(Protocol):
    """Derived attribution rows keyed by (conversion, model)."""

    def replace(
        self,
        conversion_id: int,
        model: AttributionModel,
        results: list[AttributionResult],
    ) -> None: ...

    def get(self, conversion_id: int, model: AttributionModel) -> list[AttributionResult]: ...

    def has(self, conversion_id: int, model: AttributionModel) -> bool: ...

    def computed_models(self, conversion_ids: list[int]) -> dict[int, set[AttributionModel]]: ...


class InMemoryTouchStore:
    """Thread-safe in-memory TouchStore."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._touches: dict[int, Touch] = {}

    def append(self, touch: Touch) -> Touch:
        with self._lock:
            stored = replace(touch, id=next(self._ids))
            self._touches[stored.id] = stored
        return stored

    def get_visitor_touches(
        self,
        visitor_id: str,
        before_or_at: datetime | None = None,
        after_or_at: datetime | None = None,
    ) -> list[Touch]:
        upper = ensure_utc(before_or_at) if before_or_at else None
        lower = ensure_utc(after_or_at) if after_or_at else None
        with self._lock:
            touches = [
                t
                for t in self._touches.values()
                if t.visitor_id == visitor_id
                and (upper is None or t.occurred_at <= upper)
                and (lower is None or t.occurred_at >= lower)
            ]
        return sorted(touches, key=lambda t: t.order_key())

    def get_many(self, touch_ids: list[int]) -> dict[int, Touch]:
        with self._lock:
            return {i: self._touches[i] for i in touch_ids if i in self._touches}

    def delete_older_than(self, cutoff: datetime) -> int:
        cutoff = ensure_utc(cutoff)
        with self._lock:
            expired = [i for i, t in self._touches.items() if t.occurred_at < cutoff]
            for touch_id in expired:
                del self._touches[touch_id]
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._touches)


class InMemoryConversionStore:
    """Thread-safe in-memory ConversionStore."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._conversions: dict[int, Conversion] = {}

    def add(self, conversion: Conversion) -> Conversion:
        with self._lock:
            stored = replace(conversion, id=next(self._ids))
            self._conversions[stored.id] = stored
        return stored

    def get(self, conversion_id: int) -> Conversion | None:
        with self._lock:
            return self._conversions.get(conversion_id)

    def list_conversions(self, date_range: DateRange | None = None) -> list[Conversion]:
        with self._lock:
            conversions = list(self._conversions.values())
        if date_range is not None:
            conversions = [c for c in conversions if date_range.contains(c.occurred_at)]
        return sorted(conversions, key=lambda c: (c.occurred_at, c.id))


class InMemoryAttributionResultStore:
    """Thread-safe in-memory AttributionResultStore with atomic replace."""

    def __init__(self):
        self._lock = threading.Lock()
        self._results: dict[tuple[int, AttributionModel], tuple[AttributionResult, ...]] = {}

    def replace(
        self,
        conversion_id: int,
        model: AttributionModel,
        results: list[AttributionResult],
    ) -> None:
        with self._lock:
            self._results[(conversion_id, model)] = tuple(results)

    def get(self, conversion_id: int, model: AttributionModel) -> list[AttributionResult]:
        with self._lock:
            return list(self._results.get((conversion_id, model), ()))

    def has(self, conversion_id: int, model: AttributionModel) -> bool:
        with self._lock:
            return (conversion_id, model) in self._results

    def computed_models(self, conversion_ids: list[int]) -> dict[int, set[AttributionModel]]:
        wanted = set(conversion_ids)
        computed: dict[int, set[AttributionModel]] = {}
        with self._lock:
            for conversion_id, model in self._results:
                if conversion_id in wanted:
                    computed.setdefault(conversion_id, set()).add(model)
        return computed
