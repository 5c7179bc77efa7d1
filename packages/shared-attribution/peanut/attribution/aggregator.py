"""
Report aggregation - roll per-conversion credit up into channel summaries.

A conversion can route fractional credit to several channels under the
multi-touch models. A channel counts a conversion once if its total weight
for that conversion is positive, however small the fraction.

Sums use ``math.fsum`` so totals do not depend on the order conversions
were processed in.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from peanut.attribution.models import MODEL_NAMES, describe
from peanut.attribution.schema import (
    AttributionModel,
    AttributionResult,
    Channel,
    Conversion,
    DateRange,
    Touch,
)


@dataclass
class ChannelSummary:
    """Credit totals for one channel under one model."""

    channel: Channel
    conversions: int = 0
    credited_value: float = 0.0
    touches: int = 0
    weight: float = 0.0  # Fractional conversions credited to the channel

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.channel.to_dict(),
            "conversions": self.conversions,
            "credited_value": self.credited_value,
            "touches": self.touches,
            "weight": self.weight,
        }


@dataclass
class PeriodSummary:
    """Daily totals by conversion date."""

    period: date
    conversions: int = 0
    credited_value: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.period.isoformat(),
            "conversions": self.conversions,
            "credited_value": self.credited_value,
        }


@dataclass
class Report:
    """Channel performance for one model over a date range."""

    model: AttributionModel
    date_range: DateRange
    channels: list[ChannelSummary] = field(default_factory=list)
    by_period: list[PeriodSummary] = field(default_factory=list)
    totals: dict[str, float] = field(default_factory=dict)
    description: str = ""

    @property
    def model_name(self) -> str:
        return MODEL_NAMES[self.model]

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model.value,
            "model_name": self.model_name,
            "model_description": self.description,
            "date_range": self.date_range.to_dict(),
            "channels": [c.to_dict() for c in self.channels],
            "by_period": [p.to_dict() for p in self.by_period],
            "totals": dict(self.totals),
        }


class ReportAggregator:
    """
    Group attribution rows by channel and by conversion date.

    Example:
        aggregator = ReportAggregator()
        channels = aggregator.aggregate(
            (result, touches[result.touch_id].channel) for result in results
        )
    """

    def aggregate(
        self,
        rows: Iterable[tuple[AttributionResult, Channel]],
    ) -> list[ChannelSummary]:
        """
        Build per-channel totals from (result, channel) pairs.

        Returns:
            Summaries sorted by credited value descending, then channel key
        """
        values: dict[Channel, list[float]] = {}
        weights: dict[Channel, list[float]] = {}
        touch_counts: dict[Channel, int] = {}
        conversion_weight: dict[tuple[Channel, int], list[float]] = {}

        for result, channel in rows:
            values.setdefault(channel, []).append(result.credited_value or 0.0)
            weights.setdefault(channel, []).append(result.weight)
            touch_counts[channel] = touch_counts.get(channel, 0) + 1
            conversion_weight.setdefault((channel, result.conversion_id), []).append(result.weight)

        converted: dict[Channel, int] = {}
        for (channel, _), conversion_weights in conversion_weight.items():
            if math.fsum(conversion_weights) > 0:
                converted[channel] = converted.get(channel, 0) + 1

        summaries = [
            ChannelSummary(
                channel=channel,
                conversions=converted.get(channel, 0),
                credited_value=math.fsum(values[channel]),
                touches=touch_counts[channel],
                weight=math.fsum(weights[channel]),
            )
            for channel in values
        ]
        summaries.sort(key=lambda s: (-s.credited_value, s.channel.sort_key()))
        return summaries

    def by_period(
        self,
        conversions: Iterable[Conversion],
        results: Mapping[int, list[AttributionResult]],
    ) -> list[PeriodSummary]:
        """Daily conversion counts and credited value for attributed conversions."""
        counts: dict[date, int] = {}
        values: dict[date, list[float]] = {}

        for conversion in conversions:
            rows = results.get(conversion.id) or []
            if not rows:
                continue
            day = conversion.occurred_at.date()
            counts[day] = counts.get(day, 0) + 1
            values.setdefault(day, []).extend(r.credited_value or 0.0 for r in rows)

        return [
            PeriodSummary(period=day, conversions=counts[day], credited_value=math.fsum(values[day]))
            for day in sorted(counts)
        ]

    def build_report(
        self,
        model: AttributionModel,
        date_range: DateRange,
        conversions: list[Conversion],
        results: Mapping[int, list[AttributionResult]],
        touches: Mapping[int, Touch],
        half_life_days: float,
    ) -> Report:
        """
        Assemble a full report from conversions and their stored results.

        Args:
            model: Model the results were computed with
            date_range: Range the conversions were selected by
            conversions: Conversions in range
            results: Attribution rows keyed by conversion id
            touches: Touches referenced by the rows, keyed by touch id
            half_life_days: Used for the time decay description
        """
        pairs = [
            (row, touches[row.touch_id].channel)
            for conversion in conversions
            for row in results.get(conversion.id) or []
            if row.touch_id in touches
        ]
        channels = self.aggregate(pairs)

        with_touches = [c for c in conversions if results.get(c.id)]
        totals = {
            "conversions": len(conversions),
            "attributed_conversions": len(with_touches),
            "total_value": math.fsum(c.value or 0.0 for c in conversions),
            "attributed_value": math.fsum(s.credited_value for s in channels),
        }

        return Report(
            model=model,
            date_range=date_range,
            channels=channels,
            by_period=self.by_period(conversions, results),
            totals=totals,
            description=describe(model, half_life_days),
        )
