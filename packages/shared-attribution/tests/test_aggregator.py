"""Tests for report aggregation."""

from __future__ import annotations

from datetime import UTC, date, datetime

from peanut.attribution.aggregator import ReportAggregator
from peanut.attribution.schema import (
    AttributionModel,
    AttributionResult,
    Channel,
    Conversion,
    DateRange,
    Touch,
)

GOOGLE = Channel("google", "cpc", "brand")
FACEBOOK = Channel("facebook", "social", None)


def row(conversion_id: int, touch_id: int, weight: float, value: float | None) -> AttributionResult:
    return AttributionResult(
        conversion_id=conversion_id,
        model=AttributionModel.LINEAR,
        touch_id=touch_id,
        weight=weight,
        credited_value=weight * value if value is not None else None,
    )


class TestAggregate:
    """Tests for ReportAggregator.aggregate."""

    def test_distinct_conversions_per_channel(self):
        """Test a channel counts each conversion once."""
        rows = [
            (row(1, 10, 0.25, 100.0), GOOGLE),
            (row(1, 11, 0.25, 100.0), GOOGLE),
            (row(1, 12, 0.5, 100.0), FACEBOOK),
            (row(2, 20, 1.0, 40.0), GOOGLE),
        ]

        summaries = ReportAggregator().aggregate(rows)
        google = next(s for s in summaries if s.channel == GOOGLE)

        assert google.conversions == 2
        assert google.touches == 3
        assert google.credited_value == 90.0
        assert google.weight == 1.5

    def test_sorted_by_value_descending(self):
        """Test highest credited value first."""
        rows = [
            (row(1, 1, 1.0, 10.0), FACEBOOK),
            (row(2, 2, 1.0, 30.0), GOOGLE),
        ]

        summaries = ReportAggregator().aggregate(rows)

        assert [s.channel for s in summaries] == [GOOGLE, FACEBOOK]

    def test_ties_sorted_lexically(self):
        """Test equal values fall back to (source, medium, campaign) order."""
        rows = [
            (row(1, 1, 1.0, 10.0), Channel("google", "cpc", "b")),
            (row(2, 2, 1.0, 10.0), Channel("google", "cpc", "a")),
            (row(3, 3, 1.0, 10.0), Channel(None, None, None)),
            (row(4, 4, 1.0, 10.0), Channel("bing", "cpc", None)),
        ]

        summaries = ReportAggregator().aggregate(rows)

        assert [s.channel.sort_key() for s in summaries] == [
            ("", "", ""),
            ("bing", "cpc", ""),
            ("google", "cpc", "a"),
            ("google", "cpc", "b"),
        ]

    def test_missing_value_counts_as_zero(self):
        """Test conversions without value still count."""
        summaries = ReportAggregator().aggregate([(row(1, 1, 1.0, None), GOOGLE)])

        assert summaries[0].conversions == 1
        assert summaries[0].credited_value == 0.0

    def test_empty(self):
        """Test no rows means no channels."""
        assert ReportAggregator().aggregate([]) == []


class TestByPeriod:
    """Tests for daily breakdown."""

    def test_daily_totals(self):
        """Test conversions are grouped by day, ascending."""
        conversions = [
            Conversion(id=2, visitor_id="b", value=20.0, occurred_at=datetime(2025, 1, 16, 9, tzinfo=UTC)),
            Conversion(id=1, visitor_id="a", value=10.0, occurred_at=datetime(2025, 1, 15, 9, tzinfo=UTC)),
            Conversion(id=3, visitor_id="c", value=5.0, occurred_at=datetime(2025, 1, 15, 18, tzinfo=UTC)),
        ]
        results = {
            1: [row(1, 1, 1.0, 10.0)],
            2: [row(2, 2, 0.5, 20.0), row(2, 3, 0.5, 20.0)],
            3: [],
        }

        periods = ReportAggregator().by_period(conversions, results)

        assert [p.period for p in periods] == [date(2025, 1, 15), date(2025, 1, 16)]
        assert periods[0].conversions == 1
        assert periods[1].credited_value == 20.0
        assert periods[1].to_dict()["date"] == "2025-01-16"


class TestBuildReport:
    """Tests for full report assembly."""

    def test_totals(self):
        """Test report totals and description."""
        converted = datetime(2025, 1, 15, tzinfo=UTC)
        conversions = [
            Conversion(id=1, visitor_id="a", value=80.0, occurred_at=converted),
            Conversion(id=2, visitor_id="b", value=20.0, occurred_at=converted),
        ]
        touches = {
            7: Touch(id=7, visitor_id="a", occurred_at=converted, utm_source="google", utm_medium="cpc"),
        }
        results = {1: [row(1, 7, 1.0, 80.0)], 2: []}

        report = ReportAggregator().build_report(
            model=AttributionModel.LINEAR,
            date_range=DateRange.all_time(),
            conversions=conversions,
            results=results,
            touches=touches,
            half_life_days=7.0,
        )

        assert report.totals == {
            "conversions": 2,
            "attributed_conversions": 1,
            "total_value": 100.0,
            "attributed_value": 80.0,
        }
        assert report.channels[0].channel == Channel("google", "cpc", None)
        assert report.model_name == "Linear"
        assert report.description.startswith("Distributes credit equally")
