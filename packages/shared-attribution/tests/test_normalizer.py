"""Tests for touch normalization."""

from __future__ import annotations

from datetime import UTC, datetime

import pandas as pd
import pytest
from peanut.attribution.normalizer import TouchNormalizer, build_touch


class TestBuildTouch:
    """Tests for build_touch."""

    def test_fields_mapped(self):
        """Test event payload becomes a classified touch."""
        touch = build_touch(
            "v1",
            {
                "event_type": "click",
                "utm_source": "google",
                "utm_medium": "cpc",
                "utm_campaign": "brand",
                "page_url": "https://example.com/pricing",
                "session_id": "s-1",
            },
            occurred_at=datetime(2025, 1, 15, tzinfo=UTC),
        )

        assert touch.touch_type == "click"
        assert touch.channel_group == "Paid Search"
        assert touch.landing_page == "https://example.com/pricing"
        assert touch.session_id == "s-1"
        assert touch.id is None

    def test_empty_strings_become_none(self):
        """Test blank UTM values are dropped."""
        touch = build_touch("v1", {"utm_source": "", "referrer": ""})

        assert touch.utm_source is None
        assert touch.referrer is None
        assert touch.channel_group == "Direct"
        assert touch.touch_type == "pageview"


class TestTouchNormalizer:
    """Tests for TouchNormalizer."""

    def test_list_of_dicts(self):
        """Test alternative field names are mapped."""
        touches = TouchNormalizer().normalize([
            {
                "client_id": "v1",
                "timestamp": "2025-01-15T10:00:00Z",
                "type": "pageview",
                "url": "https://example.com/",
                "referer": "https://www.reddit.com/r/x",
            },
        ])

        assert len(touches) == 1
        touch = touches[0]
        assert touch.visitor_id == "v1"
        assert touch.occurred_at == datetime(2025, 1, 15, 10, tzinfo=UTC)
        assert touch.landing_page == "https://example.com/"
        assert touch.channel_group == "Social"

    def test_dataframe_with_timestamps(self):
        """Test pandas timestamps and missing values."""
        df = pd.DataFrame({
            "visitor_id": ["v1", "v2"],
            "occurred_at": pd.to_datetime(["2025-01-15 10:00", "2025-01-16 11:30"], utc=True),
            "utm_source": ["google", None],
            "utm_medium": ["cpc", None],
        })

        touches = TouchNormalizer().normalize(df)

        assert [t.visitor_id for t in touches] == ["v1", "v2"]
        assert touches[0].channel_group == "Paid Search"
        assert touches[1].utm_source is None
        assert touches[1].channel_group == "Direct"
        assert touches[1].occurred_at == datetime(2025, 1, 16, 11, 30, tzinfo=UTC)

    def test_rows_without_visitor_or_time_skipped(self):
        """Test incomplete rows are dropped."""
        touches = TouchNormalizer().normalize([
            {"visitor_id": "v1", "timestamp": "2025-01-15T10:00:00Z"},
            {"visitor_id": None, "timestamp": "2025-01-15T11:00:00Z"},
            {"visitor_id": "v3"},
        ])

        assert [t.visitor_id for t in touches] == ["v1"]

    def test_custom_field_map(self):
        """Test a caller-provided field map."""
        normalizer = TouchNormalizer(field_map={"uid": "visitor_id", "ts": "occurred_at"})
        touches = normalizer.normalize([{"uid": "v9", "ts": "2025-01-15T10:00:00Z"}])

        assert touches[0].visitor_id == "v9"

    def test_bad_timestamp(self):
        """Test unparsable timestamps raise ValueError."""
        with pytest.raises(ValueError):
            TouchNormalizer().normalize([{"visitor_id": "v1", "timestamp": "soon"}])
