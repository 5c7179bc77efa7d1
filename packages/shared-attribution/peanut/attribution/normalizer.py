"""
Touch normalizers - transform raw visitor events into Touch records.

Raw events come from the tracking script or bulk exports with loosely
named fields (``event_type``/``type``, ``page_url``/``url``, ...). The
normalizer maps them onto the Touch schema and classifies the channel.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pandas as pd

from peanut.attribution.channels import determine_channel
from peanut.attribution.schema import Touch, TouchType, parse_timestamp


def build_touch(
    visitor_id: str,
    event: dict[str, Any],
    occurred_at: datetime | None = None,
) -> Touch:
    """Build a single Touch from a visitor event payload."""
    utm_source = event.get("utm_source") or None
    utm_medium = event.get("utm_medium") or None
    referrer = event.get("referrer") or None

    return Touch(
        visitor_id=visitor_id,
        occurred_at=occurred_at or datetime.now(UTC),
        touch_type=event.get("event_type") or TouchType.PAGEVIEW.value,
        channel_group=determine_channel(referrer, utm_source, utm_medium),
        session_id=event.get("session_id"),
        utm_source=utm_source,
        utm_medium=utm_medium,
        utm_campaign=event.get("utm_campaign") or None,
        utm_content=event.get("utm_content") or None,
        utm_term=event.get("utm_term") or None,
        landing_page=event.get("page_url"),
        referrer=referrer,
    )


class TouchNormalizer:
    """
    Normalize bulk visitor event data into Touches.

    Example:
        normalizer = TouchNormalizer()
        touches = normalizer.normalize([
            {"visitor_id": "v1", "timestamp": "2025-01-15T10:00:00Z",
             "utm_source": "google", "utm_medium": "cpc"},
        ])
    """

    def __init__(self, field_map: dict[str, str] | None = None):
        """
        Initialize normalizer.

        Args:
            field_map: Mapping of source fields to event fields
        """
        self.field_map = field_map or self._default_field_map()

    def _default_field_map(self) -> dict[str, str]:
        """Default field mappings for common tracking exports."""
        return {
            # Visitor variants
            "visitor_id": "visitor_id",
            "visitor": "visitor_id",
            "client_id": "visitor_id",
            # Timestamp variants
            "occurred_at": "occurred_at",
            "timestamp": "occurred_at",
            "touch_time": "occurred_at",
            "created_at": "occurred_at",
            # Event type variants
            "event_type": "event_type",
            "type": "event_type",
            "touch_type": "event_type",
            # Page variants
            "page_url": "page_url",
            "url": "page_url",
            "landing_page": "page_url",
            # Referrer variants
            "referrer": "referrer",
            "referer": "referrer",
            "session_id": "session_id",
        }

    def _to_dataframe(self, data: pd.DataFrame | list[dict[str, Any]]) -> pd.DataFrame:
        """Convert input to DataFrame."""
        if isinstance(data, pd.DataFrame):
            return data
        return pd.DataFrame(data)

    def normalize(self, data: pd.DataFrame | list[dict[str, Any]]) -> list[Touch]:
        """
        Normalize event data to Touches.

        Rows without a visitor id or timestamp are skipped.

        Raises:
            ValueError: If a timestamp cannot be parsed
        """
        df = self._to_dataframe(data)
        touches = []

        for _, row in df.iterrows():
            event: dict[str, Any] = {}
            for key, value in row.to_dict().items():
                if value is None or (not isinstance(value, (list, dict)) and pd.isna(value)):
                    continue
                mapped = self.field_map.get(key, key)
                event.setdefault(mapped, value)

            visitor_id = event.get("visitor_id")
            raw_time = event.get("occurred_at")
            if not visitor_id or raw_time is None:
                continue

            if isinstance(raw_time, pd.Timestamp):
                raw_time = raw_time.to_pydatetime()

            touches.append(
                build_touch(str(visitor_id), event, occurred_at=parse_timestamp(raw_time))
            )

        return touches
