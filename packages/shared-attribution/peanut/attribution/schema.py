"""
Attribution schema - touches, conversions and per-touch credit rows.

A visitor's journey is an append-only log of touches. A conversion is a
goal completion by that visitor. Attribution results assign a fraction of
the conversion to each qualifying touch under a given model:

- Touch: one visitor interaction with a marketing channel
- Conversion: one goal-completion event
- AttributionResult: credit for one (conversion, model, touch) triple
- Channel: the (utm_source, utm_medium, utm_campaign) grouping key

All timestamps are timezone-aware datetimes in UTC. Naive values are
assumed to already be UTC.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from enum import Enum
from typing import Any

from peanut.attribution.exceptions import InvalidModel

logger = logging.getLogger(__name__)


def ensure_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO string or datetime into an aware UTC datetime.

    Raises:
        ValueError: If value is neither a datetime nor an ISO-8601 string.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError as e:
            raise ValueError(f"Invalid timestamp format: {value}") from e
    raise ValueError(f"Invalid timestamp: {value!r}")


class AttributionModel(str, Enum):
    """Credit distribution model."""

    FIRST_TOUCH = "first_touch"
    LAST_TOUCH = "last_touch"
    LINEAR = "linear"  # Equal credit to all touches
    TIME_DECAY = "time_decay"  # More credit to recent touches
    POSITION_BASED = "position_based"  # 40% first, 40% last, 20% middle

    @classmethod
    def parse(cls, value: AttributionModel | str) -> AttributionModel:
        """Resolve a model name.

        Raises:
            InvalidModel: If value does not name a supported model.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as e:
            raise InvalidModel(value) from e


class TouchType(str, Enum):
    """Kind of visitor interaction recorded as a touch."""

    FIRST_VISIT = "first_visit"
    PAGEVIEW = "pageview"
    CLICK = "click"
    FORM_VIEW = "form_view"
    FORM_START = "form_start"


class ConversionType(str, Enum):
    """Type of goal completion."""

    FORM_SUBMISSION = "form_submission"
    ENROLLMENT = "enrollment"
    PURCHASE = "purchase"
    SIGNUP = "signup"
    LEAD = "lead"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Channel:
    """Aggregation key for touches: source / medium / campaign."""

    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None

    def sort_key(self) -> tuple[str, str, str]:
        """Lexical key with missing parts treated as empty strings."""
        return (self.utm_source or "", self.utm_medium or "", self.utm_campaign or "")

    def to_dict(self) -> dict[str, str | None]:
        return {
            "utm_source": self.utm_source,
            "utm_medium": self.utm_medium,
            "utm_campaign": self.utm_campaign,
        }


@dataclass
class Touch:
    """
    A single visitor interaction with a marketing channel.

    Touches are immutable once stored. The store assigns ``id`` on append;
    ids increase with insertion order and break ties on ``occurred_at``.
    """

    visitor_id: str
    occurred_at: datetime
    id: int | None = None
    touch_type: str = TouchType.PAGEVIEW.value
    channel_group: str = "Direct"  # "Paid Search", "Social", ...
    session_id: str | None = None

    # Raw UTM fields
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_content: str | None = None
    utm_term: str | None = None

    landing_page: str | None = None
    referrer: str | None = None

    def __post_init__(self):
        self.occurred_at = ensure_utc(self.occurred_at)

    @property
    def channel(self) -> Channel:
        return Channel(self.utm_source, self.utm_medium, self.utm_campaign)

    def order_key(self) -> tuple[datetime, int]:
        """Chronological order with insertion id as tie-breaker."""
        return (self.occurred_at, self.id if self.id is not None else 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "visitor_id": self.visitor_id,
            "occurred_at": self.occurred_at.isoformat(),
            "touch_type": self.touch_type,
            "channel_group": self.channel_group,
            "session_id": self.session_id,
            "utm_source": self.utm_source,
            "utm_medium": self.utm_medium,
            "utm_campaign": self.utm_campaign,
            "utm_content": self.utm_content,
            "utm_term": self.utm_term,
            "landing_page": self.landing_page,
            "referrer": self.referrer,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Touch:
        """Create a Touch from a dictionary (store row or API payload).

        Raises:
            ValueError: If visitor_id or occurred_at is missing or invalid.
        """
        if not data.get("visitor_id"):
            raise ValueError("Missing required field: visitor_id")
        if data.get("occurred_at") is None:
            raise ValueError("Missing required field: occurred_at")

        return cls(
            id=int(data["id"]) if data.get("id") is not None else None,
            visitor_id=str(data["visitor_id"]),
            occurred_at=parse_timestamp(data["occurred_at"]),
            touch_type=data.get("touch_type") or TouchType.PAGEVIEW.value,
            channel_group=data.get("channel_group") or "Direct",
            session_id=data.get("session_id"),
            utm_source=data.get("utm_source"),
            utm_medium=data.get("utm_medium"),
            utm_campaign=data.get("utm_campaign"),
            utm_content=data.get("utm_content"),
            utm_term=data.get("utm_term"),
            landing_page=data.get("landing_page"),
            referrer=data.get("referrer"),
        )


@dataclass
class Conversion:
    """
    A goal-completion event tied to one visitor.

    Created once by an upstream producer (form submission, enrollment,
    purchase); the attribution engine never mutates it.

    Example:
        conversion = Conversion(
            visitor_id="v_123",
            conversion_type=ConversionType.PURCHASE.value,
            value=150.00,
            occurred_at=datetime.now(UTC),
        )
    """

    visitor_id: str
    id: int | None = None
    conversion_type: str = ConversionType.CUSTOM.value
    value: float | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Origin of the event
    source: str | None = None  # "formflow-lite", "woocommerce", ...
    source_id: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.occurred_at = ensure_utc(self.occurred_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "visitor_id": self.visitor_id,
            "conversion_type": self.conversion_type,
            "value": self.value,
            "occurred_at": self.occurred_at.isoformat(),
            "source": self.source,
            "source_id": self.source_id,
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversion:
        """Create a Conversion from a dictionary.

        Raises:
            ValueError: If visitor_id is missing or value/occurred_at are invalid.
        """
        if not data.get("visitor_id"):
            raise ValueError("Missing required field: visitor_id")

        value = data.get("value")
        if value is not None:
            try:
                value = float(value)
            except (ValueError, TypeError) as e:
                raise ValueError(f"Invalid value: {value}") from e

        occurred_at = data.get("occurred_at")
        occurred_at = parse_timestamp(occurred_at) if occurred_at is not None else datetime.now(UTC)

        return cls(
            id=int(data["id"]) if data.get("id") is not None else None,
            visitor_id=str(data["visitor_id"]),
            conversion_type=data.get("conversion_type") or ConversionType.CUSTOM.value,
            value=value,
            occurred_at=occurred_at,
            source=data.get("source"),
            source_id=data.get("source_id"),
            customer_email=data.get("customer_email"),
            customer_name=data.get("customer_name"),
            metadata=data.get("metadata") or {},
        )


@dataclass(frozen=True)
class AttributionResult:
    """Credit assigned to one touch for one conversion under one model."""

    conversion_id: int
    model: AttributionModel
    touch_id: int
    weight: float
    credited_value: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversion_id": self.conversion_id,
            "model": self.model.value,
            "touch_id": self.touch_id,
            "weight": self.weight,
            "credited_value": self.credited_value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AttributionResult:
        credited = data.get("credited_value")
        return cls(
            conversion_id=int(data["conversion_id"]),
            model=AttributionModel.parse(data["model"]),
            touch_id=int(data["touch_id"]),
            weight=float(data["weight"]),
            credited_value=float(credited) if credited is not None else None,
        )


def _parse_bound(value: Any, end_of_day: bool) -> datetime | None:
    """Parse one date-range bound; date-only end bounds cover the whole day."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min, tzinfo=UTC)
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            day = date.fromisoformat(text)
            return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=UTC)
        return parse_timestamp(text)
    raise ValueError(f"Invalid date: {value!r}")


@dataclass(frozen=True)
class DateRange:
    """Inclusive time window; a missing bound is open-ended."""

    start: datetime | None = None
    end: datetime | None = None

    @classmethod
    def all_time(cls) -> DateRange:
        return cls()

    @classmethod
    def parse(cls, date_from: Any = None, date_to: Any = None) -> DateRange:
        """
        Build a range from optional ``YYYY-MM-DD`` / ISO strings or dates.

        Missing or malformed input falls back to all time rather than
        raising. An inverted range is treated as malformed.
        """
        try:
            start = _parse_bound(date_from, end_of_day=False)
            end = _parse_bound(date_to, end_of_day=True)
        except ValueError:
            logger.warning(f"Malformed date range ({date_from!r}, {date_to!r}); using all time")
            return cls.all_time()

        if start is not None and end is not None and start > end:
            logger.warning(f"Inverted date range ({date_from!r}, {date_to!r}); using all time")
            return cls.all_time()

        return cls(start=start, end=end)

    def contains(self, moment: datetime) -> bool:
        moment = ensure_utc(moment)
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True

    @property
    def cache_token(self) -> str:
        start = self.start.isoformat() if self.start else "*"
        end = self.end.isoformat() if self.end else "*"
        return f"{start}:{end}"

    def to_dict(self) -> dict[str, str | None]:
        return {
            "from": self.start.isoformat() if self.start else None,
            "to": self.end.isoformat() if self.end else None,
        }


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional days from earlier to later."""
    return (ensure_utc(later) - ensure_utc(earlier)) / timedelta(days=1)
