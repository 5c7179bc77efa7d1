"""
Attribution models - distribute conversion credit across touches.

Supports five models:
- First touch: 100% credit to the earliest touch
- Last touch: 100% credit to the latest touch before conversion
- Linear: Equal credit to all touches
- Time decay: More credit to recent touches (7-day half-life by default)
- Position based: 40% first, 40% last, 20% shared by the middle

Every model takes the touches of a single visitor that occurred at or
before the conversion and returns ``{touch_id: weight}`` in chronological
order. Weights sum to 1.0 for any non-empty input; no touches means an
empty mapping. The functions are pure: the same input always yields the
same output.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import datetime

from peanut.attribution.schema import AttributionModel, Touch, days_between

DEFAULT_HALF_LIFE_DAYS = 7.0

POSITION_FIRST_WEIGHT = 0.40
POSITION_LAST_WEIGHT = 0.40
POSITION_MIDDLE_WEIGHT = 0.20

MODEL_NAMES: dict[AttributionModel, str] = {
    AttributionModel.FIRST_TOUCH: "First Touch",
    AttributionModel.LAST_TOUCH: "Last Touch",
    AttributionModel.LINEAR: "Linear",
    AttributionModel.TIME_DECAY: "Time Decay",
    AttributionModel.POSITION_BASED: "Position Based",
}

_DESCRIPTIONS: dict[AttributionModel, str] = {
    AttributionModel.FIRST_TOUCH: (
        "Assigns 100% credit to the first touchpoint in the customer journey."
    ),
    AttributionModel.LAST_TOUCH: (
        "Assigns 100% credit to the last touchpoint before conversion."
    ),
    AttributionModel.LINEAR: "Distributes credit equally among all touchpoints.",
    AttributionModel.TIME_DECAY: (
        "Assigns more credit to touchpoints closer to conversion ({half_life:g}-day half-life)."
    ),
    AttributionModel.POSITION_BASED: (
        "Assigns 40% to first touch, 40% to last touch, and 20% distributed "
        "among middle touches."
    ),
}


def describe(model: AttributionModel, half_life_days: float = DEFAULT_HALF_LIFE_DAYS) -> str:
    """Human-readable description of a model."""
    return _DESCRIPTIONS[model].format(half_life=half_life_days)


def _ordered(touches: Sequence[Touch]) -> list[Touch]:
    """Sort touches oldest first, ties broken by insertion id."""
    return sorted(touches, key=lambda t: t.order_key())


def first_touch(touches: Sequence[Touch]) -> dict[int, float]:
    """Attribute everything to the first touch in the path."""
    ordered = _ordered(touches)
    if not ordered:
        return {}

    first_id = ordered[0].id
    return {t.id: 1.0 if t.id == first_id else 0.0 for t in ordered}


def last_touch(touches: Sequence[Touch]) -> dict[int, float]:
    """Attribute everything to the last touch before conversion."""
    ordered = _ordered(touches)
    if not ordered:
        return {}

    last_id = ordered[-1].id
    return {t.id: 1.0 if t.id == last_id else 0.0 for t in ordered}


def linear(touches: Sequence[Touch]) -> dict[int, float]:
    """Distribute credit equally across all touches."""
    ordered = _ordered(touches)
    if not ordered:
        return {}

    weight = 1.0 / len(ordered)
    return {t.id: weight for t in ordered}


def time_decay(
    touches: Sequence[Touch],
    converted_at: datetime,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> dict[int, float]:
    """
    More credit to touches closer to conversion.

    Raw weight is ``2 ** (-days_before / half_life_days)`` where
    ``days_before`` is the fractional day gap to the conversion; weights
    are then normalized to sum to 1. Gaps are measured from the nearest
    touch so very old journeys do not underflow to zero; the shift cancels
    out in normalization.
    """
    ordered = _ordered(touches)
    if not ordered:
        return {}

    gaps = [days_between(t.occurred_at, converted_at) for t in ordered]
    nearest = min(gaps)
    raw = [math.pow(2.0, -(gap - nearest) / half_life_days) for gap in gaps]
    total = math.fsum(raw)
    return {t.id: w / total for t, w in zip(ordered, raw)}


def position_based(touches: Sequence[Touch]) -> dict[int, float]:
    """
    U-shaped attribution: 40% first, 40% last, 20% spread over the middle.

    One touch takes everything; two touches split 50/50.
    """
    ordered = _ordered(touches)
    count = len(ordered)

    if count == 0:
        return {}
    if count == 1:
        return {ordered[0].id: 1.0}
    if count == 2:
        return {ordered[0].id: 0.5, ordered[1].id: 0.5}

    middle_weight = POSITION_MIDDLE_WEIGHT / (count - 2)
    result = {ordered[0].id: POSITION_FIRST_WEIGHT}
    for touch in ordered[1:-1]:
        result[touch.id] = middle_weight
    result[ordered[-1].id] = POSITION_LAST_WEIGHT
    return result


def calculate(
    model: AttributionModel,
    touches: Sequence[Touch],
    converted_at: datetime,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> dict[int, float]:
    """
    Apply a model to a visitor's touches.

    Args:
        model: Validated attribution model
        touches: Touches at or before the conversion
        converted_at: Conversion timestamp (used by time decay)
        half_life_days: Time decay half-life

    Returns:
        Mapping of touch id to weight, in chronological order
    """
    if model == AttributionModel.FIRST_TOUCH:
        return first_touch(touches)
    if model == AttributionModel.LAST_TOUCH:
        return last_touch(touches)
    if model == AttributionModel.LINEAR:
        return linear(touches)
    if model == AttributionModel.TIME_DECAY:
        return time_decay(touches, converted_at, half_life_days)
    if model == AttributionModel.POSITION_BASED:
        return position_based(touches)
    raise AssertionError(f"unhandled attribution model: {model}")


def calculate_all(
    touches: Sequence[Touch],
    converted_at: datetime,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> dict[AttributionModel, dict[int, float]]:
    """Apply every model to the same touches."""
    return {
        model: calculate(model, touches, converted_at, half_life_days)
        for model in AttributionModel
    }


def compare_channel_credit(
    touches: Sequence[Touch],
    converted_at: datetime,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> dict[AttributionModel, dict[str, float]]:
    """
    Credit share per channel group under each model, as percentages.

    Example:
        {"linear": {"Social": 66.7, "Email": 33.3}, ...}
    """
    by_model = calculate_all(touches, converted_at, half_life_days)
    groups: dict[str, list[int]] = {}
    for touch in _ordered(touches):
        groups.setdefault(touch.channel_group or "Unknown", []).append(touch.id)

    comparison: dict[AttributionModel, dict[str, float]] = {}
    for model, weights in by_model.items():
        comparison[model] = {
            group: round(math.fsum(weights.get(i, 0.0) for i in ids) * 100, 1)
            for group, ids in groups.items()
        }
    return comparison
