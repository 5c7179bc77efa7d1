"""
Peanut MCP Server - Main entry point.

MCP server exposing the attribution engine:
- Channel reports and model comparison
- Conversion detail and on-demand (re)calculation
- Touch and conversion recording
- Batch processing of unattributed conversions
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime
from typing import Any

from fastmcp import FastMCP

from peanut.attribution import (
    MODEL_NAMES,
    AttributionConfig,
    AttributionEngine,
    AttributionError,
    AttributionModel,
    BigQueryStorageConfig,
    DateRange,
    describe,
)
from peanut.attribution.schema import parse_timestamp

logger = logging.getLogger(__name__)

# Initialize server
mcp = FastMCP("Peanut Attribution")

_engine: AttributionEngine | None = None
_engine_lock = threading.Lock()


def get_engine() -> AttributionEngine:
    """Build the attribution engine on first use.

    ``PEANUT_STORAGE_BACKEND=bigquery`` selects BigQuery storage; anything
    else uses in-memory stores.
    """
    global _engine
    with _engine_lock:
        if _engine is None:
            config = AttributionConfig.from_env()
            backend = os.getenv("PEANUT_STORAGE_BACKEND", "memory").lower()
            if backend == "bigquery":
                _engine = AttributionEngine.bigquery(config, BigQueryStorageConfig.from_env())
            else:
                _engine = AttributionEngine.in_memory(config)
            logger.info(f"Attribution engine ready ({backend} backend)")
        return _engine


def set_engine(engine: AttributionEngine | None) -> None:
    """Replace the shared engine (None forces a rebuild on next use)."""
    global _engine
    with _engine_lock:
        _engine = engine


def _error(e: AttributionError) -> dict[str, Any]:
    return {"success": False, "error": str(e), "status": e.status_code}


def _optional_timestamp(value: str | None) -> datetime | None:
    return parse_timestamp(value) if value else None


# =============================================================================
# Report Tools
# =============================================================================


@mcp.tool()
def attribution_report(
    model: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
) -> dict:
    """
    Channel performance report for one attribution model.

    Missing results are calculated on demand. Malformed or inverted dates
    fall back to all time.

    Args:
        model: first_touch, last_touch, linear, time_decay or position_based
            (configured default if omitted)
        date_from: Start date (YYYY-MM-DD), inclusive
        date_to: End date (YYYY-MM-DD), inclusive of the whole day

    Returns:
        Report with per-channel conversions and credited value
    """
    engine = get_engine()
    try:
        report = engine.calculator.get_report(
            model or engine.config.default_model,
            DateRange.parse(date_from, date_to),
        )
    except AttributionError as e:
        return _error(e)

    return {"success": True, **report.to_dict()}


@mcp.tool()
def compare_attribution_models(
    date_from: str | None = None,
    date_to: str | None = None,
) -> dict:
    """
    Run every attribution model over the same date range.

    Args:
        date_from: Start date (YYYY-MM-DD)
        date_to: End date (YYYY-MM-DD)

    Returns:
        Reports keyed by model
    """
    engine = get_engine()
    date_range = DateRange.parse(date_from, date_to)
    try:
        reports = engine.calculator.compare_models(date_range)
    except AttributionError as e:
        return _error(e)

    return {
        "success": True,
        "date_range": date_range.to_dict(),
        "models": {model.value: report.to_dict() for model, report in reports.items()},
    }


@mcp.tool()
def list_attribution_models() -> list[dict]:
    """List supported attribution models with descriptions."""
    config = get_engine().config
    return [
        {
            "id": model.value,
            "name": MODEL_NAMES[model],
            "description": describe(model, config.half_life_days),
            "default": model == config.default_model,
        }
        for model in AttributionModel
    ]


# =============================================================================
# Conversion Tools
# =============================================================================


@mcp.tool()
def get_conversion(conversion_id: int, model: str | None = None) -> dict:
    """
    Get a conversion with its touches, attribution and model comparison.

    Args:
        conversion_id: Conversion identifier
        model: Attribution model for the credit rows (configured default if omitted)

    Returns:
        Conversion detail, or an error with status 404 if not found
    """
    try:
        detail = get_engine().calculator.get_conversion_detail(conversion_id, model)
    except AttributionError as e:
        return _error(e)

    return {"success": True, **detail.to_dict()}


@mcp.tool()
def calculate_attribution(conversion_id: int, model: str | None = None) -> dict:
    """
    (Re)calculate attribution for a conversion.

    Existing results for the conversion and model are replaced.

    Args:
        conversion_id: Conversion identifier
        model: One model to calculate; all models if omitted

    Returns:
        Attribution rows keyed by model
    """
    calculator = get_engine().calculator
    try:
        if model:
            results = {AttributionModel.parse(model): calculator.calculate_for_conversion(conversion_id, model)}
        else:
            results = calculator.calculate_all_models(conversion_id)
    except AttributionError as e:
        return _error(e)

    return {
        "success": True,
        "conversion_id": conversion_id,
        "results": {m.value: [r.to_dict() for r in rows] for m, rows in results.items()},
    }


@mcp.tool()
def record_conversion(
    visitor_id: str,
    conversion_type: str = "custom",
    value: float | None = None,
    occurred_at: str | None = None,
    source: str | None = None,
    source_id: str | None = None,
    email: str | None = None,
    name: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict:
    """
    Record a conversion and attribute it under every model.

    Args:
        visitor_id: Visitor who converted
        conversion_type: form_submission, enrollment, purchase, signup, lead or custom
        value: Monetary value, if any
        occurred_at: ISO-8601 timestamp (now if omitted)
        source: Producing system (e.g. "woocommerce")
        source_id: Identifier in the producing system
        email: Customer email
        name: Customer name
        metadata: Extra fields stored with the conversion

    Returns:
        The stored conversion
    """
    try:
        when = _optional_timestamp(occurred_at)
    except ValueError as e:
        return {"success": False, "error": str(e), "status": 400}

    try:
        conversion = get_engine().recorder.record(
            visitor_id,
            conversion_type,
            value=value,
            occurred_at=when,
            source=source,
            source_id=source_id,
            email=email,
            name=name,
            metadata=metadata,
        )
    except AttributionError as e:
        return _error(e)

    return {"success": True, "conversion": conversion.to_dict()}


@mcp.tool()
def record_touch(
    visitor_id: str,
    event_type: str,
    event_data: dict[str, Any] | None = None,
    occurred_at: str | None = None,
) -> dict:
    """
    Record a visitor event as a touch if it is attribution-relevant.

    Args:
        visitor_id: Visitor identifier
        event_type: pageview, click, form_view or form_start
        event_data: utm_* fields, referrer, page_url, session_id
        occurred_at: ISO-8601 timestamp (now if omitted)

    Returns:
        The stored touch, or recorded=False if the event was ignored
    """
    try:
        when = _optional_timestamp(occurred_at)
    except ValueError as e:
        return {"success": False, "error": str(e), "status": 400}

    try:
        touch = get_engine().tracker.handle_visitor_event(
            visitor_id, event_type, event_data or {}, occurred_at=when
        )
    except AttributionError as e:
        return _error(e)

    if touch is None:
        return {"success": True, "recorded": False}
    return {"success": True, "recorded": True, "touch": touch.to_dict()}


# =============================================================================
# Maintenance Tools
# =============================================================================


@mcp.tool()
def process_pending_conversions(limit: int | None = None) -> dict:
    """
    Attribute conversions that have no stored results yet.

    Args:
        limit: Maximum conversions to process (configured batch size if omitted)

    Returns:
        Processed, pending and error counts
    """
    try:
        outcome = get_engine().calculator.process_pending_conversions(limit)
    except AttributionError as e:
        return _error(e)

    return {"success": True, **outcome.to_dict()}


@mcp.tool()
def purge_expired_touches(retention_days: int | None = None) -> dict:
    """
    Delete touches older than the retention window.

    Args:
        retention_days: Days to keep (configured retention if omitted)

    Returns:
        Number of deleted touches
    """
    engine = get_engine()
    days = engine.config.retention_days if retention_days is None else retention_days
    try:
        deleted = engine.tracker.purge_expired(days)
    except AttributionError as e:
        return _error(e)

    return {"success": True, "deleted": deleted, "retention_days": days}


# =============================================================================
# Resources
# =============================================================================


@mcp.resource("attribution://models")
def models_resource() -> str:
    """Supported attribution models."""
    return "\n".join(
        f"- {model.value}: {describe(model, get_engine().config.half_life_days)}"
        for model in AttributionModel
    )


# =============================================================================
# Entry Point
# =============================================================================


def main():
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
