"""Tests for AttributionEngine wiring."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

from peanut.attribution.cache import TTLCache
from peanut.attribution.config import AttributionConfig, BigQueryStorageConfig
from peanut.attribution.engine import AttributionEngine
from peanut.attribution.events import AttributionCalculated
from peanut.attribution.schema import AttributionModel


class TestAttributionEngine:
    """Tests for engine construction."""

    def test_recording_attributes_immediately(self):
        """Test a recorded conversion is attributed under every model."""
        engine = AttributionEngine.in_memory()
        converted_at = datetime(2025, 1, 15, tzinfo=UTC)
        engine.tracker.handle_visitor_event(
            "v1", "pageview", {"utm_source": "google", "utm_medium": "cpc"},
            occurred_at=converted_at - timedelta(days=2),
        )
        announced = []
        engine.event_bus.subscribe(AttributionCalculated, announced.append)

        conversion = engine.recorder.record("v1", "purchase", value=50.0, occurred_at=converted_at)

        result_store = engine.calculator.result_store
        assert all(result_store.has(conversion.id, m) for m in AttributionModel)
        assert result_store.get(conversion.id, AttributionModel.LINEAR)[0].credited_value == 50.0
        assert [e.conversion_id for e in announced] == [conversion.id]

    def test_deferred_attribution(self):
        """Test conversions wait for the pending run when not attributed on record."""
        engine = AttributionEngine.in_memory(attribute_on_record=False)
        conversion = engine.recorder.record("v1", "signup")

        assert not engine.calculator.result_store.has(conversion.id, AttributionModel.LINEAR)
        assert engine.calculator.process_pending_conversions().processed == 1

    def test_config_passed_through(self):
        """Test the calculator uses the engine config."""
        config = AttributionConfig(half_life_days=14)
        engine = AttributionEngine.in_memory(config)

        assert engine.calculator.config is config
        assert engine.config is config

    def test_bigquery_backend(self, mock_bigquery_client):
        """Test BigQuery engine creates tables and shares the client."""
        engine = AttributionEngine.bigquery(storage_config=BigQueryStorageConfig(project_id="p"))

        sql = mock_bigquery_client.query.call_args.args[0]
        assert "CREATE TABLE IF NOT EXISTS `p.peanut.touches`" in sql
        assert engine.calculator.result_store.client is mock_bigquery_client
        assert engine.tracker.touch_store.client is mock_bigquery_client

    def test_default_cache_kept_when_empty(self):
        """Test a fresh engine keeps its report cache even though it starts empty."""
        engine = AttributionEngine.in_memory()
        assert isinstance(engine.calculator.cache, TTLCache)

    def test_record_survives_attribution_failure(self):
        """Test a recorded conversion is kept and left pending when attribution fails."""
        engine = AttributionEngine.in_memory()

        with patch.object(engine.calculator.result_store, "replace", side_effect=RuntimeError("quota exceeded")):
            conversion = engine.recorder.record("v1", "signup")

        assert engine.recorder.conversion_store.get(conversion.id) == conversion
        assert engine.calculator.process_pending_conversions().pending == 1
