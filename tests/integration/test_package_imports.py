"""Integration tests for package imports."""

from datetime import UTC, datetime


class TestAllPackagesImportable:
    """Test that all Peanut packages can be imported together."""

    def test_attribution_package_imports(self):
        """Attribution package classes should be importable."""
        from peanut.attribution import AttributionCalculator
        from peanut.attribution import AttributionEngine
        from peanut.attribution import AttributionModel
        from peanut.attribution import Conversion
        from peanut.attribution import Touch
        from peanut.attribution import TouchNormalizer

        assert AttributionCalculator is not None
        assert AttributionEngine is not None
        assert AttributionModel is not None
        assert Conversion is not None
        assert Touch is not None
        assert TouchNormalizer is not None

    def test_storage_module_imports(self):
        """BigQuery storage should be importable."""
        from peanut.attribution.storage import BigQueryAttributionStorage

        assert BigQueryAttributionStorage is not None

    def test_mcp_server_imports(self):
        """MCP server should be importable."""
        from peanut_mcp.server import mcp
        from peanut_mcp.server import attribution_report
        from peanut_mcp.server import record_conversion

        assert mcp is not None
        assert attribution_report is not None
        assert record_conversion is not None


class TestCrossPackageIntegration:
    """Test that packages work together."""

    def test_normalized_touches_feed_attribution(self, sample_visitor_events):
        """Bulk-normalized touches should be attributable end to end."""
        from peanut.attribution import AttributionEngine, DateRange, TouchNormalizer

        engine = AttributionEngine.in_memory()
        engine.tracker.record_many(TouchNormalizer().normalize(sample_visitor_events))

        engine.recorder.record(
            "v_100", "purchase", value=90.0,
            occurred_at=datetime(2025, 1, 15, tzinfo=UTC),
        )
        report = engine.calculator.get_report("linear", DateRange.parse("2025-01-01", "2025-01-31"))

        assert [c.channel.utm_source for c in report.channels] == [None, "google", "newsletter"]
        assert all(c.credited_value == 30.0 for c in report.channels)
        assert report.totals["attributed_value"] == 90.0

    def test_form_submission_through_mcp(self, sample_form_submission):
        """A webhook-recorded conversion should be visible through MCP tools."""
        from peanut.attribution import AttributionEngine
        from peanut_mcp import server

        engine = AttributionEngine.in_memory()
        server.set_engine(engine)
        try:
            engine.tracker.handle_visitor_event("v_100", "pageview", {"utm_source": "google", "utm_medium": "cpc"})
            conversion = engine.recorder.record_form_submission(sample_form_submission)

            get_conversion = server.mcp._tool_manager._tools["get_conversion"].fn
            detail = get_conversion(conversion.id, "first_touch")
        finally:
            server.set_engine(None)

        assert detail["success"] is True
        assert detail["conversion_type"] == "form_submission"
        assert detail["customer_email"] == "jordan@example.com"
        assert len(detail["attribution"]) == 1
