"""Tests for the startup configuration check."""

from sqlalchemy.exc import OperationalError

from pos_kernel.db.engine import build_engine, build_session_factory

from pos_ingestion.services.validator import ConfigValidator
from tests.helpers import header


class TestConfigValidator:
    def test_missing_tables(self):
        engine = build_engine("sqlite://")
        try:
            report = ConfigValidator(build_session_factory(engine)).validate()
        finally:
            engine.dispose()

        assert not report.is_valid
        assert set(report.missing_tables) == {
            "pos_vendor_master",
            "customer_api_configs",
            "customer_outlet_mappings",
            "pos_vendor_field_mapping",
        }

    def test_empty_tables(self, session_factory, captured_logs):
        report = ConfigValidator(session_factory).validate()

        assert not report.is_valid
        assert len(report.empty_tables) == 4
        assert report.table_counts["pos_vendor_master"] == 0
        assert any(r["message"] == "config_validation_failed" for r in captured_logs())

    def test_populated(self, session_factory, seed_config):
        seed_config([header("invoice_no", "BillNo")])
        seed_config(outlet_code="OUT-9", is_active=False)

        report = ConfigValidator(session_factory).validate()

        assert report.is_valid
        assert report.table_counts["customer_api_configs"] == 2
        assert report.active_configurations == 1

    def test_database_error_reported(self, session_factory, monkeypatch):
        def _unreachable(session):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        monkeypatch.setattr(ConfigValidator, "_inspect", staticmethod(_unreachable))

        report = ConfigValidator(session_factory).validate()

        assert not report.is_valid
        assert "connection refused" in report.error
