"""Tests for the service entry points."""

import signal
import threading
from dataclasses import replace

from pos_batch.runner import (
    EXIT_INVALID_CONFIGURATION,
    EXIT_OK,
    install_signal_handlers,
    prepare,
    run_once,
    run_service,
)
from pos_batch.scheduler import IngestionScheduler
from pos_config.settings import Settings
from pos_ingestion.domain.types import SourceKind
from tests.helpers import header

SETTINGS = Settings(database_url="sqlite://", create_tables=False, run_on_startup=False)


class EmptyFetcher:
    def __init__(self):
        self.calls = 0

    def fetch(self, config, since):
        self.calls += 1
        return {}


class IdleOrchestrator:
    def run_cycle(self, stop_event=None):
        return None


class TestPrepare:
    def test_invalid_when_tables_empty(self, runtime):
        assert not prepare(SETTINGS, runtime).is_valid

    def test_valid_when_seeded(self, runtime, seed_config):
        seed_config([header("invoice_no", "BillNo")])
        assert prepare(SETTINGS, runtime).is_valid

    def test_seed_file_applied_before_validation(self, runtime, tmp_path):
        path = tmp_path / "vendors.yaml"
        path.write_text(
            "vendors:\n"
            "  - vendor_name: AcmePOS\n"
            "    field_mappings:\n"
            "      - {table: header, target_field: invoice_no, source_path: BillNo}\n"
            "    outlets:\n"
            "      - {customer_id: CUST001, outlet_code: OUT-7, api_url: 'https://pos.test'}\n"
        )

        assert prepare(replace(SETTINGS, seed_file=str(path)), runtime).is_valid

    def test_broken_seed_file_still_validates(self, runtime, tmp_path, captured_logs):
        path = tmp_path / "vendors.yaml"
        path.write_text("vendors: [unclosed\n")

        report = prepare(replace(SETTINGS, seed_file=str(path)), runtime)

        assert not report.is_valid
        assert any(r["message"] == "vendor_seed_skipped" for r in captured_logs())


class TestRunOnce:
    def test_skips_cycle_when_invalid(self, runtime):
        assert run_once(SETTINGS, runtime=runtime, fetchers={}) is None

    def test_runs_one_cycle(self, runtime, seed_config):
        seed_config([header("invoice_no", "BillNo")])
        fetcher = EmptyFetcher()

        result = run_once(SETTINGS, runtime=runtime, fetchers={SourceKind.API: fetcher})

        assert result is not None
        assert not result.failed
        assert fetcher.calls == 1

    def test_vendor_filter_applied(self, runtime, seed_config):
        seed_config([header("invoice_no", "BillNo")], vendor_name="AcmePOS", outlet_code="A")
        seed_config([header("invoice_no", "BillNo")], vendor_name="OtherPOS", outlet_code="B")
        fetcher = EmptyFetcher()
        settings = Settings(database_url="sqlite://", create_tables=False, vendor_filter=("OtherPOS",))

        result = run_once(settings, runtime=runtime, fetchers={SourceKind.API: fetcher})

        assert len(result.outcomes) == 1
        assert fetcher.calls == 1


class TestRunService:
    def test_invalid_configuration_exit_code(self, runtime):
        assert run_service(SETTINGS, runtime=runtime, fetchers={}, install_signals=False) == EXIT_INVALID_CONFIGURATION

    def test_clean_shutdown(self, runtime, seed_config, monkeypatch):
        seed_config([header("invoice_no", "BillNo")])
        monkeypatch.setattr(IngestionScheduler, "wait", lambda self, timeout=None: True)

        code = run_service(SETTINGS, runtime=runtime, fetchers={SourceKind.API: EmptyFetcher()}, install_signals=False)

        assert code == EXIT_OK


class TestSignalHandlers:
    def test_sigterm_requests_stop(self):
        scheduler = IngestionScheduler(IdleOrchestrator(), interval_seconds=60)
        previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
        try:
            install_signal_handlers(scheduler)
            signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
        assert scheduler.stop_requested

    def test_skipped_off_main_thread(self, captured_logs):
        scheduler = IngestionScheduler(IdleOrchestrator(), interval_seconds=60)
        worker = threading.Thread(target=install_signal_handlers, args=(scheduler,))
        worker.start()
        worker.join(timeout=5)
        assert any(r["message"] == "signal_handlers_skipped" for r in captured_logs())
