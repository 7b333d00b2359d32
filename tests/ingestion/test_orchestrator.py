"""Tests for the ingestion orchestrator (fake fetchers, SQLite canonical store)."""

import threading
from datetime import date

from sqlalchemy import select

from pos_kernel.db.engine import build_engine, session_scope
from pos_kernel.exceptions import FetchTimeoutError
from pos_kernel.logging_config import LogContext
from pos_kernel.runtime import RuntimeContext

from pos_ingestion.domain.types import IngestionStatus, SourceKind
from pos_ingestion.fetchers.base import FlatRows, SegmentedPayload
from pos_ingestion.models.canonical import (
    IngestionLogModel,
    RawPaymentModel,
    RawTransactionItemsModel,
    RawTransactionModel,
)
from pos_ingestion.services import orchestrator as orchestrator_module
from pos_ingestion.services.orchestrator import IngestionOrchestrator, OrchestratorState
from tests.helpers import header, item, make_configuration, payment

NESTED_MAPPINGS = [
    header("invoice_no", "BillNo", required=True, row_root="bills"),
    header("net_amount", "NetAmt", transform="parseFloat"),
    header("transaction_time", "BillDate|BillTime"),
    item("sku", "ItemCode", row_root="Lines"),
    item("quantity", "Qty"),
    payment("payment_type", "Mode", row_root="Payments"),
    payment("amount", "Amt"),
]


def _bill(number: str, net: str = "100") -> dict:
    return {
        "BillNo": number,
        "NetAmt": net,
        "BillDate": "20251211",
        "BillTime": "101500",
        "Lines": [{"ItemCode": "SKU-1", "Qty": 1}],
        "Payments": [{"Mode": "CASH", "Amt": net}],
    }


NESTED_PAYLOAD = {"bills": [_bill("INV-1"), _bill("INV-2", "250")]}


class FakeFetcher:
    """Returns queued payloads (the last one repeats) or raises queued errors."""

    def __init__(self, *results, on_fetch=None):
        self.results = list(results)
        self.calls = []
        self.on_fetch = on_fetch

    def fetch(self, config, since):
        self.calls.append((config, since))
        if self.on_fetch is not None:
            self.on_fetch()
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result


class BrokenRepository:
    def __init__(self, session):
        pass

    def active_configurations(self):
        raise RuntimeError("config tables unreachable")


def _all(session_factory, model):
    with session_scope(session_factory) as session:
        return session.scalars(select(model)).all()


class TestSuccessfulCycle:
    def test_fetch_map_insert_log(self, runtime, session_factory, seed_config):
        config_id = seed_config(NESTED_MAPPINGS)
        fetcher = FakeFetcher(NESTED_PAYLOAD)

        result = IngestionOrchestrator(runtime, fetchers={SourceKind.API: fetcher}).run_cycle()

        assert not result.failed
        assert result.succeeded_count == 1
        outcome = result.outcomes[0]
        assert outcome.config_id == config_id
        assert (outcome.mapped, outcome.inserted, outcome.skipped, outcome.errored) == (2, 2, 0, 0)

        transactions = _all(session_factory, RawTransactionModel)
        assert sorted(t.invoice_no for t in transactions) == ["INV-1", "INV-2"]
        assert all(t.batch_id == outcome.batch_id for t in transactions)
        assert all(t.agent_id == config_id for t in transactions)
        assert len(_all(session_factory, RawTransactionItemsModel)) == 2
        assert len(_all(session_factory, RawPaymentModel)) == 2

        log = _all(session_factory, IngestionLogModel)
        assert len(log) == 1
        assert log[0].status == "SUCCESS"
        assert log[0].records_count == 2
        assert log[0].errors_count == 0
        assert log[0].batch_id == outcome.batch_id
        assert log[0].agent_id == config_id

    def test_default_since_is_yesterday(self, runtime, seed_config):
        seed_config(NESTED_MAPPINGS)
        fetcher = FakeFetcher(NESTED_PAYLOAD)
        IngestionOrchestrator(runtime, fetchers={SourceKind.API: fetcher}).run_cycle()
        assert fetcher.calls[0][1] == date(2025, 12, 10)

    def test_rerun_skips_and_advances_since(self, runtime, session_factory, seed_config):
        seed_config(NESTED_MAPPINGS)
        fetcher = FakeFetcher(NESTED_PAYLOAD)
        orchestrator = IngestionOrchestrator(runtime, fetchers={SourceKind.API: fetcher})

        orchestrator.run_cycle()
        second = orchestrator.run_cycle().outcomes[0]

        assert fetcher.calls[1][1] == date(2025, 12, 11)
        assert (second.inserted, second.skipped) == (0, 2)
        assert len(_all(session_factory, RawTransactionModel)) == 2
        logs = _all(session_factory, IngestionLogModel)
        assert sorted(entry.skipped_count for entry in logs) == [0, 2]

    def test_mapping_failures_counted(self, runtime, session_factory, seed_config):
        seed_config(NESTED_MAPPINGS)
        payload = {"bills": [_bill("INV-1"), {"NetAmt": "5"}]}

        outcome = (
            IngestionOrchestrator(runtime, fetchers={SourceKind.API: FakeFetcher(payload)})
            .run_cycle()
            .outcomes[0]
        )

        assert outcome.status is IngestionStatus.SUCCESS
        assert (outcome.inserted, outcome.mapping_failures) == (1, 1)
        log = _all(session_factory, IngestionLogModel)[0]
        assert log.errors_count == 1
        assert log.meta["mapping_failures"][0]["error_code"] == "REQUIRED_FIELD_MISSING"

    def test_log_context_bound_during_fetch(self, runtime, seed_config):
        seed_config(NESTED_MAPPINGS)
        seen = {}
        fetcher = FakeFetcher({}, on_fetch=lambda: seen.update(LogContext.get_all()))

        outcome = IngestionOrchestrator(runtime, fetchers={SourceKind.API: fetcher}).run_cycle().outcomes[0]

        assert seen["correlation_id"] == str(outcome.batch_id)
        assert seen["source_kind"] == "api"
        assert seen["vendor_name"] == "AcmePOS"
        assert LogContext.get_all() == {}


class TestPayloadShapes:
    def test_segmented_payload(self, runtime, session_factory, seed_config):
        seed_config(
            [
                header("invoice_no", "RECEIPT_NO"),
                header("net_amount", "NET"),
                item("sku", "SKU"),
                payment("payment_type", "MODE"),
                payment("amount", "AMT"),
            ],
            vendor_name="SegmentPOS",
            source_kind="soap",
        )
        payload = SegmentedPayload(
            transactions=({"RECEIPT_NO": "R1", "NET": "90"},),
            items=({"RECEIPT_NO": "R1", "SKU": "A"}, {"RECEIPT_NO": "R1", "SKU": "B"}, {"SKU": "orphan"}),
            payments=({"RECEIPT_NO": "R1", "MODE": "CARD", "AMT": "90"},),
        )

        outcome = (
            IngestionOrchestrator(runtime, fetchers={SourceKind.SOAP: FakeFetcher(payload)})
            .run_cycle()
            .outcomes[0]
        )

        assert (outcome.inserted, outcome.discarded) == (1, 1)
        items = _all(session_factory, RawTransactionItemsModel)[0]
        assert items.sku == ["A", "B"]
        assert _all(session_factory, RawPaymentModel)[0].payment_type == "CARD"
        assert _all(session_factory, IngestionLogModel)[0].meta["discarded_rows"] == 1

    def test_custom_correlation_key(self, runtime, session_factory, seed_config):
        seed_config(
            [header("invoice_no", "BILL"), item("sku", "SKU")],
            vendor_name="SegmentPOS",
            source_kind="multiapi",
            connection_options={"correlation_key": "BILL"},
        )
        payload = SegmentedPayload(transactions=({"BILL": "B7"},), items=({"BILL": "B7", "SKU": "Z"},))

        IngestionOrchestrator(runtime, fetchers={SourceKind.MULTIAPI: FakeFetcher(payload)}).run_cycle()

        assert [t.invoice_no for t in _all(session_factory, RawTransactionModel)] == ["B7"]

    def test_flat_rows(self, runtime, session_factory, seed_config):
        seed_config(
            [
                header("invoice_no", "BILL_NO"),
                header("net_amount", "BILL_AMT"),
                item("sku", "ITEM_CODE"),
                payment("payment_type", "PAY_MODE"),
            ],
            vendor_name="DbPOS",
            source_kind="db",
        )
        rows = FlatRows(
            rows=(
                {"BILL_NO": 501, "BILL_AMT": 60, "ITEM_CODE": "A", "PAY_MODE": "UPI"},
                {"BILL_NO": 501, "BILL_AMT": 60, "ITEM_CODE": "B", "PAY_MODE": "UPI"},
                {"BILL_NO": 502, "BILL_AMT": 10, "ITEM_CODE": "C", "PAY_MODE": "CASH"},
            )
        )

        outcome = (
            IngestionOrchestrator(runtime, fetchers={SourceKind.DB: FakeFetcher(rows)})
            .run_cycle()
            .outcomes[0]
        )

        assert outcome.inserted == 2
        by_invoice = {i.invoice_no: i for i in _all(session_factory, RawTransactionItemsModel)}
        assert by_invoice["501"].sku == ["A", "B"]
        payments = {p.invoice_no: p for p in _all(session_factory, RawPaymentModel)}
        assert payments["501"].payment_type == "UPI"
        assert payments["502"].amount == 10

    def test_flat_orphan_row_counted_once(self, runtime, session_factory, seed_config, captured_logs):
        seed_config(
            [header("invoice_no", "BILL_NO"), item("sku", "ITEM_CODE")],
            vendor_name="DbPOS",
            source_kind="db",
        )
        rows = FlatRows(
            rows=(
                {"BILL_NO": 1, "ITEM_CODE": "A"},
                {"BILL_NO": None, "ITEM_CODE": "B"},
            )
        )

        outcome = (
            IngestionOrchestrator(runtime, fetchers={SourceKind.DB: FakeFetcher(rows)})
            .run_cycle()
            .outcomes[0]
        )

        assert (outcome.inserted, outcome.discarded) == (1, 1)
        assert _all(session_factory, IngestionLogModel)[0].meta["discarded_rows"] == 1
        orphans = [r for r in captured_logs() if r["message"] == "orphan_rows_discarded"]
        assert [r["discarded"] for r in orphans] == [1]


class TestFailures:
    def test_unknown_source_kind_then_success(self, runtime, session_factory, seed_config):
        bad_id = seed_config(NESTED_MAPPINGS, vendor_name="LegacyPOS", source_kind="ftp", outlet_code="OUT-8")
        good_id = seed_config(NESTED_MAPPINGS)

        result = IngestionOrchestrator(
            runtime, fetchers={SourceKind.API: FakeFetcher(NESTED_PAYLOAD)}
        ).run_cycle()

        outcomes = {o.config_id: o for o in result.outcomes}
        assert outcomes[bad_id].status is IngestionStatus.FAILED
        assert outcomes[bad_id].error_code == "UNKNOWN_SOURCE_KIND"
        assert outcomes[good_id].status is IngestionStatus.SUCCESS
        assert (result.succeeded_count, result.failed_count) == (1, 1)
        assert not result.failed

        logs = {entry.agent_id: entry for entry in _all(session_factory, IngestionLogModel)}
        assert logs[bad_id].status == "FAILED"
        assert (logs[bad_id].records_count, logs[bad_id].errors_count) == (0, 1)
        assert logs[bad_id].meta["error_code"] == "UNKNOWN_SOURCE_KIND"
        assert logs[good_id].status == "SUCCESS"

    def test_fetch_error_logged(self, runtime, session_factory, seed_config, captured_logs):
        seed_config(NESTED_MAPPINGS)
        fetcher = FakeFetcher(FetchTimeoutError("timed out", source_kind="api"))

        outcome = IngestionOrchestrator(runtime, fetchers={SourceKind.API: fetcher}).run_cycle().outcomes[0]

        assert outcome.status is IngestionStatus.FAILED
        assert outcome.error_code == "FETCH_TIMEOUT"
        assert _all(session_factory, RawTransactionModel) == []
        log = _all(session_factory, IngestionLogModel)[0]
        assert log.meta["error_type"] == "FetchTimeoutError"
        failed = [r for r in captured_logs() if r["message"] == "config_processing_failed"]
        assert failed and failed[0]["exc_code"] == "FETCH_TIMEOUT"

    def test_empty_fetch_writes_no_log(self, runtime, session_factory, seed_config, captured_logs):
        seed_config(NESTED_MAPPINGS)

        outcome = (
            IngestionOrchestrator(runtime, fetchers={SourceKind.API: FakeFetcher({})})
            .run_cycle()
            .outcomes[0]
        )

        assert outcome.status is None
        assert _all(session_factory, IngestionLogModel) == []
        assert any(r["message"] == "fetch_empty" for r in captured_logs())

    def test_log_failure_rolls_back_batch(self, runtime, session_factory, seed_config, monkeypatch):
        seed_config(NESTED_MAPPINGS)

        def refuse(session, entry):
            raise RuntimeError("ingestion_log unavailable")

        monkeypatch.setattr(orchestrator_module, "add_log_entry", refuse)

        outcome = (
            IngestionOrchestrator(runtime, fetchers={SourceKind.API: FakeFetcher(NESTED_PAYLOAD)})
            .run_cycle()
            .outcomes[0]
        )

        assert outcome.status is IngestionStatus.FAILED
        assert _all(session_factory, RawTransactionModel) == []
        assert _all(session_factory, RawTransactionItemsModel) == []
        logs = _all(session_factory, IngestionLogModel)
        assert [(log.status, log.records_count) for log in logs] == [("FAILED", 0)]

    def test_success_log_matches_committed_rows(self, runtime, session_factory, seed_config):
        seed_config(NESTED_MAPPINGS)

        IngestionOrchestrator(runtime, fetchers={SourceKind.API: FakeFetcher(NESTED_PAYLOAD)}).run_cycle()

        log = _all(session_factory, IngestionLogModel)[0]
        assert (log.status, log.records_count) == ("SUCCESS", len(_all(session_factory, RawTransactionModel)))

    def test_repository_failure_fails_cycle(self, runtime):
        orchestrator = IngestionOrchestrator(runtime, fetchers={}, repository_factory=BrokenRepository)

        result = orchestrator.run_cycle()

        assert result.failed
        assert result.error == "config tables unreachable"
        assert result.outcomes == ()
        assert orchestrator.state is OrchestratorState.IDLE


class TestStateAndStop:
    def test_state_during_fetch(self, runtime, seed_config):
        seed_config(NESTED_MAPPINGS)
        seen = []
        holder = {}
        fetcher = FakeFetcher(NESTED_PAYLOAD, on_fetch=lambda: seen.append(holder["o"].state))
        orchestrator = IngestionOrchestrator(runtime, fetchers={SourceKind.API: fetcher})
        holder["o"] = orchestrator

        orchestrator.run_cycle()

        assert seen == [OrchestratorState.FETCHING]
        assert orchestrator.state is OrchestratorState.IDLE

    def test_stop_between_configurations(self, runtime, seed_config):
        seed_config(NESTED_MAPPINGS, outlet_code="A")
        seed_config(NESTED_MAPPINGS, outlet_code="B")
        stop = threading.Event()
        fetcher = FakeFetcher(NESTED_PAYLOAD, on_fetch=stop.set)

        result = IngestionOrchestrator(runtime, fetchers={SourceKind.API: fetcher}).run_cycle(stop)

        assert result.stopped
        assert len(result.outcomes) == 1
        assert result.outcomes[0].status is IngestionStatus.SUCCESS

    def test_stop_before_first(self, runtime, seed_config):
        seed_config(NESTED_MAPPINGS)
        stop = threading.Event()
        stop.set()
        result = IngestionOrchestrator(runtime, fetchers={SourceKind.API: FakeFetcher({})}).run_cycle(stop)
        assert result.stopped
        assert result.outcomes == ()


class TestResources:
    def test_default_fetchers_released_with_runtime(self, tmp_path):
        runtime = RuntimeContext.from_engine(build_engine("sqlite://"))
        orchestrator = IngestionOrchestrator(runtime)
        fetcher = orchestrator.fetcher_for(make_configuration(source_kind=SourceKind.DB))
        fetcher.engine_for(make_configuration(options={"db_url": f"sqlite:///{tmp_path / 'vendor.db'}"}))

        runtime.dispose()

        assert fetcher._engines == {}
