"""Tests for the field mapping engine."""

from datetime import date, datetime, time
from decimal import Decimal
from itertools import count
from uuid import UUID

import pytest

from pos_kernel.domain.clock import DeterministicClock
from pos_kernel.exceptions import CorrelationFieldNotMappedError

from pos_ingestion.domain.types import CanonicalTransaction, TableName
from pos_ingestion.mapping.engine import FieldMappingEngine, combine_date_time
from pos_ingestion.mapping.paths import ABSENT
from tests.helpers import header, item, make_configuration, payment

NOW = datetime(2025, 12, 11, 14, 30, 0)


def _sequential_ids():
    counter = count(1)
    return lambda: UUID(int=next(counter))


def _engine(mappings, **kwargs):
    return FieldMappingEngine(
        make_configuration(**kwargs),
        mappings,
        clock=DeterministicClock(NOW),
        id_factory=_sequential_ids(),
    )


NESTED_MAPPINGS = [
    header("invoice_no", "BillNo", required=True, row_root="data.bills"),
    header("net_amount", "NetAmt", transform="parseFloat"),
    header("transaction_time", "BillDate|BillTime"),
    item("sku", "ItemCode", row_root="Lines"),
    item("quantity", "Qty"),
    payment("payment_type", "Mode", transform="toUpperCase", row_root="Payments"),
    payment("amount", "Amt"),
]

NESTED_PAYLOAD = {
    "data": {
        "bills": [
            {
                "BillNo": "INV-1",
                "NetAmt": "150.00",
                "BillDate": "20251210",
                "BillTime": "143005",
                "Lines": [{"ItemCode": "SKU-A", "Qty": 1}, {"ItemCode": "SKU-B", "Qty": 2}],
                "Payments": [{"Mode": "cash", "Amt": 150}],
            },
            {
                "BillNo": "INV-2",
                "NetAmt": "80",
                "BillDate": "2025-12-10",
                "BillTime": "09:15:00.123",
                "Lines": {"ItemCode": "SKU-C", "Qty": 4},
                "Payments": [],
            },
        ]
    }
}


class TestCombineDateTime:
    @pytest.mark.parametrize(
        "date_value,time_value,expected",
        [
            ("20251210", "143005", "2025-12-10 14:30:05"),
            ("2025-12-10", "14:30:05", "2025-12-10 14:30:05"),
            ("2025-12-10", "14:30:05.987654", "2025-12-10 14:30:05"),
            ("2025-12-10", "14:30:05+05:30", "2025-12-10 14:30:05"),
            ("20251210", "14:30:05Z", "2025-12-10 14:30:05"),
            (date(2025, 12, 10), time(9, 5, 0), "2025-12-10 09:05:00"),
            ("20251210", 93005, "2025-12-10 09:30:05"),
        ],
    )
    def test_accepted_shapes(self, date_value, time_value, expected):
        assert combine_date_time(date_value, time_value) == expected

    @pytest.mark.parametrize(
        "date_value,time_value",
        [
            ("2025/12/10", "143005"),
            ("20251210", "2:30 PM"),
            ("20250230", "143005"),
            ("20251210", "256100"),
        ],
    )
    def test_rejected_shapes(self, date_value, time_value):
        assert combine_date_time(date_value, time_value) is None


class TestResolveRule:
    def test_compound_rule(self):
        engine = _engine([])
        rule = header("transaction_time", "d|t")
        assert engine.resolve_rule({"d": "20251210", "t": "143005"}, rule) == "2025-12-10 14:30:05"

    def test_compound_rule_bad_date_logs_and_is_absent(self, captured_logs):
        engine = _engine([])
        rule = header("transaction_time", "d|t")
        assert engine.resolve_rule({"d": "2025/12/10", "t": "143005"}, rule) is ABSENT
        assert any(r["message"] == "combined_datetime_rejected" for r in captured_logs())

    def test_compound_rule_needs_two_parts(self):
        engine = _engine([])
        assert engine.resolve_rule({"a": 1}, header("transaction_time", "a|b|c")) is ABSENT

    def test_compound_rule_blank_part_is_absent(self):
        engine = _engine([])
        assert engine.resolve_rule({"d": "20251210", "t": " "}, header("transaction_time", "d|t")) is ABSENT

    def test_dotted_column_name_used_verbatim(self):
        engine = _engine([])
        assert engine.resolve_rule({"bill.no": "X1"}, header("invoice_no", "bill.no")) == "X1"

    def test_transform_applied(self):
        engine = _engine([])
        assert engine.resolve_rule({"a": "12.5"}, header("net_amount", "a", transform="parseFloat")) == Decimal("12.5")


class TestMapTable:
    def test_defaults_survive_absent_and_null(self):
        engine = _engine([header("customer_name", "Name"), header("net_amount", "Net")])
        mapped = engine.map_table({"Name": None}, TableName.HEADER, {"net_amount": 0, "customer_name": "Walk-in"})
        assert mapped == {"net_amount": 0, "customer_name": "Walk-in"}

    def test_header_defaults(self):
        engine = _engine([], terminal="T9", gate=None)
        defaults = engine.header_defaults()
        assert defaults["brand_id"] == "BRAND-1"
        assert defaults["outlet_id"] == "OUTLET-7"
        assert defaults["terminal"] == "T9"
        assert defaults["gate"] is None
        assert defaults["received_at"] == NOW
        assert defaults["transaction_type"] == "SALE"
        assert defaults["source_system"] == "AcmePOS"


class TestMapTransactions:
    def test_nested_payload(self):
        result = _engine(NESTED_MAPPINGS).map_transactions(NESTED_PAYLOAD)

        assert result.failed == 0
        assert len(result.transactions) == 2
        first, second = result.transactions

        assert first.header["invoice_no"] == "INV-1"
        assert first.header["net_amount"] == Decimal("150.00")
        assert first.header["transaction_time"] == "2025-12-10 14:30:05"
        assert [line["sku"] for line in first.items] == ["SKU-A", "SKU-B"]
        assert first.payments[0]["payment_type"] == "CASH"

        assert second.header["transaction_time"] == "2025-12-10 09:15:00"
        assert len(second.items) == 1
        assert second.payments == ()

    def test_copy_down_to_rows(self):
        result = _engine(NESTED_MAPPINGS).map_transactions(NESTED_PAYLOAD)
        tx = result.transactions[0]
        for row in tx.items + tx.payments:
            assert row["transaction_id"] == tx.header["transaction_id"]
            assert row["invoice_no"] == "INV-1"
            assert row["brand_id"] == "BRAND-1"
            assert row["outlet_id"] == "OUTLET-7"
            assert row["terminal"] == "T1"
            assert row["transaction_time"] == "2025-12-10 14:30:05"

    def test_row_ids_generated(self):
        tx = _engine(NESTED_MAPPINGS).map_transactions(NESTED_PAYLOAD).transactions[0]
        ids = [tx.header["transaction_id"]] + [r["item_line_id"] for r in tx.items] + [tx.payments[0]["payment_id"]]
        assert len(set(ids)) == len(ids)

    def test_required_missing_skips_only_that_record(self, captured_logs):
        payload = {"data": {"bills": [{"NetAmt": "5"}, {"BillNo": "INV-9", "NetAmt": "7"}]}}
        result = _engine(NESTED_MAPPINGS).map_transactions(payload)

        assert [t.invoice_no for t in result.transactions] == ["INV-9"]
        assert result.failed == 1
        assert result.failures[0].index == 0
        assert result.failures[0].error_code == "REQUIRED_FIELD_MISSING"
        assert any(r["message"] == "record_mapping_failed" for r in captured_logs())

    def test_empty_row_root_yields_nothing(self, captured_logs):
        result = _engine(NESTED_MAPPINGS).map_transactions({"data": {"bills": []}})
        assert result.transactions == ()
        assert any(r["message"] == "row_root_empty" for r in captured_logs())

    def test_missing_row_root_yields_nothing(self):
        assert _engine(NESTED_MAPPINGS).map_transactions({"status": "ok"}).transactions == ()

    def test_no_header_root_maps_whole_payload(self):
        mappings = [header("invoice_no", "id"), item("sku", "code", row_root="lines")]
        result = _engine(mappings).map_transactions({"id": "A1", "lines": [{"code": "X"}]})
        assert result.transactions[0].invoice_no == "A1"
        assert result.transactions[0].items[0]["sku"] == "X"

    def test_table_without_rules_has_no_rows(self):
        mappings = [header("invoice_no", "id", row_root="bills")]
        tx = _engine(mappings).map_transactions({"bills": [{"id": "A", "lines": [{"x": 1}]}]}).transactions[0]
        assert tx.items == ()
        assert tx.payments == ()


class TestMapGroups:
    def test_header_less_group_takes_correlation_key(self):
        engine = _engine([header("invoice_no", "RECEIPT_NO"), item("sku", "SKU")])
        group = CanonicalTransaction(header=None, items=({"RECEIPT_NO": "R1", "SKU": "A"},), correlation_key="R1")
        tx = engine.map_groups([group]).transactions[0]
        assert tx.header["invoice_no"] == "R1"
        assert tx.items[0]["invoice_no"] == "R1"

    def test_payments_from_header(self):
        engine = _engine([header("invoice_no", "BILL"), payment("payment_type", "PAYMODE"), payment("amount", "AMT")])
        row = {"BILL": "B1", "PAYMODE": "Card", "AMT": 99}
        group = CanonicalTransaction(header=row, items=(row,), correlation_key="B1")

        tx = engine.map_groups([group], payments_from_header=True).transactions[0]
        assert tx.payments[0]["payment_type"] == "Card"
        assert tx.payments[0]["amount"] == 99

        plain = engine.map_groups([group]).transactions[0]
        assert plain.payments == ()

    def test_failure_carries_correlation_key(self):
        engine = _engine([header("net_amount", "NET", required=True)])
        result = engine.map_groups([CanonicalTransaction(header={}, correlation_key="K")])
        assert result.failed == 1
        assert result.transactions == ()


class TestCorrelationValue:
    def test_resolves_header_rule(self):
        engine = _engine([header("invoice_no", "BILL_NO", transform="trim")])
        assert engine.correlation_value({"BILL_NO": " 17 "}) == "17"
        assert engine.correlation_value({}) is None

    def test_unmapped_field_raises(self):
        with pytest.raises(CorrelationFieldNotMappedError):
            _engine([header("net_amount", "NET")]).correlation_value({"NET": 1})
