"""
Inserter: canonical transactions -> canonical tables, idempotently.

SAVEPOINT per transaction inside the caller's session transaction.  A
transaction whose natural key (invoice_no, brand_id, outlet_id) already
exists is skipped.  A transaction that fails to insert is rolled back to its
savepoint and recorded in raw_exceptions; the rest of the batch still
commits with the caller's transaction.  Connection-level failures propagate
so the caller rolls the whole batch back.
"""

from __future__ import annotations

from datetime import tzinfo
from decimal import Decimal
from typing import Any, Iterable, Mapping
from uuid import uuid4

from sqlalchemy import JSON, Date, DateTime, Integer, Numeric, String, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from pos_kernel.db.types import UUIDString
from pos_kernel.exceptions import InvalidCanonicalValueError
from pos_kernel.logging_config import get_logger

from pos_ingestion.domain.types import (
    CanonicalTransaction,
    Configuration,
    InsertionFailure,
    InsertionOutcome,
    TableName,
)
from pos_ingestion.mapping import coercion
from pos_ingestion.mapping.engine import COPY_DOWN_FIELDS
from pos_ingestion.mapping.transforms import DEFAULT_TZ
from pos_ingestion.models.canonical import (
    RawExceptionModel,
    RawPaymentModel,
    RawTransactionItemsModel,
    RawTransactionModel,
    to_json_safe,
)

logger = get_logger("ingestion.inserter")

INSERT_ERROR_EVENT = "INSERT_ERROR"

ITEM_TEXT_ARRAYS = ("sku", "item_name", "category", "subcategory", "hsncode")
ITEM_NUMERIC_ARRAYS = (
    "quantity",
    "unit_price",
    "line_total",
    "line_discount",
    "line_tax",
    "taxpercentage",
    "cess",
    "cgst",
    "sgst",
)
ITEM_NUMERIC_DEFAULTS = {
    "quantity": Decimal("1"),
    "cess": Decimal("0"),
    "cgst": Decimal("0"),
    "sgst": Decimal("0"),
}

# Catalogue fields some vendors send instead of the line's own name/category
ITEM_ALIASES = {"sku_title": "item_name", "sku_category": "category"}

PAYMENT_FIELDS = (
    "payment_id",
    "payment_type",
    "amount",
    "reference",
    "source_payment_ref",
    "card_scheme",
    "issuer_bank",
    "currency",
)

_HEADER_SKIP = frozenset({"id", "created_at", "updated_at", "meta", "transaction_date"})
_ITEM_KNOWN = frozenset(
    COPY_DOWN_FIELDS + ("item_line_id",) + ITEM_TEXT_ARRAYS + ITEM_NUMERIC_ARRAYS + tuple(ITEM_ALIASES)
)
_PAYMENT_KNOWN = frozenset(COPY_DOWN_FIELDS + PAYMENT_FIELDS)


def _coerce_column(column: Any, table: str, value: Any, tz: tzinfo) -> Any:
    column_type = column.type
    if isinstance(column_type, UUIDString):
        return coercion.to_uuid(table, column.key, value)
    if isinstance(column_type, Numeric):
        return coercion.to_decimal(table, column.key, value)
    if isinstance(column_type, DateTime):
        return coercion.to_datetime(table, column.key, value, tz)
    if isinstance(column_type, Date):
        return coercion.to_date(table, column.key, value, tz)
    if isinstance(column_type, Integer):
        number = coercion.to_decimal(table, column.key, value)
        return None if number is None else int(number)
    if isinstance(column_type, String):
        return coercion.to_text(table, column.key, value, column_type.length)
    if isinstance(column_type, JSON):
        return to_json_safe(value)
    return value


class Inserter:
    """Persists one batch of canonical transactions for one configuration."""

    def __init__(
        self,
        session: Session,
        config: Configuration | None = None,
        tz: tzinfo | None = None,
    ):
        self._session = session
        self._config = config
        self._tz = tz or DEFAULT_TZ

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def insert_batch(self, transactions: Iterable[CanonicalTransaction]) -> InsertionOutcome:
        """
        Insert a batch; returns inserted/skipped/errored counts.

        Raises:
            OperationalError: connection loss or deadlock.  Nothing from this
                batch should be committed; the caller's scope rolls back.
        """
        inserted = 0
        skipped = 0
        failures: list[InsertionFailure] = []
        batch = list(transactions)
        logger.info("batch_insert_started", extra={"transactions": len(batch)})

        for tx in batch:
            savepoint = self._session.begin_nested()
            try:
                if self._insert_one(tx):
                    savepoint.commit()
                    inserted += 1
                else:
                    savepoint.rollback()
                    skipped += 1
                    logger.info(
                        "transaction_skipped",
                        extra={"invoice_no": str(tx.invoice_no), "reason": "duplicate"},
                    )
            except OperationalError:
                savepoint.rollback()
                raise
            except Exception as exc:
                savepoint.rollback()
                failure = InsertionFailure(
                    transaction_id=tx.transaction_id,
                    invoice_no=tx.invoice_no,
                    error_code=getattr(exc, "code", type(exc).__name__),
                    message=str(exc),
                )
                failures.append(failure)
                logger.warning(
                    "transaction_insert_failed",
                    extra={
                        "transaction_id": str(failure.transaction_id),
                        "invoice_no": str(failure.invoice_no),
                        "error_code": failure.error_code,
                        "error_msg": failure.message,
                    },
                )
                self._record_exception(tx, exc)

        outcome = InsertionOutcome(
            inserted=inserted,
            skipped=skipped,
            errored=len(failures),
            failures=tuple(failures),
        )
        logger.info(
            "batch_insert_completed",
            extra={"inserted": outcome.inserted, "skipped": outcome.skipped, "errored": outcome.errored},
        )
        return outcome

    def header_exists(self, invoice_no: Any, brand_id: Any, outlet_id: Any) -> bool:
        stmt = (
            select(RawTransactionModel.id)
            .where(
                RawTransactionModel.invoice_no == invoice_no,
                RawTransactionModel.brand_id == brand_id,
                RawTransactionModel.outlet_id == outlet_id,
            )
            .limit(1)
        )
        return self._session.execute(stmt).first() is not None

    def items_exist(self, invoice_no: Any, brand_id: Any, outlet_id: Any) -> bool:
        stmt = (
            select(RawTransactionItemsModel.id)
            .where(
                RawTransactionItemsModel.invoice_no == invoice_no,
                RawTransactionItemsModel.brand_id == brand_id,
                RawTransactionItemsModel.outlet_id == outlet_id,
            )
            .limit(1)
        )
        return self._session.execute(stmt).first() is not None

    def payments_exist(self, invoice_no: Any, brand_id: Any, outlet_id: Any) -> bool:
        stmt = (
            select(RawPaymentModel.id)
            .where(
                RawPaymentModel.invoice_no == invoice_no,
                RawPaymentModel.brand_id == brand_id,
                RawPaymentModel.outlet_id == outlet_id,
            )
            .limit(1)
        )
        return self._session.execute(stmt).first() is not None

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _insert_one(self, tx: CanonicalTransaction) -> bool:
        """Insert one transaction; False when it already exists."""
        header = self._build_header(tx.header or {})
        key = (header.invoice_no, header.brand_id, header.outlet_id)

        if header.invoice_no is not None and self.header_exists(*key):
            return False

        self._session.add(header)
        if tx.items and not self.items_exist(*key):
            self._session.add(self._build_items(header, tx.items))
        if tx.payments and not self.payments_exist(*key):
            self._session.add_all(self._build_payments(header, tx.payments))
        self._session.flush()
        return True

    def _build_header(self, values: Mapping[str, Any]) -> RawTransactionModel:
        table = TableName.HEADER.value
        columns = RawTransactionModel.__table__.columns
        row: dict[str, Any] = {}
        for column in columns:
            if column.key in _HEADER_SKIP or column.key not in values:
                continue
            coerced = _coerce_column(column, table, values[column.key], self._tz)
            if coerced is not None:
                row[column.key] = coerced

        row.setdefault("transaction_id", uuid4())
        if values.get("transaction_date") is not None:
            row["transaction_date"] = coercion.to_date(table, "transaction_date", values["transaction_date"], self._tz)
        elif row.get("transaction_time") is not None:
            row["transaction_date"] = coercion.to_date(table, "transaction_date", row["transaction_time"], self._tz)

        extras = {k: v for k, v in values.items() if k not in columns and k != "transaction_date"}
        meta = dict(values.get("meta") or {})
        if extras:
            meta["extra_fields"] = extras
        if meta:
            row["meta"] = to_json_safe(meta)
        return RawTransactionModel(**row)

    def _build_items(
        self,
        header: RawTransactionModel,
        items: Iterable[Mapping[str, Any]],
    ) -> RawTransactionItemsModel:
        table = TableName.ITEMS.value
        lines = list(items)
        arrays: dict[str, list[Any]] = {name: [] for name in ITEM_TEXT_ARRAYS + ITEM_NUMERIC_ARRAYS}
        extras: list[dict[str, Any]] = []
        for line in lines:
            values = dict(line)
            # Vendors that expose a catalogue title/category win over the line's own
            for alias, name in ITEM_ALIASES.items():
                if values.get(alias) is not None:
                    values[name] = values[alias]
            for name in ITEM_TEXT_ARRAYS:
                arrays[name].append(coercion.to_text(table, name, values.get(name)))
            for name in ITEM_NUMERIC_ARRAYS:
                arrays[name].append(
                    coercion.to_decimal(table, name, values.get(name), ITEM_NUMERIC_DEFAULTS.get(name))
                )
            extras.append({k: v for k, v in line.items() if k not in _ITEM_KNOWN})
        return RawTransactionItemsModel(
            transaction_id=header.transaction_id,
            brand_id=header.brand_id,
            outlet_id=header.outlet_id,
            terminal=header.terminal,
            invoice_no=header.invoice_no,
            transaction_time=header.transaction_time,
            line_count=len(lines),
            shift=header.shift,
            shiftdate=header.shiftdate,
            transtype=header.transaction_type,
            meta=to_json_safe({"extra_fields": extras}) if any(extras) else None,
            **arrays,
        )

    def _build_payments(
        self,
        header: RawTransactionModel,
        payments: Iterable[Mapping[str, Any]],
    ) -> list[RawPaymentModel]:
        table = TableName.PAYMENTS.value
        rows = list(payments)
        # A lone payment without an amount settles the whole bill
        fallback_amount = header.net_amount if len(rows) == 1 else Decimal("0")
        models = []
        for payment in rows:
            payment_type = coercion.to_text(table, "payment_type", payment.get("payment_type"), 100)
            extras = {k: v for k, v in payment.items() if k not in _PAYMENT_KNOWN}
            models.append(
                RawPaymentModel(
                    payment_id=coercion.to_uuid(table, "payment_id", payment.get("payment_id")) or uuid4(),
                    transaction_id=header.transaction_id,
                    brand_id=header.brand_id,
                    outlet_id=header.outlet_id,
                    terminal=header.terminal,
                    invoice_no=header.invoice_no,
                    transaction_time=header.transaction_time,
                    payment_type=payment_type or "UNKNOWN",
                    amount=coercion.to_decimal(table, "amount", payment.get("amount"), fallback_amount),
                    reference=coercion.to_text(table, "reference", payment.get("reference"), 200),
                    source_payment_ref=coercion.to_text(
                        table,
                        "source_payment_ref",
                        payment.get("source_payment_ref", header.invoice_no),
                        200,
                    ),
                    card_scheme=coercion.to_text(table, "card_scheme", payment.get("card_scheme"), 50),
                    issuer_bank=coercion.to_text(table, "issuer_bank", payment.get("issuer_bank"), 100),
                    currency=coercion.to_text(
                        table, "currency", payment.get("currency", header.currency), 10
                    ),
                    shift=header.shift,
                    shiftdate=header.shiftdate,
                    transtype=header.transaction_type,
                    meta=to_json_safe({"extra_fields": extras}) if extras else None,
                )
            )
        return models

    def _identity(self, header: Mapping[str, Any], name: str) -> Any:
        value = header.get(name)
        if value is None and self._config is not None:
            value = getattr(self._config, name, None)
        return None if value is None else str(value)

    def _record_exception(self, tx: CanonicalTransaction, exc: Exception) -> None:
        header = tx.header or {}
        try:
            amount = coercion.to_decimal(TableName.HEADER.value, "net_amount", header.get("net_amount"))
        except InvalidCanonicalValueError:
            amount = None
        try:
            transaction_id = coercion.to_uuid(TableName.HEADER.value, "transaction_id", header.get("transaction_id"))
        except InvalidCanonicalValueError:
            transaction_id = None

        record = RawExceptionModel(
            transaction_id=transaction_id,
            brand_id=self._identity(header, "brand_id"),
            brand_name=self._identity(header, "brand_name"),
            outlet_id=self._identity(header, "outlet_id"),
            outlet_name=self._identity(header, "outlet_name"),
            terminal=self._identity(header, "terminal"),
            gate=self._identity(header, "gate"),
            invoice_no=None if header.get("invoice_no") is None else str(header["invoice_no"])[:100],
            event_type=INSERT_ERROR_EVENT,
            reason=str(exc) or type(exc).__name__,
            amount=amount,
            details=to_json_safe(
                {
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "error_code": getattr(exc, "code", None),
                    "transaction": dict(header),
                    "items": [dict(i) for i in tx.items],
                    "payments": [dict(p) for p in tx.payments],
                }
            ),
        )
        savepoint = self._session.begin_nested()
        try:
            self._session.add(record)
            self._session.flush()
            savepoint.commit()
        except OperationalError:
            savepoint.rollback()
            raise
        except Exception:
            savepoint.rollback()
            logger.exception(
                "exception_record_failed",
                extra={"invoice_no": str(header.get("invoice_no"))},
            )
