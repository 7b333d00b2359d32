"""
Canonical ORM models: the normalized schema every vendor lands in.

Contract:
    - raw_transactions: one row per source transaction, unique on the natural
      key (invoice_no, brand_id, outlet_id).
    - raw_transaction_items: one aggregated row per transaction, with one
      array column per line attribute (index i of every array is line i).
      Line fields with no column are kept per line in meta.extra_fields.
    - raw_payment: one row per payment.  Unmapped payment fields go to
      meta.extra_fields.
    - raw_exceptions: one row per transaction the inserter could not persist.
    - ingestion_log: one row per configuration per cycle; never updated.

Architecture: pos_ingestion/models. Imports from pos_kernel.db only.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Date, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pos_kernel.db.base import TrackedBase
from pos_kernel.db.types import NumericArray, StringArray, UUIDString

from pos_ingestion.domain.types import IngestionLogEntry, IngestionStatus


def to_json_safe(obj: Any) -> Any:
    """Convert values to JSON-serializable form (Decimal -> str, etc.)."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {str(k): to_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_json_safe(v) for v in obj]
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    return str(obj)


class RawTransactionModel(TrackedBase):
    """Transaction header."""

    __tablename__ = "raw_transactions"

    transaction_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    agent_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    source_system: Mapped[str] = mapped_column(String(200), nullable=False)
    brand_id: Mapped[str] = mapped_column(String(100), nullable=False)
    brand_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    outlet_id: Mapped[str] = mapped_column(String(100), nullable=False)
    outlet_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    terminal: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gate: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_no: Mapped[str] = mapped_column(String(100), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(50), default="SALE", nullable=False)
    transaction_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    gross_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    customer_mobile: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shift: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shiftdate: Mapped[date | None] = mapped_column(Date, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(10), nullable=True)
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("invoice_no", "brand_id", "outlet_id", name="uq_raw_transactions_natural_key"),
        Index(
            "idx_raw_transactions_window",
            "brand_id",
            "outlet_id",
            "terminal",
            "source_system",
            "transaction_date",
        ),
    )


class RawTransactionItemsModel(TrackedBase):
    """All lines of one transaction, aggregated into parallel arrays."""

    __tablename__ = "raw_transaction_items"

    transaction_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    brand_id: Mapped[str] = mapped_column(String(100), nullable=False)
    outlet_id: Mapped[str] = mapped_column(String(100), nullable=False)
    terminal: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_no: Mapped[str] = mapped_column(String(100), nullable=False)
    transaction_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    line_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sku: Mapped[list[str | None]] = mapped_column(StringArray(), nullable=False)
    item_name: Mapped[list[str | None]] = mapped_column(StringArray(), nullable=False)
    category: Mapped[list[str | None]] = mapped_column(StringArray(), nullable=False)
    subcategory: Mapped[list[str | None]] = mapped_column(StringArray(), nullable=False)
    hsncode: Mapped[list[str | None]] = mapped_column(StringArray(), nullable=False)
    quantity: Mapped[list[Decimal | None]] = mapped_column(NumericArray(), nullable=False)
    unit_price: Mapped[list[Decimal | None]] = mapped_column(NumericArray(), nullable=False)
    line_total: Mapped[list[Decimal | None]] = mapped_column(NumericArray(), nullable=False)
    line_discount: Mapped[list[Decimal | None]] = mapped_column(NumericArray(), nullable=False)
    line_tax: Mapped[list[Decimal | None]] = mapped_column(NumericArray(), nullable=False)
    taxpercentage: Mapped[list[Decimal | None]] = mapped_column(NumericArray(), nullable=False)
    cess: Mapped[list[Decimal | None]] = mapped_column(NumericArray(), nullable=False)
    cgst: Mapped[list[Decimal | None]] = mapped_column(NumericArray(), nullable=False)
    sgst: Mapped[list[Decimal | None]] = mapped_column(NumericArray(), nullable=False)
    shift: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shiftdate: Mapped[date | None] = mapped_column(Date, nullable=True)
    transtype: Mapped[str | None] = mapped_column(String(50), nullable=True)
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_raw_transaction_items_natural_key", "invoice_no", "brand_id", "outlet_id"),
    )


class RawPaymentModel(TrackedBase):
    """One payment against a transaction."""

    __tablename__ = "raw_payment"

    payment_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    transaction_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    brand_id: Mapped[str] = mapped_column(String(100), nullable=False)
    outlet_id: Mapped[str] = mapped_column(String(100), nullable=False)
    terminal: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_no: Mapped[str] = mapped_column(String(100), nullable=False)
    transaction_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_type: Mapped[str] = mapped_column(String(100), default="UNKNOWN", nullable=False)
    amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    source_payment_ref: Mapped[str | None] = mapped_column(String(200), nullable=True)
    card_scheme: Mapped[str | None] = mapped_column(String(50), nullable=True)
    issuer_bank: Mapped[str | None] = mapped_column(String(100), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(10), nullable=True)
    shift: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shiftdate: Mapped[date | None] = mapped_column(Date, nullable=True)
    transtype: Mapped[str | None] = mapped_column(String(50), nullable=True)
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_raw_payment_natural_key", "invoice_no", "brand_id", "outlet_id"),
    )


class RawExceptionModel(TrackedBase):
    """A transaction that failed to insert, with its payload and the error."""

    __tablename__ = "raw_exceptions"

    transaction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    brand_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    brand_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    outlet_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    outlet_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    terminal: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gate: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    reported_by: Mapped[str] = mapped_column(String(100), default="system", nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)


class IngestionLogModel(TrackedBase):
    """Outcome of one configuration within one cycle."""

    __tablename__ = "ingestion_log"

    agent_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    batch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    source_system: Mapped[str] = mapped_column(String(200), nullable=False)
    outlet_id: Mapped[str] = mapped_column(String(100), nullable=False)
    outlet_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    brand_id: Mapped[str] = mapped_column(String(100), nullable=False)
    brand_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    terminal: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gate: Mapped[str | None] = mapped_column(String(100), nullable=True)
    records_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    first_received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_ingestion_log_agent", "agent_id", "created_at"),
    )

    @classmethod
    def from_dto(cls, entry: IngestionLogEntry) -> IngestionLogModel:
        return cls(
            agent_id=entry.agent_id,
            batch_id=entry.batch_id,
            source_system=entry.source_system,
            outlet_id=entry.outlet_id,
            outlet_name=entry.outlet_name,
            brand_id=entry.brand_id,
            brand_name=entry.brand_name,
            terminal=entry.terminal,
            gate=entry.gate,
            records_count=entry.records_count,
            errors_count=entry.errors_count,
            skipped_count=entry.skipped_count,
            first_received_at=entry.first_received_at,
            last_received_at=entry.last_received_at,
            status=entry.status.value,
            meta=to_json_safe(dict(entry.meta)),
        )

    def to_dto(self) -> IngestionLogEntry:
        return IngestionLogEntry(
            agent_id=self.agent_id,
            batch_id=self.batch_id,
            source_system=self.source_system,
            outlet_id=self.outlet_id,
            outlet_name=self.outlet_name,
            brand_id=self.brand_id,
            brand_name=self.brand_name,
            terminal=self.terminal,
            gate=self.gate,
            records_count=self.records_count,
            errors_count=self.errors_count,
            skipped_count=self.skipped_count,
            first_received_at=self.first_received_at,
            last_received_at=self.last_received_at,
            status=IngestionStatus(self.status),
            meta=self.meta or {},
        )
