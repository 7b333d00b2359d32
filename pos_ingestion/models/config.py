"""
Configuration ORM models: vendors, per-outlet API configs, outlet identity
and vendor field mappings.

Contract:
    These tables are maintained by administrative tooling.  The ingestion
    pipeline only reads them, through ``SqlConfigRepository``, and converts
    rows to the frozen ``Configuration`` / ``FieldMapping`` snapshots with
    ``to_dto``.

Architecture: pos_ingestion/models. Imports from pos_kernel.db only.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pos_kernel.db.base import TrackedBase
from pos_kernel.db.types import UUIDString

from pos_ingestion.domain.types import FieldMapping, TableName


class PosVendorModel(TrackedBase):
    """A POS product (one set of field mappings shared by its customers)."""

    __tablename__ = "pos_vendor_master"

    vendor_name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class CustomerApiConfigModel(TrackedBase):
    """How one customer outlet's data is fetched from its POS vendor."""

    __tablename__ = "customer_api_configs"

    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    vendor_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("pos_vendor_master.id"), nullable=False
    )
    outlet_code: Mapped[str] = mapped_column(String(100), nullable=False)
    source_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    api_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    http_method: Mapped[str] = mapped_column(String(10), default="GET", nullable=False)
    date_format: Mapped[str | None] = mapped_column(String(30), nullable=True)
    timeout_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    connection_options: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("idx_customer_api_configs_active", "is_active"),
        Index("idx_customer_api_configs_outlet", "customer_id", "outlet_code"),
    )


class CustomerOutletMappingModel(TrackedBase):
    """Canonical identity (brand, outlet, terminal, gate) of a vendor outlet code."""

    __tablename__ = "customer_outlet_mappings"

    customer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    outlet_code: Mapped[str] = mapped_column(String(100), nullable=False)
    outlet_id: Mapped[str] = mapped_column(String(100), nullable=False)
    outlet_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    brand_id: Mapped[str] = mapped_column(String(100), nullable=False)
    brand_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    terminal: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gate: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("customer_id", "outlet_code", name="uq_customer_outlet_code"),
    )


class VendorFieldMappingModel(TrackedBase):
    """One mapping rule from a vendor payload path to a canonical field."""

    __tablename__ = "pos_vendor_field_mapping"

    vendor_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("pos_vendor_master.id"), nullable=False
    )
    tablename: Mapped[str] = mapped_column(String(50), nullable=False)
    target_field: Mapped[str] = mapped_column(String(100), nullable=False)
    source_path: Mapped[str] = mapped_column(Text, nullable=False)
    transform_rule: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    row_root_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_vendor_field_mapping_vendor", "vendor_id", "tablename"),
    )

    def to_dto(self) -> FieldMapping:
        return FieldMapping(
            table=TableName.parse(self.tablename),
            target_field=self.target_field,
            source_path=self.source_path,
            transform=self.transform_rule,
            required=self.is_required,
            row_root=self.row_root_path,
            mapping_id=self.id,
        )
