"""
Module: pos_ingestion.repository
Responsibility: Read-only access to the configuration tables, converting
    rows to frozen Configuration / FieldMapping snapshots.
Architecture position: Ingestion > Repository.  May import from models/ and
    domain/.  Never writes.

Invariants enforced:
    - Only active configurations of active vendors with an active outlet
      mapping are returned.
    - Field mappings come back in a stable order (table, required first,
      sort_order, id) so mapping output is deterministic.

Failure modes:
    - OperationalError when the database is unreachable; the orchestrator
      treats that as a cycle-level failure.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pos_kernel.logging_config import get_logger

from pos_ingestion.domain.types import Configuration, FieldMapping, SourceKind
from pos_ingestion.models.canonical import RawTransactionModel
from pos_ingestion.models.config import (
    CustomerApiConfigModel,
    CustomerOutletMappingModel,
    PosVendorModel,
    VendorFieldMappingModel,
)

logger = get_logger("ingestion.repository")


@runtime_checkable
class ConfigRepository(Protocol):
    """Source of configurations and their field mappings."""

    def active_configurations(self) -> list[Configuration]:
        ...

    def field_mappings(self, config: Configuration) -> list[FieldMapping]:
        ...

    def get_configuration(self, config_id: UUID) -> Configuration | None:
        ...


def parse_source_kind(value: str | None) -> SourceKind | str:
    """SourceKind for known values; the raw text otherwise."""
    text = (value or "").strip().lower()
    if text == "json":
        return SourceKind.API
    try:
        return SourceKind(text)
    except ValueError:
        return text


class SqlConfigRepository:
    """ConfigRepository over the four configuration tables."""

    def __init__(self, session: Session, vendor_filter: Iterable[str] = ()):
        self.session = session
        self._vendor_filter = tuple(vendor_filter)

    def _base_query(self):
        stmt = (
            select(CustomerApiConfigModel, PosVendorModel, CustomerOutletMappingModel)
            .join(PosVendorModel, PosVendorModel.id == CustomerApiConfigModel.vendor_id)
            .outerjoin(
                CustomerOutletMappingModel,
                (CustomerOutletMappingModel.customer_id == CustomerApiConfigModel.customer_id)
                & (CustomerOutletMappingModel.outlet_code == CustomerApiConfigModel.outlet_code)
                & CustomerOutletMappingModel.is_active.is_(True),
            )
        )
        if self._vendor_filter:
            wanted = [name.upper() for name in self._vendor_filter]
            stmt = stmt.where(func.upper(PosVendorModel.vendor_name).in_(wanted))
        return stmt

    def active_configurations(self) -> list[Configuration]:
        stmt = (
            self._base_query()
            .where(
                CustomerApiConfigModel.is_active.is_(True),
                PosVendorModel.is_active.is_(True),
            )
            .order_by(CustomerApiConfigModel.created_at, CustomerApiConfigModel.id)
        )
        configs = []
        for api_config, vendor, outlet in self.session.execute(stmt).all():
            if outlet is None:
                logger.warning(
                    "outlet_mapping_missing",
                    extra={
                        "config_id": str(api_config.id),
                        "customer_id": api_config.customer_id,
                        "outlet_code": api_config.outlet_code,
                    },
                )
                continue
            configs.append(self._to_configuration(api_config, vendor, outlet))
        logger.info("configurations_loaded", extra={"active": len(configs)})
        return configs

    def get_configuration(self, config_id: UUID) -> Configuration | None:
        """Configuration by id regardless of schedule; None when absent or unmapped."""
        stmt = self._base_query().where(CustomerApiConfigModel.id == config_id)
        row = self.session.execute(stmt).first()
        if row is None or row[2] is None:
            return None
        return self._to_configuration(*row)

    def field_mappings(self, config: Configuration) -> list[FieldMapping]:
        stmt = (
            select(VendorFieldMappingModel)
            .where(VendorFieldMappingModel.vendor_id == config.vendor_id)
            .order_by(
                VendorFieldMappingModel.tablename,
                VendorFieldMappingModel.is_required.desc(),
                VendorFieldMappingModel.sort_order,
                VendorFieldMappingModel.id,
            )
        )
        return [row.to_dto() for row in self.session.scalars(stmt)]

    @staticmethod
    def _to_configuration(
        api_config: CustomerApiConfigModel,
        vendor: PosVendorModel,
        outlet: CustomerOutletMappingModel,
    ) -> Configuration:
        options: dict[str, Any] = dict(api_config.connection_options or {})
        return Configuration(
            config_id=api_config.id,
            customer_id=api_config.customer_id,
            vendor_id=vendor.id,
            vendor_name=vendor.vendor_name,
            source_system=vendor.vendor_name,
            source_kind=parse_source_kind(api_config.source_kind),
            outlet_code=api_config.outlet_code,
            outlet_id=outlet.outlet_id,
            brand_id=outlet.brand_id,
            outlet_name=outlet.outlet_name,
            brand_name=outlet.brand_name,
            terminal=outlet.terminal,
            gate=outlet.gate,
            api_url=api_config.api_url,
            http_method=api_config.http_method or "GET",
            date_format=api_config.date_format,
            timeout_seconds=api_config.timeout_seconds,
            options=options,
            is_active=api_config.is_active,
        )


def max_transaction_date(session: Session, config: Configuration) -> date | None:
    """Latest stored transaction_date for the configuration's outlet and source."""
    terminal_match = (
        RawTransactionModel.terminal.is_(None)
        if config.terminal is None
        else RawTransactionModel.terminal == config.terminal
    )
    stmt = select(func.max(RawTransactionModel.transaction_date)).where(
        RawTransactionModel.brand_id == config.brand_id,
        RawTransactionModel.outlet_id == config.outlet_id,
        terminal_match,
        RawTransactionModel.source_system == config.source_system,
    )
    return session.execute(stmt).scalar_one_or_none()
