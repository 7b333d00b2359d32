"""
Vendor seeder: loads vendors, outlets and field mappings from a YAML file.

Seed file layout::

    vendors:
      - vendor_name: AcmePOS
        description: Acme cloud POS
        field_mappings:
          - {table: header, target_field: invoice_no, source_path: BillNo, required: true}
        outlets:
          - customer_id: CUST001
            outlet_code: OUT-7
            outlet_name: Main Street
            brand_name: Brand One
            terminal: T1
            source_kind: api
            api_url: https://pos.example.test/transactions

Every write is an upsert keyed the way the configuration tables are read:

    pos_vendor_master          vendor_name
    customer_outlet_mappings   (customer_id, outlet_code)
    customer_api_configs       (customer_id, outlet_code, vendor_id)
    pos_vendor_field_mapping   inserted only while the vendor has none

Rows that already exist are counted, never overwritten, so running the
seeder on every start is safe.  Each vendor entry is applied in its own
SAVEPOINT; a bad entry is logged and counted and the others still land.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from pos_config.loader import load_yaml_file
from pos_kernel.db.engine import session_scope
from pos_kernel.exceptions import InvalidSeedDataError
from pos_kernel.logging_config import get_logger

from pos_ingestion.domain.types import SourceKind, TableName
from pos_ingestion.models.config import (
    CustomerApiConfigModel,
    CustomerOutletMappingModel,
    PosVendorModel,
    VendorFieldMappingModel,
)

logger = get_logger("ingestion.seeder")

DEFAULT_GATE = "GATE01"


@dataclass
class SeedReport:
    """Counts for one seeding run."""

    total: int = 0
    inserted: int = 0
    existing: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)


def _required(entry: Mapping[str, Any], key: str, vendor_name: str | None) -> str:
    value = entry.get(key)
    if value is None or not str(value).strip():
        raise InvalidSeedDataError(vendor_name, f"missing {key}")
    return str(value).strip()


def _slug(name: str) -> str:
    return "".join(ch if ch.isalnum() else "_" for ch in name.upper())


class VendorSeeder:
    """Applies a vendor seed file to the configuration tables."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def seed_file(self, path: Path | str) -> SeedReport:
        """Seed from ``path``; a missing file is a warning and an empty report."""
        path = Path(path)
        if not path.exists():
            logger.warning("seed_file_missing", extra={"path": str(path)})
            return SeedReport()
        data = load_yaml_file(path)
        vendors = data.get("vendors") or []
        if not isinstance(vendors, list):
            raise InvalidSeedDataError(None, "vendors must be a list")
        return self.seed(vendors)

    def seed(self, vendors: list[Mapping[str, Any]]) -> SeedReport:
        report = SeedReport(total=len(vendors))
        with session_scope(self._session_factory) as session:
            for entry in vendors:
                name = entry.get("vendor_name") if isinstance(entry, Mapping) else None
                try:
                    with session.begin_nested():
                        created = self._seed_vendor(session, entry)
                except (InvalidSeedDataError, ValueError) as exc:
                    report.errors.append(f"{name}: {exc}")
                    logger.warning(
                        "vendor_seed_failed", extra={"vendor_name": name, "error": str(exc)}
                    )
                    continue
                if created:
                    report.inserted += 1
                else:
                    report.existing += 1

        logger.info(
            "vendor_seed_completed",
            extra={
                "total": report.total,
                "inserted": report.inserted,
                "existing": report.existing,
                "failed": report.failed,
            },
        )
        return report

    def _seed_vendor(self, session: Session, entry: Any) -> bool:
        """Upsert one vendor entry; True when the vendor row was created."""
        if not isinstance(entry, Mapping):
            raise InvalidSeedDataError(None, "entry must be a mapping")
        name = _required(entry, "vendor_name", None)

        vendor = session.execute(
            select(PosVendorModel).where(func.upper(PosVendorModel.vendor_name) == name.upper())
        ).scalar_one_or_none()
        created = vendor is None
        if created:
            vendor = PosVendorModel(vendor_name=name, description=entry.get("description"))
            session.add(vendor)
            session.flush()
            logger.info("vendor_seeded", extra={"vendor_name": name, "vendor_id": str(vendor.id)})

        for outlet in entry.get("outlets") or []:
            self._seed_outlet(session, vendor, outlet)
        self._seed_field_mappings(session, vendor, entry.get("field_mappings") or [])
        return created

    def _seed_outlet(self, session: Session, vendor: PosVendorModel, outlet: Any) -> None:
        name = vendor.vendor_name
        if not isinstance(outlet, Mapping):
            raise InvalidSeedDataError(name, "outlet must be a mapping")
        customer_id = str(outlet.get("customer_id") or f"CUST_{_slug(name)}")
        outlet_code = _required(outlet, "outlet_code", name)
        source_kind = SourceKind(str(outlet.get("source_kind", "api")).lower())

        mapping = session.execute(
            select(CustomerOutletMappingModel).where(
                CustomerOutletMappingModel.customer_id == customer_id,
                CustomerOutletMappingModel.outlet_code == outlet_code,
            )
        ).scalar_one_or_none()
        if mapping is None:
            session.add(
                CustomerOutletMappingModel(
                    customer_id=customer_id,
                    outlet_code=outlet_code,
                    outlet_id=str(outlet.get("outlet_id") or uuid4()),
                    outlet_name=outlet.get("outlet_name"),
                    brand_id=str(outlet.get("brand_id") or uuid4()),
                    brand_name=outlet.get("brand_name") or name,
                    terminal=outlet.get("terminal"),
                    gate=outlet.get("gate") or DEFAULT_GATE,
                )
            )
            logger.info(
                "outlet_mapping_seeded",
                extra={"customer_id": customer_id, "outlet_code": outlet_code},
            )

        config = session.execute(
            select(CustomerApiConfigModel).where(
                CustomerApiConfigModel.customer_id == customer_id,
                CustomerApiConfigModel.outlet_code == outlet_code,
                CustomerApiConfigModel.vendor_id == vendor.id,
            )
        ).scalar_one_or_none()
        if config is None:
            session.add(
                CustomerApiConfigModel(
                    customer_id=customer_id,
                    vendor_id=vendor.id,
                    outlet_code=outlet_code,
                    source_kind=source_kind.value,
                    api_url=outlet.get("api_url"),
                    http_method=str(outlet.get("http_method", "GET")).upper(),
                    date_format=outlet.get("date_format"),
                    timeout_seconds=outlet.get("timeout_seconds"),
                    connection_options=outlet.get("options"),
                )
            )
            logger.info(
                "api_config_seeded",
                extra={
                    "customer_id": customer_id,
                    "outlet_code": outlet_code,
                    "source_kind": source_kind.value,
                },
            )
        session.flush()

    def _seed_field_mappings(
        self, session: Session, vendor: PosVendorModel, rules: list[Any]
    ) -> None:
        if not rules:
            return
        has_rules = session.execute(
            select(func.count())
            .select_from(VendorFieldMappingModel)
            .where(VendorFieldMappingModel.vendor_id == vendor.id)
        ).scalar_one()
        if has_rules:
            return

        for order, rule in enumerate(rules):
            if not isinstance(rule, Mapping):
                raise InvalidSeedDataError(vendor.vendor_name, "field mapping must be a mapping")
            session.add(
                VendorFieldMappingModel(
                    vendor_id=vendor.id,
                    tablename=TableName.parse(_required(rule, "table", vendor.vendor_name)).value,
                    target_field=_required(rule, "target_field", vendor.vendor_name),
                    source_path=_required(rule, "source_path", vendor.vendor_name),
                    transform_rule=rule.get("transform"),
                    is_required=bool(rule.get("required", False)),
                    row_root_path=rule.get("row_root"),
                    sort_order=int(rule.get("sort_order", order)),
                )
            )
        session.flush()
        logger.info(
            "field_mappings_seeded",
            extra={"vendor_name": vendor.vendor_name, "count": len(rules)},
        )
