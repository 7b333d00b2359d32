"""
pos_ingestion.domain.types -- Pure frozen dataclasses for the ingestion pipeline.

ZERO I/O.  Configuration and FieldMapping are read-only snapshots of the
config tables; CanonicalTransaction is what the mapping engine and the
correlator produce and what the inserter consumes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class SourceKind(str, Enum):
    """How a vendor integration is reached."""

    API = "api"
    SOAP = "soap"
    DB = "db"
    MULTIAPI = "multiapi"
    XML = "xml"


class TableName(str, Enum):
    """Canonical target tables; values are the persisted table names."""

    HEADER = "raw_transactions"
    ITEMS = "raw_transaction_items"
    PAYMENTS = "raw_payment"

    @classmethod
    def parse(cls, value: str) -> TableName:
        """Accept either the table name or its short label."""
        label = value.strip().lower()
        aliases = {"header": cls.HEADER, "items": cls.ITEMS, "payments": cls.PAYMENTS}
        if label in aliases:
            return aliases[label]
        return cls(label)


class IngestionStatus(str, Enum):
    """Outcome of one configuration within a cycle."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


# =============================================================================
# Configuration snapshots
# =============================================================================


@dataclass(frozen=True)
class Configuration:
    """One vendor integration instance for one outlet."""

    config_id: UUID
    customer_id: str
    vendor_id: UUID
    vendor_name: str
    source_system: str
    source_kind: SourceKind | str
    outlet_code: str
    outlet_id: str
    brand_id: str
    outlet_name: str | None = None
    brand_name: str | None = None
    terminal: str | None = None
    gate: str | None = None
    api_url: str | None = None
    http_method: str = "GET"
    date_format: str | None = None
    timeout_seconds: float | None = None
    options: Mapping[str, Any] = field(default_factory=dict)
    is_active: bool = True

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)


@dataclass(frozen=True)
class FieldMapping:
    """One declarative rule: where a canonical field comes from."""

    table: TableName
    target_field: str
    source_path: str
    transform: str | None = None
    required: bool = False
    row_root: str | None = None
    mapping_id: UUID | None = None

    @property
    def is_compound(self) -> bool:
        return "|" in self.source_path


# =============================================================================
# Canonical records
# =============================================================================


@dataclass(frozen=True)
class CanonicalTransaction:
    """Header plus owned items and payments.

    The correlator emits this shape with raw vendor rows (``header`` may be
    None for keys seen only on item/payment rows); the mapping engine emits
    it with canonical field maps.
    """

    header: dict[str, Any] | None
    items: tuple[dict[str, Any], ...] = ()
    payments: tuple[dict[str, Any], ...] = ()
    correlation_key: Any = None

    @property
    def transaction_id(self) -> Any:
        return (self.header or {}).get("transaction_id")

    @property
    def invoice_no(self) -> Any:
        return (self.header or {}).get("invoice_no")

    @property
    def natural_key(self) -> tuple[Any, Any, Any]:
        header = self.header or {}
        return (header.get("invoice_no"), header.get("brand_id"), header.get("outlet_id"))


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True)
class InsertionFailure:
    """One transaction the inserter could not persist."""

    transaction_id: Any
    invoice_no: Any
    error_code: str
    message: str


@dataclass(frozen=True)
class InsertionOutcome:
    """Per-batch insertion counts."""

    inserted: int = 0
    skipped: int = 0
    errored: int = 0
    failures: tuple[InsertionFailure, ...] = ()

    @property
    def total(self) -> int:
        return self.inserted + self.skipped + self.errored


@dataclass(frozen=True)
class IngestionLogEntry:
    """One configuration's outcome within one cycle."""

    agent_id: UUID
    batch_id: UUID
    source_system: str
    outlet_id: str
    brand_id: str
    status: IngestionStatus
    records_count: int
    errors_count: int
    skipped_count: int
    first_received_at: datetime
    last_received_at: datetime
    outlet_name: str | None = None
    brand_name: str | None = None
    terminal: str | None = None
    gate: str | None = None
    meta: Mapping[str, Any] = field(default_factory=dict)
