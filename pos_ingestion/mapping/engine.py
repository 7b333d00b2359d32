"""
Field mapping engine: raw vendor payload -> canonical transactions.

Rules come from the vendor's field-mapping rows, grouped by target table.
Header rules run against one transaction record; item and payment rules run
against each row found under the table's row root.  Identity fields (ids,
brand, outlet, terminal, gate) are seeded before any rule runs and copied
down from header to rows, so partial vendor data still yields structurally
valid records.  ZERO I/O apart from diagnostics.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo
from typing import Any, Callable, Iterable, Sequence
from uuid import UUID, uuid4

from pos_kernel.domain.clock import Clock, SystemClock
from pos_kernel.exceptions import CorrelationFieldNotMappedError, RequiredFieldMissingError
from pos_kernel.logging_config import get_logger

from pos_ingestion.domain.types import (
    CanonicalTransaction,
    Configuration,
    FieldMapping,
    TableName,
)
from pos_ingestion.mapping.paths import ABSENT, is_sequence, resolve
from pos_ingestion.mapping.transforms import DEFAULT_TZ, apply_transform

logger = get_logger("ingestion.mapping_engine")

# Fields every item/payment row inherits from its header
COPY_DOWN_FIELDS = (
    "transaction_id",
    "brand_id",
    "brand_name",
    "outlet_id",
    "outlet_name",
    "terminal",
    "gate",
    "transaction_time",
    "received_at",
    "invoice_no",
)

_DATE_COMPACT = re.compile(r"^\d{8}$")
_DATE_ISO = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_COMPACT = re.compile(r"^\d{6}$")
# Anything after HH:MM:SS (fraction, zone offset) is dropped
_TIME_COLON = re.compile(r"^\d{2}:\d{2}:\d{2}")


# -----------------------------------------------------------------------------
# Result types
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class MappingFailure:
    """One raw record that could not be mapped."""

    index: int
    error_code: str
    message: str


@dataclass(frozen=True)
class MappingResult:
    """Transactions produced by one mapping pass."""

    transactions: tuple[CanonicalTransaction, ...] = ()
    failures: tuple[MappingFailure, ...] = ()

    @property
    def failed(self) -> int:
        return len(self.failures)


# -----------------------------------------------------------------------------
# Compound date|time
# -----------------------------------------------------------------------------


def _date_text(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def _time_text(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%H:%M:%S")
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, int) and not isinstance(value, bool):
        # Integer HHMMSS columns lose the leading zero before 10:00
        return f"{value:06d}"
    return str(value).strip()


def combine_date_time(date_value: Any, time_value: Any) -> str | None:
    """
    Combine vendor date and time parts into ``YYYY-MM-DD HH:MM:SS``.

    Accepts ``YYYYMMDD`` or ``YYYY-MM-DD`` dates and ``HHMMSS`` or
    ``HH:MM:SS...`` times (fractions and zone suffixes are dropped).
    Returns None for any other shape or for an impossible calendar value.
    """
    dt = _date_text(date_value)
    tm = _time_text(time_value)

    if _DATE_COMPACT.match(dt):
        date_part = f"{dt[0:4]}-{dt[4:6]}-{dt[6:8]}"
    elif _DATE_ISO.match(dt):
        date_part = dt
    else:
        return None

    if _TIME_COMPACT.match(tm):
        time_part = f"{tm[0:2]}:{tm[2:4]}:{tm[4:6]}"
    elif _TIME_COLON.match(tm):
        time_part = tm[:8]
    else:
        return None

    combined = f"{date_part} {time_part}"
    try:
        datetime.strptime(combined, "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None
    return combined


def _is_blank(value: Any) -> bool:
    return value is ABSENT or value is None or (isinstance(value, str) and not value.strip())


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------


class FieldMappingEngine:
    """Maps raw records for one configuration using its field mappings."""

    def __init__(
        self,
        config: Configuration,
        mappings: Iterable[FieldMapping],
        tz: tzinfo | None = None,
        clock: Clock | None = None,
        batch_id: UUID | None = None,
        id_factory: Callable[[], UUID] = uuid4,
    ):
        self._config = config
        self._tz = tz or DEFAULT_TZ
        self._clock = clock or SystemClock()
        self._batch_id = batch_id
        self._new_id = id_factory

        self._rules: dict[TableName, tuple[FieldMapping, ...]] = {}
        for table in TableName:
            self._rules[table] = tuple(m for m in mappings if m.table is table)

        self._row_roots: dict[TableName, str | None] = {
            table: next((m.row_root for m in rules if m.row_root), None)
            for table, rules in self._rules.items()
        }

    # -------------------------------------------------------------------------
    # Rule-level
    # -------------------------------------------------------------------------

    def rules_for(self, table: TableName) -> tuple[FieldMapping, ...]:
        return self._rules[table]

    def row_root(self, table: TableName) -> str | None:
        return self._row_roots[table]

    def resolve_rule(self, record: Any, rule: FieldMapping) -> Any:
        """Value of one rule against one record, or ABSENT."""
        if rule.is_compound:
            value = self._resolve_compound(record, rule)
        else:
            value = self._resolve_path(record, rule.source_path)
        if value is ABSENT or value is None:
            return value
        if rule.transform:
            value = apply_transform(value, rule.transform, self._tz)
        return value

    def _resolve_path(self, record: Any, path: str) -> Any:
        # A flat row may use a dotted column name verbatim
        if isinstance(record, Mapping) and path in record:
            return record[path]
        return resolve(record, path)

    def _resolve_compound(self, record: Any, rule: FieldMapping) -> Any:
        parts = [p.strip() for p in rule.source_path.split("|")]
        if len(parts) != 2 or not all(parts):
            logger.warning(
                "combined_datetime_rejected",
                extra={
                    "target_field": rule.target_field,
                    "source_path": rule.source_path,
                    "reason": "expected exactly two sub-paths",
                },
            )
            return ABSENT

        date_value = self._resolve_path(record, parts[0])
        time_value = self._resolve_path(record, parts[1])
        if _is_blank(date_value) or _is_blank(time_value):
            return ABSENT

        combined = combine_date_time(date_value, time_value)
        if combined is None:
            logger.warning(
                "combined_datetime_rejected",
                extra={
                    "target_field": rule.target_field,
                    "date_value": str(date_value),
                    "time_value": str(time_value),
                    "reason": "unrecognized date or time shape",
                },
            )
            return ABSENT
        return combined

    # -------------------------------------------------------------------------
    # Table-level
    # -------------------------------------------------------------------------

    def map_table(
        self,
        record: Any,
        table: TableName,
        defaults: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Apply every rule for ``table`` to ``record`` on top of ``defaults``.

        Absent and null values are dropped so defaults survive.

        Raises:
            RequiredFieldMissingError: a required rule resolved to nothing.
        """
        mapped: dict[str, Any] = dict(defaults or {})
        for rule in self._rules[table]:
            value = self.resolve_rule(record, rule)
            if value is ABSENT or value is None:
                if rule.required:
                    raise RequiredFieldMissingError(table.value, rule.target_field, rule.source_path)
                continue
            mapped[rule.target_field] = value
        return mapped

    def header_defaults(self) -> dict[str, Any]:
        """Identity fields seeded into every header before mapping."""
        config = self._config
        return {
            "transaction_id": self._new_id(),
            "batch_id": self._batch_id or self._new_id(),
            "source_system": config.source_system,
            "agent_id": config.config_id,
            "brand_id": config.brand_id,
            "brand_name": config.brand_name,
            "outlet_id": config.outlet_id,
            "outlet_name": config.outlet_name or config.outlet_code,
            "terminal": config.terminal,
            "gate": config.gate,
            "received_at": self._clock.now_in(self._tz),
            "transaction_time": None,
            "transaction_type": "SALE",
            "gross_amount": 0,
            "discount_amount": 0,
            "tax_amount": 0,
            "net_amount": 0,
            "invoice_no": None,
        }

    def _row_defaults(self, header: Mapping[str, Any], table: TableName) -> dict[str, Any]:
        defaults = {name: header.get(name) for name in COPY_DOWN_FIELDS}
        if table is TableName.ITEMS:
            defaults["item_line_id"] = self._new_id()
        elif table is TableName.PAYMENTS:
            defaults["payment_id"] = self._new_id()
        return defaults

    def _rows_under_root(self, record: Any, table: TableName) -> list[Any]:
        root = self._row_roots[table]
        found = record if root is None else resolve(record, root)
        if found is ABSENT or found is None:
            return []
        rows = list(found) if is_sequence(found) else [found]
        return [row for row in rows if row is not None]

    def _map_rows(
        self,
        rows: Sequence[Any],
        table: TableName,
        header: Mapping[str, Any],
    ) -> tuple[dict[str, Any], ...]:
        if not self._rules[table]:
            return ()
        return tuple(
            self.map_table(row, table, self._row_defaults(header, table))
            for row in rows
        )

    # -------------------------------------------------------------------------
    # Nested payloads (api, xml)
    # -------------------------------------------------------------------------

    def header_records(self, raw: Any) -> list[Any]:
        """Transaction records found under the header row root."""
        root = self._row_roots[TableName.HEADER]
        records = self._rows_under_root(raw, TableName.HEADER)
        if root and not records:
            logger.warning("row_root_empty", extra={"table": TableName.HEADER.value, "row_root": root})
        return records

    def map_record(self, record: Any) -> CanonicalTransaction:
        """One transaction record -> one canonical transaction."""
        header = self.map_table(record, TableName.HEADER, self.header_defaults())
        items = self._map_rows(self._rows_under_root(record, TableName.ITEMS), TableName.ITEMS, header)
        payments = self._map_rows(
            self._rows_under_root(record, TableName.PAYMENTS), TableName.PAYMENTS, header
        )
        return CanonicalTransaction(
            header=header,
            items=items,
            payments=payments,
            correlation_key=header.get("invoice_no"),
        )

    def map_transactions(self, raw: Any) -> MappingResult:
        """Map every transaction record in a nested payload.

        A record that fails to map is skipped; the rest still map.
        """
        transactions: list[CanonicalTransaction] = []
        failures: list[MappingFailure] = []
        for index, record in enumerate(self.header_records(raw)):
            try:
                transactions.append(self.map_record(record))
            except Exception as exc:
                failures.append(self._record_failure(index, exc))
        return self._finish(transactions, failures)

    # -------------------------------------------------------------------------
    # Correlated rows (soap, multiapi, db)
    # -------------------------------------------------------------------------

    def correlation_value(self, row: Any, target_field: str = "invoice_no") -> Any:
        """Resolve the header rule targeting ``target_field`` against a flat row."""
        rule = next(
            (m for m in self._rules[TableName.HEADER] if m.target_field == target_field),
            None,
        )
        if rule is None:
            raise CorrelationFieldNotMappedError(target_field)
        value = self.resolve_rule(row, rule)
        return None if value is ABSENT else value

    def map_group(
        self,
        group: CanonicalTransaction,
        payments_from_header: bool = False,
    ) -> CanonicalTransaction:
        """Map one correlated group of raw rows.

        Row roots do not apply here; the correlator already split the rows.
        With ``payments_from_header`` a group without payment rows takes its
        single payment from the header row (flat DB rows carry both).
        """
        header_row = group.header if group.header is not None else {}
        header = self.map_table(header_row, TableName.HEADER, self.header_defaults())
        if header.get("invoice_no") is None and group.correlation_key is not None:
            header["invoice_no"] = group.correlation_key

        payment_rows: Sequence[Any] = group.payments
        if not payment_rows and payments_from_header and group.header is not None:
            payment_rows = (group.header,)

        return CanonicalTransaction(
            header=header,
            items=self._map_rows(group.items, TableName.ITEMS, header),
            payments=self._map_rows(payment_rows, TableName.PAYMENTS, header),
            correlation_key=group.correlation_key,
        )

    def map_groups(
        self,
        groups: Iterable[CanonicalTransaction],
        payments_from_header: bool = False,
    ) -> MappingResult:
        transactions: list[CanonicalTransaction] = []
        failures: list[MappingFailure] = []
        for index, group in enumerate(groups):
            try:
                transactions.append(self.map_group(group, payments_from_header))
            except Exception as exc:
                failures.append(self._record_failure(index, exc, group.correlation_key))
        return self._finish(transactions, failures)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _record_failure(self, index: int, exc: Exception, key: Any = None) -> MappingFailure:
        failure = MappingFailure(
            index=index,
            error_code=getattr(exc, "code", type(exc).__name__),
            message=str(exc),
        )
        logger.warning(
            "record_mapping_failed",
            extra={
                "record_index": index,
                "correlation_key": None if key is None else str(key),
                "error_code": failure.error_code,
                "error_msg": failure.message,
            },
        )
        return failure

    def _finish(
        self,
        transactions: list[CanonicalTransaction],
        failures: list[MappingFailure],
    ) -> MappingResult:
        logger.info(
            "mapping_completed",
            extra={
                "config_id": str(self._config.config_id),
                "mapped": len(transactions),
                "failed": len(failures),
            },
        )
        return MappingResult(transactions=tuple(transactions), failures=tuple(failures))
