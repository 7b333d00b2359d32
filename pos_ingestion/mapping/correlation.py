"""
Correlator: regroup flat or segmented vendor rows into transactions.

Vendors that expose transactions, items and payments as separate row sets
(SOAP segments, multiple REST endpoints) or as one denormalized row set (SQL
views) share one grouping contract, keyed by a business correlation value
such as a receipt or invoice number.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from pos_kernel.logging_config import get_logger

from pos_ingestion.domain.types import CanonicalTransaction
from pos_ingestion.mapping.paths import ABSENT, resolve

logger = get_logger("ingestion.correlation")

KeySelector = Callable[[Any], Any]


@dataclass(frozen=True)
class GroupingResult:
    """Groups in first-seen key order plus the number of orphan rows."""

    groups: tuple[CanonicalTransaction, ...] = ()
    discarded: int = 0


@dataclass
class _Slot:
    key: Any
    header: Any = None
    items: list[Any] = field(default_factory=list)
    payments: list[Any] = field(default_factory=list)


def _selector(key: str | KeySelector) -> KeySelector:
    if callable(key):
        return key

    def by_path(row: Any) -> Any:
        if isinstance(row, Mapping) and key in row:
            return row[key]
        return resolve(row, key)

    return by_path


def _normalize(value: Any) -> Any:
    """Correlation value, or None when the row cannot be attributed."""
    if value is ABSENT or value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class _Grouper:
    """Ordered slots keyed by correlation value, with an orphan counter."""

    def __init__(self, key: str | KeySelector):
        self._select = _selector(key)
        self._slots: dict[str, _Slot] = {}
        self.discarded = 0

    def slot_for(self, row: Any) -> _Slot | None:
        value = _normalize(self._select(row))
        if value is None:
            self.discarded += 1
            return None
        # Segments may disagree on type (12 vs "12") for the same receipt
        slot_key = str(value)
        if slot_key not in self._slots:
            self._slots[slot_key] = _Slot(key=value)
        return self._slots[slot_key]

    def result(self) -> GroupingResult:
        groups = tuple(
            CanonicalTransaction(
                header=slot.header,
                items=tuple(slot.items),
                payments=tuple(slot.payments),
                correlation_key=slot.key,
            )
            for slot in self._slots.values()
        )
        if self.discarded:
            logger.warning("orphan_rows_discarded", extra={"discarded": self.discarded})
        logger.debug("rows_grouped", extra={"groups": len(groups), "discarded": self.discarded})
        return GroupingResult(groups=groups, discarded=self.discarded)


def group(
    transactions: Iterable[Any],
    items: Iterable[Any],
    payments: Iterable[Any],
    key: str | KeySelector,
) -> GroupingResult:
    """
    Group rows by correlation value.

    A transaction row sets (or replaces) the header for its key.  Item and
    payment rows append to their key's collections, creating a header-less
    group when the key is new.  Rows with no correlation value are dropped
    and counted.

    Args:
        transactions: Header rows.
        items: Line rows.
        payments: Payment rows.
        key: Field path (e.g. ``"RECEIPT_NO"``) or a callable returning the
            correlation value for a row.
    """
    grouper = _Grouper(key)
    for row in transactions:
        slot = grouper.slot_for(row)
        if slot is not None:
            slot.header = row
    for row in items:
        slot = grouper.slot_for(row)
        if slot is not None:
            slot.items.append(row)
    for row in payments:
        slot = grouper.slot_for(row)
        if slot is not None:
            slot.payments.append(row)
    return grouper.result()


def group_flat(rows: Iterable[Any], key: str | KeySelector) -> GroupingResult:
    """
    Group denormalized rows (one row per line, header columns repeated).

    The first row of a key is the group's header; every row is also a line.
    Each row is inspected once, so an orphan row counts once.
    """
    grouper = _Grouper(key)
    for row in rows:
        slot = grouper.slot_for(row)
        if slot is None:
            continue
        if slot.header is None:
            slot.header = row
        slot.items.append(row)
    return grouper.result()
