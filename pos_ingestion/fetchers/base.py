"""
Fetcher protocol, payload shapes and request templating.

Contract:
    Fetcher.fetch(config, since) returns one of three payload shapes:
      - a nested tree (Mapping/Sequence/scalars) for api and xml sources,
      - SegmentedPayload (transaction, item and payment row lists) for
        soap and multiapi sources,
      - FlatRows (one denormalized row per line) for db sources.
    Failures raise FetchError subclasses; an empty window is not an error.

Architecture: pos_ingestion/fetchers. Network and vendor-database I/O only;
no canonical-table access.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo
from typing import Any, Protocol, runtime_checkable

from pos_ingestion.domain.types import Configuration

PLACEHOLDER = re.compile(r"{{(.*?)}}")

DEFAULT_DATE_FORMAT = "YYYY-MM-DD"

_MONTHS = ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC")


@dataclass(frozen=True)
class SegmentedPayload:
    """Three row sets that share a correlation key."""

    transactions: tuple[Any, ...] = ()
    items: tuple[Any, ...] = ()
    payments: tuple[Any, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.transactions or self.items or self.payments)


@dataclass(frozen=True)
class FlatRows:
    """Denormalized rows from a vendor database (one row per line)."""

    rows: tuple[Mapping[str, Any], ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.rows


@runtime_checkable
class Fetcher(Protocol):
    """Retrieves raw vendor data for one configuration and window."""

    def fetch(self, config: Configuration, since: date) -> Any:
        """Return the payload for [since, today]."""
        ...


def is_empty_payload(payload: Any) -> bool:
    """True when a fetch produced nothing worth mapping."""
    if payload is None:
        return True
    if isinstance(payload, (SegmentedPayload, FlatRows)):
        return payload.is_empty
    if isinstance(payload, (str, bytes)):
        return not payload.strip()
    if isinstance(payload, (Mapping, Sequence)):
        return len(payload) == 0
    return False


def as_rows(value: Any) -> tuple[Any, ...]:
    """Normalize a segment (missing, single row or list) to a row tuple."""
    if value is None:
        return ()
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return tuple(v for v in value if v is not None)
    return (value,)


def format_date(value: date, fmt: str | None) -> str:
    """
    Render a date in a vendor date format.

    Supported: ``DD-MMM-YY`` (10-DEC-25), ``DD/MM/YYYY``, ``YYYY-DD-MM`` and
    ``YYYY-MM-DD`` (the default for anything else).
    """
    dd = f"{value.day:02d}"
    mm = f"{value.month:02d}"
    yyyy = f"{value.year:04d}"
    fmt = (fmt or DEFAULT_DATE_FORMAT).strip().upper()
    if fmt == "DD-MMM-YY":
        return f"{dd}-{_MONTHS[value.month - 1]}-{yyyy[-2:]}"
    if fmt == "DD/MM/YYYY":
        return f"{dd}/{mm}/{yyyy}"
    if fmt == "YYYY-DD-MM":
        return f"{yyyy}-{dd}-{mm}"
    return f"{yyyy}-{mm}-{dd}"


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def build_placeholder_context(
    config: Configuration,
    since: date,
    now: datetime,
    tz: tzinfo,
) -> dict[str, Any]:
    """Values substituted for ``{{NAME}}`` in request templates."""
    today = now.date()
    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    return {
        "FROM_DATE": format_date(since, config.date_format),
        "TO_DATE": format_date(today, config.date_format),
        "TRANS_DATE": format_date(today, config.date_format),
        "LOCATION_CODE": config.outlet_code,
        "FROM_EPOCH": epoch_millis(datetime.combine(since, time.min, tzinfo=tz)),
        "TO_EPOCH": epoch_millis(now),
    }


def render_placeholders(template: Any, context: Mapping[str, Any]) -> Any:
    """
    Substitute ``{{NAME}}`` tokens in every string of a template tree.

    Unknown names render as the empty string.  Dicts and lists are copied,
    never mutated; non-string scalars pass through.
    """
    if isinstance(template, str):
        return PLACEHOLDER.sub(lambda m: _placeholder_text(context.get(m.group(1).strip())), template)
    if isinstance(template, Mapping):
        return {key: render_placeholders(value, context) for key, value in template.items()}
    if isinstance(template, list):
        return [render_placeholders(value, context) for value in template]
    return template


def _placeholder_text(value: Any) -> str:
    return "" if value is None else str(value)
