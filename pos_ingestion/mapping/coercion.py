"""
Coercion of canonical values to column types. Pure functions.

Vendors hand over amounts as strings, invoice numbers as integers and
timestamps as text in a handful of shapes.  The inserter runs every
canonical value through these helpers before building ORM rows; a value
that cannot be coerced raises ``InvalidCanonicalValueError`` and fails that
one transaction only.
"""

from __future__ import annotations

from datetime import date, datetime, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from pos_kernel.exceptions import InvalidCanonicalValueError


def to_text(table: str, field: str, value: Any, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, Decimal) and value == value.to_integral_value():
        value = value.quantize(Decimal(1))
    text = str(value).strip()
    if max_length is not None and len(text) > max_length:
        raise InvalidCanonicalValueError(table, field, value, f"text of at most {max_length} characters")
    return text


def to_decimal(table: str, field: str, value: Any, default: Decimal | None = None) -> Decimal | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise InvalidCanonicalValueError(table, field, value, "decimal")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip().replace(",", ""))
        except InvalidOperation as exc:
            raise InvalidCanonicalValueError(table, field, value, "decimal") from exc
    if not result.is_finite():
        raise InvalidCanonicalValueError(table, field, value, "finite decimal")
    return result


def to_datetime(table: str, field: str, value: Any, tz: tzinfo) -> datetime | None:
    """Aware datetime; naive inputs are read in the integration time zone."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip().replace("Z", "+00:00")
        try:
            moment = datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidCanonicalValueError(table, field, value, "ISO-8601 timestamp") from exc
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=tz)
    return moment


def to_date(table: str, field: str, value: Any, tz: tzinfo) -> date | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, datetime):
        return value.astimezone(tz).date() if value.tzinfo else value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise InvalidCanonicalValueError(table, field, value, "ISO-8601 date") from exc


def to_uuid(table: str, field: str, value: Any) -> UUID | None:
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except ValueError as exc:
        raise InvalidCanonicalValueError(table, field, value, "UUID") from exc
