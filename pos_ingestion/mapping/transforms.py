"""
Named value transforms applied after path resolution. Pure functions.

``apply_transform`` is total: a value the rule cannot handle comes back
unchanged and a ``transform_failed`` warning is logged.  Rule names are
matched case-insensitively and several aliases exist because stored mapping
rows use the vendor-facing camelCase names.  Unknown rules pass the value
through so that newer rule names in stored configuration never break older
code.
"""

from __future__ import annotations

from datetime import date, datetime, timezone, tzinfo
from decimal import Decimal
from typing import Any, Callable
from zoneinfo import ZoneInfo

from pos_kernel.logging_config import get_logger

logger = get_logger("ingestion.transforms")

DEFAULT_TZ = ZoneInfo("Asia/Kolkata")

CANONICAL_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
VENDOR_DATETIME_FORMAT = "%d/%m/%Y %I:%M:%S %p"
VENDOR_DATE_FORMAT = "%d/%m/%Y"


# -----------------------------------------------------------------------------
# Rule implementations
# -----------------------------------------------------------------------------


def _upper(value: Any, tz: tzinfo) -> Any:
    return str(value).upper()


def _lower(value: Any, tz: tzinfo) -> Any:
    return str(value).lower()


def _strip(value: Any, tz: tzinfo) -> Any:
    return value.strip() if isinstance(value, str) else value


def _to_decimal(value: Any, tz: tzinfo) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("boolean is not numeric")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    result = Decimal(str(value).strip().replace(",", ""))
    if not result.is_finite():
        raise ValueError(f"non-finite number {value!r}")
    return result


def _to_int(value: Any, tz: tzinfo) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return int(_to_decimal(value, tz))


def _epoch_datetime(value: Any, tz: tzinfo) -> datetime:
    seconds = _to_decimal(value, tz)
    return datetime.fromtimestamp(float(seconds), tz=timezone.utc).astimezone(tz)


def _epoch_to_date(value: Any, tz: tzinfo) -> str:
    return _epoch_datetime(value, tz).strftime("%Y-%m-%d")


def _epoch_to_timestamp(value: Any, tz: tzinfo) -> datetime:
    return _epoch_datetime(value, tz)


def _to_iso_string(value: Any, tz: tzinfo) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix.

    Naive inputs are read in the integration time zone; numbers are epoch
    milliseconds.
    """
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        moment = datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
    else:
        moment = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=tz)
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def _vendor_datetime(value: Any, tz: tzinfo) -> str:
    """``01/01/2026 03:08:08 PM`` -> ``2026-01-01 15:08:08``."""
    parsed = datetime.strptime(str(value).strip(), VENDOR_DATETIME_FORMAT)
    return parsed.strftime(CANONICAL_DATETIME_FORMAT)


def _vendor_date(value: Any, tz: tzinfo) -> str:
    """``31/12/2025`` -> ``2025-12-31``."""
    return datetime.strptime(str(value).strip(), VENDOR_DATE_FORMAT).strftime("%Y-%m-%d")


_RULES: dict[str, Callable[[Any, tzinfo], Any]] = {
    "touppercase": _upper,
    "upper": _upper,
    "tolowercase": _lower,
    "lower": _lower,
    "trim": _strip,
    "strip": _strip,
    "parsefloat": _to_decimal,
    "to_decimal": _to_decimal,
    "parseint": _to_int,
    "to_int": _to_int,
    "epochtodate": _epoch_to_date,
    "epochtotimestamp": _epoch_to_timestamp,
    "toisostring": _to_iso_string,
    "parsedatetime": _vendor_datetime,
    "normalizevendordatetime": _vendor_datetime,
    "parsedate": _vendor_date,
    "normalizevendordate": _vendor_date,
}


def known_rules() -> frozenset[str]:
    return frozenset(_RULES)


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def apply_transform(value: Any, rule: str | None, tz: tzinfo | None = None) -> Any:
    """Apply a named transform rule; never raises."""
    if value is None or not rule:
        return value
    name = rule.strip().lower()
    fn = _RULES.get(name)
    if fn is None:
        logger.debug("transform_rule_unknown", extra={"rule": rule})
        return value
    try:
        return fn(value, tz or DEFAULT_TZ)
    except (ValueError, TypeError, ArithmeticError, OverflowError, OSError) as exc:
        logger.warning(
            "transform_failed",
            extra={"rule": rule, "value": repr(value), "error": str(exc)},
        )
        return value
