"""
Portable column types.

``UUIDString`` stores UUIDs as 36-character strings.  ``StringArray`` and
``NumericArray`` are native ARRAY columns on PostgreSQL (the aggregated item
row keeps one array per line attribute) and JSON lists everywhere else, so
the same models run against the in-memory SQLite engine used in tests.
"""

from decimal import Decimal
from uuid import UUID as PyUUID

from sqlalchemy import JSON, Numeric, String
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID type stored as String(36) for cross-database portability."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class _ArrayColumn(TypeDecorator):
    """ARRAY on PostgreSQL, JSON list elsewhere."""

    impl = JSON
    cache_ok = True

    item_type = String()

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(ARRAY(self.item_type))
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == "postgresql":
            return value
        return [self._to_json(v) for v in value]

    def process_result_value(self, value, dialect):
        if value is None or dialect.name == "postgresql":
            return value
        return [self._from_json(v) for v in value]

    def _to_json(self, value):
        return value

    def _from_json(self, value):
        return value


class StringArray(_ArrayColumn):
    """Array of strings (sku, item names, HSN codes)."""

    cache_ok = True
    item_type = String()

    def _to_json(self, value):
        return None if value is None else str(value)


class NumericArray(_ArrayColumn):
    """Array of decimals (quantities, prices, tax amounts).

    JSON has no decimal type, so values travel as strings on non-PostgreSQL
    backends and come back as ``Decimal``.
    """

    cache_ok = True
    item_type = Numeric(18, 4)

    def _to_json(self, value):
        return None if value is None else str(value)

    def _from_json(self, value):
        return None if value is None else Decimal(value)
