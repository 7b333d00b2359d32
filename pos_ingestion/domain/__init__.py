"""Pure domain types for ingestion: no I/O, no ORM."""

from pos_ingestion.domain.types import (
    CanonicalTransaction,
    Configuration,
    FieldMapping,
    IngestionLogEntry,
    IngestionStatus,
    InsertionFailure,
    InsertionOutcome,
    SourceKind,
    TableName,
)

__all__ = [
    "CanonicalTransaction",
    "Configuration",
    "FieldMapping",
    "IngestionLogEntry",
    "IngestionStatus",
    "InsertionFailure",
    "InsertionOutcome",
    "SourceKind",
    "TableName",
]
