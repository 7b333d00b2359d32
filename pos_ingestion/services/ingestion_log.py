"""
Ingestion-log writer: one append-only row per configuration run.

A SUCCESS entry is added inside the batch transaction, so it commits or
rolls back together with the rows it counts.  A FAILED entry is written in
its own transaction, after the batch transaction has rolled back, so it
survives the rollback of the work it describes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from pos_kernel.db.engine import session_scope
from pos_kernel.logging_config import get_logger

from pos_ingestion.domain.types import Configuration, IngestionLogEntry, IngestionStatus
from pos_ingestion.models.canonical import IngestionLogModel

logger = get_logger("ingestion.ingestion_log")


def build_log_entry(
    config: Configuration,
    batch_id: UUID,
    status: IngestionStatus,
    first_received_at: datetime,
    last_received_at: datetime,
    records_count: int = 0,
    errors_count: int = 0,
    skipped_count: int = 0,
    meta: Mapping[str, Any] | None = None,
) -> IngestionLogEntry:
    return IngestionLogEntry(
        agent_id=config.config_id,
        batch_id=batch_id,
        source_system=config.source_system,
        outlet_id=config.outlet_id,
        outlet_name=config.outlet_name or config.outlet_code,
        brand_id=config.brand_id,
        brand_name=config.brand_name,
        terminal=config.terminal,
        gate=config.gate,
        status=status,
        records_count=records_count,
        errors_count=errors_count,
        skipped_count=skipped_count,
        first_received_at=first_received_at,
        last_received_at=last_received_at,
        meta=dict(meta or {}),
    )


def add_log_entry(session: Session, entry: IngestionLogEntry) -> None:
    """Stage ``entry`` in the caller's transaction."""
    session.add(IngestionLogModel.from_dto(entry))
    session.flush()
    logger.info(
        "ingestion_logged",
        extra={
            "status": entry.status.value,
            "records_count": entry.records_count,
            "errors_count": entry.errors_count,
            "skipped_count": entry.skipped_count,
        },
    )


def write_log_entry(session_factory: sessionmaker[Session], entry: IngestionLogEntry) -> None:
    """Persist ``entry`` in a fresh transaction."""
    with session_scope(session_factory) as session:
        add_log_entry(session, entry)
