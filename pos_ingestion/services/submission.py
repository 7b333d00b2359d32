"""
Batch submission: rows pushed by a client instead of pulled by a fetcher.

A submitted batch is a list of flat rows (one per line, header columns
repeated) for a known configuration.  It runs through the same correlator,
mapping engine and inserter as a db-source cycle, in its own transaction,
and is recorded in the ingestion log like any other run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping
from uuid import UUID, uuid4

from pos_kernel.db.engine import session_scope
from pos_kernel.exceptions import ConfigurationNotFoundError
from pos_kernel.logging_config import LogContext, get_logger
from pos_kernel.runtime import RuntimeContext

from pos_ingestion.domain.types import IngestionStatus
from pos_ingestion.fetchers.base import FlatRows
from pos_ingestion.mapping.engine import FieldMappingEngine
from pos_ingestion.repository import SqlConfigRepository
from pos_ingestion.services.ingestion_log import add_log_entry, build_log_entry
from pos_ingestion.services.inserter import Inserter
from pos_ingestion.services.orchestrator import RepositoryFactory, map_payload

logger = get_logger("ingestion.submission")


@dataclass(frozen=True)
class SubmissionResult:
    batch_id: UUID
    records_processed: int
    inserted: int
    skipped: int
    errored: int
    mapping_failures: int = 0
    discarded: int = 0

    @property
    def success(self) -> bool:
        return self.errored == 0 and self.mapping_failures == 0


class BatchSubmissionService:
    """Processes one submitted batch synchronously."""

    def __init__(
        self,
        runtime: RuntimeContext,
        repository_factory: RepositoryFactory | None = None,
        id_factory: Callable[[], UUID] = uuid4,
    ):
        self._runtime = runtime
        self._repository_factory = repository_factory or SqlConfigRepository
        self._new_id = id_factory

    def process(
        self,
        config_id: UUID,
        rows: Iterable[Mapping[str, Any]],
        metadata: Mapping[str, Any] | None = None,
    ) -> SubmissionResult:
        """
        Map and insert ``rows`` for ``config_id``.

        Raises:
            ConfigurationNotFoundError: unknown configuration id.
            OperationalError: the batch transaction failed; nothing committed.
        """
        batch_id = self._new_id()
        rows = tuple(rows)
        with LogContext.bind(
            correlation_id=batch_id,
            batch_id=batch_id,
            config_id=config_id,
            source_kind="submission",
        ):
            started = self._runtime.clock.now_in(self._runtime.timezone)
            logger.info(
                "submission_started",
                extra={"rows": len(rows), "metadata": dict(metadata or {})},
            )

            with session_scope(self._runtime.session_factory) as session:
                repository = self._repository_factory(session)
                config = repository.get_configuration(config_id)
                if config is None:
                    raise ConfigurationNotFoundError(str(config_id))
                mappings = repository.field_mappings(config)

            engine = FieldMappingEngine(
                config,
                mappings,
                tz=self._runtime.timezone,
                clock=self._runtime.clock,
                batch_id=batch_id,
            )
            mapping, discarded = map_payload(engine, config, FlatRows(rows=rows))

            with session_scope(self._runtime.session_factory) as session:
                insertion = Inserter(session, config, self._runtime.timezone).insert_batch(
                    mapping.transactions
                )
                add_log_entry(
                    session,
                    build_log_entry(
                        config,
                        batch_id,
                        IngestionStatus.SUCCESS,
                        first_received_at=started,
                        last_received_at=self._runtime.clock.now_in(self._runtime.timezone),
                        records_count=insertion.inserted,
                        errors_count=insertion.errored + mapping.failed,
                        skipped_count=insertion.skipped,
                        meta={
                            "batch_id": batch_id,
                            "config_id": config_id,
                            "submitted": dict(metadata or {}),
                            "discarded_rows": discarded,
                            "mapping_failures": mapping.failed,
                        },
                    ),
                )

            result = SubmissionResult(
                batch_id=batch_id,
                records_processed=len(mapping.transactions),
                inserted=insertion.inserted,
                skipped=insertion.skipped,
                errored=insertion.errored,
                mapping_failures=mapping.failed,
                discarded=discarded,
            )
            logger.info(
                "submission_completed",
                extra={
                    "inserted": result.inserted,
                    "skipped": result.skipped,
                    "errored": result.errored,
                },
            )
            return result
