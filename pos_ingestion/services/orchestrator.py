"""
Orchestrator: one ingestion cycle over every active configuration.

Per configuration::

    IDLE -> FETCHING -> MAPPING -> INSERTING -> LOGGING_OUTCOME -> IDLE
              |
              +-- empty window -------------------------------> IDLE

A configuration that raises at any step gets a FAILED ingestion-log row and
the cycle moves on to the next configuration.  A failure to list
configurations at all is a cycle-level failure (CYCLE_FAILED, then IDLE);
``run_cycle`` reports it in the result and never raises.

Configurations are processed sequentially.  Each one gets its own batch id,
bound into the log context as the correlation id.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Mapping
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from pos_kernel.db.engine import session_scope
from pos_kernel.exceptions import UnknownSourceKindError
from pos_kernel.logging_config import LogContext, get_logger
from pos_kernel.runtime import RuntimeContext

from pos_ingestion.domain.types import (
    Configuration,
    IngestionStatus,
    InsertionOutcome,
    SourceKind,
)
from pos_ingestion.fetchers import Fetcher, default_fetchers
from pos_ingestion.fetchers.base import FlatRows, SegmentedPayload, is_empty_payload
from pos_ingestion.mapping.correlation import group, group_flat
from pos_ingestion.mapping.engine import FieldMappingEngine, MappingResult
from pos_ingestion.repository import ConfigRepository, SqlConfigRepository, max_transaction_date
from pos_ingestion.services.ingestion_log import add_log_entry, build_log_entry, write_log_entry
from pos_ingestion.services.inserter import Inserter

logger = get_logger("ingestion.orchestrator")

DEFAULT_CORRELATION_KEY = "RECEIPT_NO"

RepositoryFactory = Callable[[Session], ConfigRepository]


class OrchestratorState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    MAPPING = "mapping"
    INSERTING = "inserting"
    LOGGING_OUTCOME = "logging_outcome"
    CYCLE_FAILED = "cycle_failed"


@dataclass(frozen=True)
class ConfigOutcome:
    """What happened to one configuration in one cycle.

    ``status`` is None when the fetch window was empty and nothing was logged.
    """

    config_id: UUID
    batch_id: UUID
    status: IngestionStatus | None
    mapped: int = 0
    inserted: int = 0
    skipped: int = 0
    errored: int = 0
    mapping_failures: int = 0
    discarded: int = 0
    error_code: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one pass over the active configurations."""

    cycle_id: UUID
    started_at: datetime
    finished_at: datetime
    outcomes: tuple[ConfigOutcome, ...] = ()
    failed: bool = False
    error: str | None = None
    stopped: bool = False

    @property
    def succeeded_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status is IngestionStatus.SUCCESS)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.status is IngestionStatus.FAILED)


def map_payload(
    engine: FieldMappingEngine,
    config: Configuration,
    payload: Any,
) -> tuple[MappingResult, int]:
    """
    Map any fetcher payload shape; returns the mapping result and the number
    of rows the correlator discarded.
    """
    if isinstance(payload, SegmentedPayload):
        key = config.option("correlation_key") or DEFAULT_CORRELATION_KEY
        grouped = group(payload.transactions, payload.items, payload.payments, key)
        return engine.map_groups(grouped.groups), grouped.discarded
    if isinstance(payload, FlatRows):
        # One row per line: the header and the line live on the same row
        grouped = group_flat(payload.rows, engine.correlation_value)
        return engine.map_groups(grouped.groups, payments_from_header=True), grouped.discarded
    return engine.map_transactions(payload), 0


class IngestionOrchestrator:
    """Runs fetch -> map -> insert -> log for each active configuration."""

    def __init__(
        self,
        runtime: RuntimeContext,
        fetchers: Mapping[SourceKind | str, Fetcher] | None = None,
        repository_factory: RepositoryFactory | None = None,
        id_factory: Callable[[], UUID] = uuid4,
    ):
        self._runtime = runtime
        if fetchers is not None:
            self._fetchers = dict(fetchers)
        else:
            self._fetchers = default_fetchers(
                runtime.request_timeout_seconds,
                clock=runtime.clock,
                tz=runtime.timezone,
            )
            # Vendor engines and the HTTP session live as long as the runtime
            for fetcher in self._fetchers.values():
                runtime.on_dispose(fetcher.dispose)
        self._repository_factory = repository_factory or SqlConfigRepository
        self._new_id = id_factory
        self._state = OrchestratorState.IDLE
        self._state_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        with self._state_lock:
            return self._state

    def _transition(self, state: OrchestratorState) -> None:
        with self._state_lock:
            previous, self._state = self._state, state
        if previous is not state:
            logger.debug(
                "orchestrator_state_changed",
                extra={"from_state": previous.value, "to_state": state.value},
            )

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    def run_cycle(self, stop_event: threading.Event | None = None) -> CycleResult:
        """Process every active configuration once."""
        cycle_id = self._new_id()
        started_at = self._runtime.clock.now_utc()
        logger.info("cycle_started", extra={"cycle_id": str(cycle_id)})

        try:
            with session_scope(self._runtime.session_factory) as session:
                configs = self._repository_factory(session).active_configurations()
        except Exception as exc:
            self._transition(OrchestratorState.CYCLE_FAILED)
            logger.exception("cycle_failed", extra={"cycle_id": str(cycle_id)})
            self._transition(OrchestratorState.IDLE)
            return CycleResult(
                cycle_id=cycle_id,
                started_at=started_at,
                finished_at=self._runtime.clock.now_utc(),
                failed=True,
                error=str(exc),
            )

        outcomes: list[ConfigOutcome] = []
        stopped = False
        for config in configs:
            if stop_event is not None and stop_event.is_set():
                stopped = True
                logger.info("cycle_stopped", extra={"remaining": len(configs) - len(outcomes)})
                break
            outcomes.append(self.process_config(config))

        result = CycleResult(
            cycle_id=cycle_id,
            started_at=started_at,
            finished_at=self._runtime.clock.now_utc(),
            outcomes=tuple(outcomes),
            stopped=stopped,
        )
        logger.info(
            "cycle_completed",
            extra={
                "cycle_id": str(cycle_id),
                "configurations": len(configs),
                "succeeded": result.succeeded_count,
                "failed": result.failed_count,
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def process_config(self, config: Configuration) -> ConfigOutcome:
        """Run one configuration end to end; never raises."""
        batch_id = self._new_id()
        kind = getattr(config.source_kind, "value", config.source_kind)
        with LogContext.bind(
            correlation_id=batch_id,
            batch_id=batch_id,
            config_id=config.config_id,
            vendor_name=config.source_system,
            source_kind=kind,
        ):
            started = self._now()
            logger.info(
                "config_processing_started",
                extra={"outlet_code": config.outlet_code, "vendor_name": config.vendor_name},
            )
            try:
                return self._run(config, batch_id, started)
            except Exception as exc:
                return self._fail(config, batch_id, started, exc)
            finally:
                self._transition(OrchestratorState.IDLE)

    def fetcher_for(self, config: Configuration) -> Fetcher:
        fetcher = self._fetchers.get(config.source_kind)
        if fetcher is None:
            raise UnknownSourceKindError(str(config.source_kind), str(config.config_id))
        return fetcher

    def since_date(self, session: Session, config: Configuration) -> date:
        """Latest stored transaction date, else yesterday in the integration zone."""
        latest = max_transaction_date(session, config)
        if latest is not None:
            return latest
        return self._now().date() - timedelta(days=1)

    def _run(self, config: Configuration, batch_id: UUID, started: datetime) -> ConfigOutcome:
        self._transition(OrchestratorState.FETCHING)
        fetcher = self.fetcher_for(config)
        with session_scope(self._runtime.session_factory) as session:
            mappings = self._repository_factory(session).field_mappings(config)
            since = self.since_date(session, config)

        payload = fetcher.fetch(config, since)
        if is_empty_payload(payload):
            logger.info("fetch_empty", extra={"since": since.isoformat()})
            return ConfigOutcome(config_id=config.config_id, batch_id=batch_id, status=None)

        self._transition(OrchestratorState.MAPPING)
        engine = FieldMappingEngine(
            config,
            mappings,
            tz=self._runtime.timezone,
            clock=self._runtime.clock,
            batch_id=batch_id,
        )
        mapping, discarded = map_payload(engine, config, payload)

        self._transition(OrchestratorState.INSERTING)
        # Rows and their SUCCESS log entry commit together or not at all
        with session_scope(self._runtime.session_factory) as session:
            insertion = Inserter(session, config, self._runtime.timezone).insert_batch(
                mapping.transactions
            )
            self._transition(OrchestratorState.LOGGING_OUTCOME)
            add_log_entry(
                session,
                build_log_entry(
                    config,
                    batch_id,
                    IngestionStatus.SUCCESS,
                    first_received_at=started,
                    last_received_at=self._now(),
                    records_count=insertion.inserted,
                    errors_count=insertion.errored + mapping.failed,
                    skipped_count=insertion.skipped,
                    meta=self._success_meta(config, batch_id, since, mapping, discarded, insertion),
                ),
            )
        logger.info(
            "config_processing_completed",
            extra={
                "inserted": insertion.inserted,
                "skipped": insertion.skipped,
                "errored": insertion.errored,
                "mapping_failures": mapping.failed,
            },
        )
        return ConfigOutcome(
            config_id=config.config_id,
            batch_id=batch_id,
            status=IngestionStatus.SUCCESS,
            mapped=len(mapping.transactions),
            inserted=insertion.inserted,
            skipped=insertion.skipped,
            errored=insertion.errored,
            mapping_failures=mapping.failed,
            discarded=discarded,
        )

    def _fail(
        self,
        config: Configuration,
        batch_id: UUID,
        started: datetime,
        exc: Exception,
    ) -> ConfigOutcome:
        error_code = getattr(exc, "code", type(exc).__name__)
        logger.exception("config_processing_failed", extra={"error_code": error_code})
        self._transition(OrchestratorState.LOGGING_OUTCOME)
        try:
            write_log_entry(
                self._runtime.session_factory,
                build_log_entry(
                    config,
                    batch_id,
                    IngestionStatus.FAILED,
                    first_received_at=started,
                    last_received_at=self._now(),
                    records_count=0,
                    errors_count=1,
                    meta={
                        "batch_id": batch_id,
                        "config_id": config.config_id,
                        "error": str(exc),
                        "error_code": error_code,
                        "error_type": type(exc).__name__,
                    },
                ),
            )
        except Exception:
            logger.exception("ingestion_log_write_failed", extra={"status": IngestionStatus.FAILED.value})
        return ConfigOutcome(
            config_id=config.config_id,
            batch_id=batch_id,
            status=IngestionStatus.FAILED,
            error_code=error_code,
            error=str(exc),
        )

    @staticmethod
    def _success_meta(
        config: Configuration,
        batch_id: UUID,
        since: date,
        mapping: MappingResult,
        discarded: int,
        insertion: InsertionOutcome,
    ) -> dict[str, Any]:
        return {
            "batch_id": batch_id,
            "config_id": config.config_id,
            "since": since,
            "mapped_count": len(mapping.transactions),
            "mapping_failures": [
                {"index": f.index, "error_code": f.error_code, "message": f.message}
                for f in mapping.failures
            ],
            "discarded_rows": discarded,
            "insert_failures": [
                {"invoice_no": f.invoice_no, "error_code": f.error_code, "message": f.message}
                for f in insertion.failures
            ],
        }

    def _now(self) -> datetime:
        return self._runtime.clock.now_in(self._runtime.timezone)
