"""
Service entry points: long-running scheduler and single-cycle runs.

Startup order: logging, runtime (engine + session factory), tables, vendor
seed file, configuration validation.  The scheduler only starts when
validation passes.
SIGINT/SIGTERM request a stop; the in-flight configuration finishes and the
scheduler thread is joined before the engine is disposed.
"""

from __future__ import annotations

import signal
import threading
from typing import Any, Mapping

import yaml
from sqlalchemy.exc import SQLAlchemyError

from pos_config.settings import Settings
from pos_kernel.db.engine import create_tables
from pos_kernel.exceptions import ConfigurationError
from pos_kernel.logging_config import configure_logging, get_logger
from pos_kernel.runtime import RuntimeContext

from pos_batch.scheduler import IngestionScheduler
from pos_ingestion.domain.types import SourceKind
from pos_ingestion.fetchers import Fetcher
from pos_ingestion.repository import SqlConfigRepository
from pos_ingestion.services.orchestrator import CycleResult, IngestionOrchestrator
from pos_ingestion.services.seeder import SeedReport, VendorSeeder
from pos_ingestion.services.validator import ConfigValidator, ValidationReport

logger = get_logger("batch.runner")

EXIT_OK = 0
EXIT_INVALID_CONFIGURATION = 1


def build_orchestrator(
    settings: Settings,
    runtime: RuntimeContext,
    fetchers: Mapping[SourceKind | str, Fetcher] | None = None,
) -> IngestionOrchestrator:
    vendor_filter = settings.vendor_filter
    return IngestionOrchestrator(
        runtime,
        fetchers=fetchers,
        repository_factory=lambda session: SqlConfigRepository(session, vendor_filter),
    )


def prepare(settings: Settings, runtime: RuntimeContext) -> ValidationReport:
    """Create tables (when enabled), apply the seed file, then validate."""
    if settings.create_tables:
        create_tables(runtime.engine)
    if settings.seed_file:
        seed_vendors(settings.seed_file, runtime)
    return ConfigValidator(runtime.session_factory).validate()


def seed_vendors(path: str, runtime: RuntimeContext) -> SeedReport | None:
    """Apply a vendor seed file; a failure is logged and validation still runs."""
    try:
        return VendorSeeder(runtime.session_factory).seed_file(path)
    except (OSError, yaml.YAMLError, ConfigurationError, SQLAlchemyError):
        logger.warning("vendor_seed_skipped", extra={"path": path}, exc_info=True)
        return None


def install_signal_handlers(scheduler: IngestionScheduler) -> None:
    """Route SIGINT/SIGTERM to a scheduler stop request (main thread only)."""
    if threading.current_thread() is not threading.main_thread():
        logger.warning("signal_handlers_skipped", extra={"reason": "not main thread"})
        return

    def _handle(signum: int, frame: Any) -> None:
        logger.info("shutdown_requested", extra={"signal": signal.Signals(signum).name})
        scheduler.request_stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run_once(
    settings: Settings,
    runtime: RuntimeContext | None = None,
    fetchers: Mapping[SourceKind | str, Fetcher] | None = None,
) -> CycleResult | None:
    """One validated cycle; None when validation fails."""
    configure_logging(level=settings.log_level)
    owns_runtime = runtime is None
    runtime = runtime or RuntimeContext.from_settings(settings)
    try:
        if not prepare(settings, runtime).is_valid:
            logger.error("cycle_not_run", extra={"reason": "configuration validation failed"})
            return None
        return build_orchestrator(settings, runtime, fetchers).run_cycle()
    finally:
        if owns_runtime:
            runtime.dispose()


def run_service(
    settings: Settings,
    runtime: RuntimeContext | None = None,
    fetchers: Mapping[SourceKind | str, Fetcher] | None = None,
    install_signals: bool = True,
) -> int:
    """Run the scheduler until SIGINT/SIGTERM; returns a process exit code."""
    configure_logging(level=settings.log_level)
    owns_runtime = runtime is None
    runtime = runtime or RuntimeContext.from_settings(settings)
    try:
        report = prepare(settings, runtime)
        if not report.is_valid:
            logger.error(
                "service_not_started",
                extra={
                    "missing_tables": list(report.missing_tables),
                    "empty_tables": list(report.empty_tables),
                    "error": report.error,
                },
            )
            return EXIT_INVALID_CONFIGURATION

        scheduler = IngestionScheduler(
            build_orchestrator(settings, runtime, fetchers),
            interval_seconds=settings.sync_interval_seconds,
            run_on_start=settings.run_on_startup,
        )
        if install_signals:
            install_signal_handlers(scheduler)
        scheduler.start()
        logger.info("service_started", extra={"interval_seconds": settings.sync_interval_seconds})
        try:
            # Short waits keep the main thread responsive to signals
            while not scheduler.wait(timeout=1.0):
                pass
        finally:
            scheduler.stop()
        logger.info("service_stopped")
        return EXIT_OK
    finally:
        if owns_runtime:
            runtime.dispose()
