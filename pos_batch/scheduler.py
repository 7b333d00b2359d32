"""
IngestionScheduler -- in-process interval scheduler for ingestion cycles.

Contract:
    ``tick()`` runs one cycle unless one is already running (the overlapping
    call returns None).  ``start()`` runs ticks on a background thread every
    ``interval_seconds``, optionally once immediately.  ``stop()`` sets the
    stop event; the orchestrator checks it between configurations, so the
    configuration in flight finishes its transaction before the thread exits.

Architecture: pos_batch.  Drives pos_ingestion.services.orchestrator.
"""

from __future__ import annotations

import threading
from typing import Protocol

from pos_kernel.logging_config import get_logger

from pos_ingestion.services.orchestrator import CycleResult

logger = get_logger("batch.scheduler")

DEFAULT_INTERVAL_SECONDS = 300


class CycleRunner(Protocol):
    def run_cycle(self, stop_event: threading.Event | None = None) -> CycleResult:
        ...


class IngestionScheduler:
    """Fixed-interval, non-overlapping cycle scheduler."""

    def __init__(
        self,
        orchestrator: CycleRunner,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        run_on_start: bool = True,
    ):
        self._orchestrator = orchestrator
        self._interval = interval_seconds
        self._run_on_start = run_on_start
        self._stop_event = threading.Event()
        self._cycle_lock = threading.Lock()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> CycleResult | None:
        """Run one cycle now (public for testing).

        Returns None when a cycle is already in progress.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("cycle_skipped_overlap")
            return None
        try:
            return self._orchestrator.run_cycle(self._stop_event)
        finally:
            self._cycle_lock.release()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="ingestion-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "scheduler_started",
            extra={"interval_seconds": self._interval, "run_on_start": self._run_on_start},
        )

    def stop(self, timeout: float = 60.0) -> None:
        """Signal stop and wait for the in-flight cycle to wind down.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    def request_stop(self) -> None:
        """Set the stop event without waiting (safe from signal handlers)."""
        self._stop_event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until stop is requested; True once it has been."""
        return self._stop_event.wait(timeout)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        if not self._run_on_start:
            self._stop_event.wait(timeout=self._interval)
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._interval)
