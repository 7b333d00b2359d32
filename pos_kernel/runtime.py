"""
RuntimeContext -- explicit process-wide dependencies.

Built once at process start and passed by reference into the orchestrator,
inserter, mapping engine and scheduler.  Nothing in the pipeline reaches for
an ambient engine, logger registry or wall clock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable
from zoneinfo import ZoneInfo

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from pos_kernel.db.engine import build_engine, build_session_factory
from pos_kernel.domain.clock import Clock, SystemClock
from pos_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from pos_config.settings import Settings

DEFAULT_TIMEZONE = "Asia/Kolkata"


@dataclass(frozen=True)
class RuntimeContext:
    """Session factory, clock, logger factory and integration time zone."""

    engine: Engine
    session_factory: sessionmaker[Session]
    clock: Clock = field(default_factory=SystemClock)
    timezone: ZoneInfo = field(default_factory=lambda: ZoneInfo(DEFAULT_TIMEZONE))
    request_timeout_seconds: float = 30.0
    logger_factory: Callable[[str], logging.Logger] = get_logger
    _on_dispose: list[Callable[[], None]] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def from_engine(
        cls,
        engine: Engine,
        clock: Clock | None = None,
        timezone: str = DEFAULT_TIMEZONE,
        request_timeout_seconds: float = 30.0,
    ) -> RuntimeContext:
        return cls(
            engine=engine,
            session_factory=build_session_factory(engine),
            clock=clock or SystemClock(),
            timezone=ZoneInfo(timezone),
            request_timeout_seconds=request_timeout_seconds,
        )

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock | None = None) -> RuntimeContext:
        """Build the engine described by ``settings`` and wrap it."""
        engine = build_engine(
            settings.database_url,
            echo=settings.echo_sql,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
        )
        return cls.from_engine(
            engine,
            clock=clock,
            timezone=settings.timezone,
            request_timeout_seconds=settings.request_timeout_seconds,
        )

    def get_logger(self, name: str) -> logging.Logger:
        return self.logger_factory(name)

    def on_dispose(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` when the context is disposed (vendor engines, HTTP sessions)."""
        self._on_dispose.append(callback)

    def dispose(self) -> None:
        """Release pooled connections, registered resources first."""
        while self._on_dispose:
            callback = self._on_dispose.pop()
            try:
                callback()
            except Exception:
                get_logger("runtime").exception("dispose_callback_failed")
        self.engine.dispose()
