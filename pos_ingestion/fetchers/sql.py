"""
SqlFetcher: query a vendor's own database (source kind db).

Configuration options:
    db_url    SQLAlchemy URL of the vendor database (driver must be installed)
    query     SQL text with ``:from_date`` / ``:to_date`` binds; defaults to
              DEFAULT_QUERY over a ``transactions`` view

One engine is kept per vendor URL until ``dispose``.  Every query is bounded
by the configuration's ``timeout_seconds`` (else the fetcher default): as a
connect timeout on the driver and, where the dialect supports one, as a
per-session statement timeout.
"""

from __future__ import annotations

import math
from datetime import date, tzinfo
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from pos_kernel.db.engine import build_engine
from pos_kernel.domain.clock import Clock, SystemClock
from pos_kernel.exceptions import FetchError, FetchTimeoutError
from pos_kernel.logging_config import get_logger

from pos_ingestion.domain.types import Configuration
from pos_ingestion.fetchers.base import FlatRows
from pos_ingestion.fetchers.http import DEFAULT_TIMEOUT_SECONDS
from pos_ingestion.mapping.transforms import DEFAULT_TZ

logger = get_logger("ingestion.fetchers")

DEFAULT_QUERY = (
    "SELECT * FROM transactions "
    "WHERE CAST(transaction_date AS DATE) >= :from_date "
    "AND CAST(transaction_date AS DATE) <= :to_date "
    "ORDER BY transaction_time"
)


def connect_args_for(url: str, timeout: float) -> dict[str, Any]:
    """Driver connect arguments bounding connection setup by ``timeout``."""
    backend = make_url(url).get_backend_name()
    seconds = max(1, math.ceil(timeout))
    if backend == "postgresql":
        return {"connect_timeout": seconds}
    if backend in ("mysql", "mariadb"):
        return {"connect_timeout": seconds, "read_timeout": seconds}
    if backend == "mssql":
        return {"timeout": seconds}
    if backend == "sqlite":
        return {"timeout": float(timeout)}
    return {}


def apply_statement_timeout(conn: Connection, timeout: float) -> None:
    """Bound statements on ``conn`` by ``timeout`` where the dialect allows it."""
    millis = max(1, int(timeout * 1000))
    dialect = conn.dialect.name
    if dialect == "postgresql":
        conn.exec_driver_sql(f"SET statement_timeout = {millis}")
    elif dialect in ("mysql", "mariadb"):
        conn.exec_driver_sql(f"SET SESSION MAX_EXECUTION_TIME = {millis}")


class SqlFetcher:
    """Runs the configured query for the window and returns its rows."""

    source_kind = "db"

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Clock | None = None,
        tz: tzinfo | None = None,
    ):
        self._timeout = timeout
        self._clock = clock or SystemClock()
        self._tz = tz or DEFAULT_TZ
        self._engines: dict[str, Engine] = {}

    def timeout_for(self, config: Configuration) -> float:
        return float(config.timeout_seconds or self._timeout)

    def engine_for(self, config: Configuration) -> Engine:
        url = config.option("db_url")
        if not url:
            raise FetchError(
                f"No db_url configured for config {config.config_id}",
                source_kind=self.source_kind,
            )
        if url not in self._engines:
            self._engines[url] = build_engine(
                url,
                pool_size=1,
                max_overflow=1,
                pool_timeout=max(1, math.ceil(self.timeout_for(config))),
                connect_args=connect_args_for(url, self.timeout_for(config)),
            )
        return self._engines[url]

    def fetch(self, config: Configuration, since: date) -> FlatRows:
        engine = self.engine_for(config)
        query = config.option("query") or DEFAULT_QUERY
        to_date = self._clock.now_in(self._tz).date()
        timeout = self.timeout_for(config)
        try:
            with engine.connect() as conn:
                apply_statement_timeout(conn, timeout)
                result = conn.execute(text(query), {"from_date": since, "to_date": to_date})
                rows = tuple(dict(row) for row in result.mappings())
        except OperationalError as exc:
            if "timeout" in str(exc).lower() or "timed out" in str(exc).lower():
                raise FetchTimeoutError(
                    f"Vendor database query exceeded {timeout}s: {exc.orig}",
                    source_kind=self.source_kind,
                ) from exc
            raise FetchError(
                f"Vendor database query failed: {exc}",
                source_kind=self.source_kind,
            ) from exc
        except SQLAlchemyError as exc:
            raise FetchError(
                f"Vendor database query failed: {exc}",
                source_kind=self.source_kind,
            ) from exc

        logger.info(
            "vendor_rows_fetched",
            extra={
                "source_kind": self.source_kind,
                "since": since.isoformat(),
                "rows": len(rows),
                "timeout_seconds": timeout,
            },
        )
        return FlatRows(rows=rows)

    def dispose(self) -> None:
        """Close every cached vendor engine."""
        for engine in self._engines.values():
            engine.dispose()
            logger.debug("vendor_engine_disposed", extra={"dialect": engine.dialect.name})
        self._engines.clear()
