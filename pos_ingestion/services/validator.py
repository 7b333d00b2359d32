"""
Startup check that the configuration tables exist and are populated.

The scheduler only starts when the report is valid; an empty vendor,
config, outlet or field-mapping table means every cycle would do nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pos_kernel.db.engine import session_scope
from pos_kernel.logging_config import get_logger

from pos_ingestion.models.config import (
    CustomerApiConfigModel,
    CustomerOutletMappingModel,
    PosVendorModel,
    VendorFieldMappingModel,
)

logger = get_logger("ingestion.config_validator")

REQUIRED_TABLES = (
    PosVendorModel,
    CustomerApiConfigModel,
    CustomerOutletMappingModel,
    VendorFieldMappingModel,
)


@dataclass(frozen=True)
class ValidationReport:
    table_counts: Mapping[str, int] = field(default_factory=dict)
    missing_tables: tuple[str, ...] = ()
    empty_tables: tuple[str, ...] = ()
    active_configurations: int = 0
    error: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.error is None and not self.missing_tables and not self.empty_tables


class ConfigValidator:
    """Counts rows in each configuration table."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def validate(self) -> ValidationReport:
        try:
            with session_scope(self._session_factory) as session:
                report = self._inspect(session)
        except SQLAlchemyError as exc:
            logger.exception("config_validation_error")
            report = ValidationReport(error=str(exc))

        if report.is_valid:
            logger.info(
                "config_validation_passed",
                extra={
                    "table_counts": dict(report.table_counts),
                    "active_configurations": report.active_configurations,
                },
            )
            if report.active_configurations == 0:
                logger.warning("no_active_configurations")
        elif report.error is None:
            logger.warning(
                "config_validation_failed",
                extra={
                    "missing_tables": list(report.missing_tables),
                    "empty_tables": list(report.empty_tables),
                    "table_counts": dict(report.table_counts),
                },
            )
        return report

    @staticmethod
    def _inspect(session: Session) -> ValidationReport:
        existing = set(inspect(session.connection()).get_table_names())
        counts: dict[str, int] = {}
        missing: list[str] = []
        empty: list[str] = []
        for model in REQUIRED_TABLES:
            name = model.__tablename__
            if name not in existing:
                missing.append(name)
                continue
            counts[name] = session.execute(select(func.count()).select_from(model)).scalar_one()
            if counts[name] == 0:
                empty.append(name)

        active = 0
        if CustomerApiConfigModel.__tablename__ in existing:
            active = session.execute(
                select(func.count())
                .select_from(CustomerApiConfigModel)
                .where(CustomerApiConfigModel.is_active.is_(True))
            ).scalar_one()

        return ValidationReport(
            table_counts=counts,
            missing_tables=tuple(missing),
            empty_tables=tuple(empty),
            active_configurations=active,
        )
