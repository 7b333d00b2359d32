"""
Pytest fixtures for the POS ingestion test suite.

Provides:
- Structured logging configured once per session, plus a captured_logs
  fixture that returns the emitted JSON lines as dicts
- In-memory SQLite engine with every table created (SAVEPOINT recipe on)
- RuntimeContext with a deterministic, naive clock
- A seed_config fixture inserting vendor, config, outlet and mapping rows
"""

import json
import logging
from datetime import datetime
from io import StringIO
from typing import Any

import pytest
from sqlalchemy import select

from pos_kernel.db.engine import build_engine, build_session_factory, create_tables, session_scope
from pos_kernel.domain.clock import DeterministicClock
from pos_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from pos_kernel.runtime import RuntimeContext

from pos_ingestion.domain.types import FieldMapping
from pos_ingestion.models.config import (
    CustomerApiConfigModel,
    CustomerOutletMappingModel,
    PosVendorModel,
    VendorFieldMappingModel,
)

# Naive so values round-trip through SQLite unchanged
FIXED_NOW = datetime(2025, 12, 11, 14, 30, 0)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture pos_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            logs = captured_logs()
            assert any(r["message"] == "orphan_rows_discarded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("pos_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def engine():
    eng = build_engine("sqlite://")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def session(session_factory):
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def runtime(engine, clock):
    return RuntimeContext.from_engine(engine, clock=clock)


# =============================================================================
# Configuration builders
# =============================================================================


@pytest.fixture
def seed_config(session_factory):
    """
    Insert vendor, API config, outlet mapping and field mappings.

    Returns a function ``(mappings, **config_columns) -> config_id``.
    """

    def _seed(
        mappings: list[FieldMapping] = (),
        vendor_name: str = "AcmePOS",
        source_kind: str = "api",
        outlet_code: str = "OUT-7",
        with_outlet: bool = True,
        is_active: bool = True,
        **columns: Any,
    ):
        with session_scope(session_factory) as session:
            vendor = session.execute(
                select(PosVendorModel).where(PosVendorModel.vendor_name == vendor_name)
            ).scalar_one_or_none()
            if vendor is None:
                vendor = PosVendorModel(vendor_name=vendor_name)
                session.add(vendor)
                session.flush()
                for order, rule in enumerate(mappings):
                    session.add(
                        VendorFieldMappingModel(
                            vendor_id=vendor.id,
                            tablename=rule.table.value,
                            target_field=rule.target_field,
                            source_path=rule.source_path,
                            transform_rule=rule.transform,
                            is_required=rule.required,
                            row_root_path=rule.row_root,
                            sort_order=order,
                        )
                    )
            api_config = CustomerApiConfigModel(
                customer_id="CUST001",
                vendor_id=vendor.id,
                outlet_code=outlet_code,
                source_kind=source_kind,
                api_url=columns.pop("api_url", "https://pos.example.test/transactions"),
                is_active=is_active,
                **columns,
            )
            session.add(api_config)
            if with_outlet:
                session.add(
                    CustomerOutletMappingModel(
                        customer_id="CUST001",
                        outlet_code=outlet_code,
                        outlet_id=f"OUTLET-{outlet_code}",
                        outlet_name="Main Street",
                        brand_id="BRAND-1",
                        brand_name="Brand One",
                        terminal="T1",
                        gate="G1",
                    )
                )
            session.flush()
            return api_config.id

    return _seed
