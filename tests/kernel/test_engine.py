"""Tests for engine construction and the transactional scope."""

import pytest
from sqlalchemy import func, select

from pos_kernel.db.engine import session_scope

from pos_ingestion.models.config import PosVendorModel


class TestSessionScope:
    def test_commit_on_success(self, session_factory):
        with session_scope(session_factory) as session:
            session.add(PosVendorModel(vendor_name="Alpha"))

        with session_scope(session_factory) as session:
            assert session.scalar(select(func.count()).select_from(PosVendorModel)) == 1

    def test_rollback_on_error(self, session_factory):
        with pytest.raises(RuntimeError):
            with session_scope(session_factory) as session:
                session.add(PosVendorModel(vendor_name="Beta"))
                session.flush()
                raise RuntimeError("boom")

        with session_scope(session_factory) as session:
            assert session.scalar(select(func.count()).select_from(PosVendorModel)) == 0


class TestSavepoints:
    def test_nested_rollback_keeps_outer_work(self, session_factory):
        with session_scope(session_factory) as session:
            session.add(PosVendorModel(vendor_name="Kept"))
            savepoint = session.begin_nested()
            session.add(PosVendorModel(vendor_name="Dropped"))
            session.flush()
            savepoint.rollback()

        with session_scope(session_factory) as session:
            names = session.scalars(select(PosVendorModel.vendor_name)).all()
        assert names == ["Kept"]
