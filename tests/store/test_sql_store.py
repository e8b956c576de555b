"""
Tests for SqlLedgerStore error translation and engine wiring.

Uses in-memory SQLite with real ORM models; driver failures are injected
by patching ``Session.commit``.
"""

from datetime import datetime, timezone
from uuid import UUID

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from financing_kernel.db.base import UTCDateTime
from financing_kernel.db.engine import get_engine, is_postgres, session_scope
from financing_kernel.domain.types import PoolState
from financing_kernel.exceptions import (
    OptimisticLockError,
    StorageFailureError,
    StorageTimeoutError,
)
from financing_kernel.models import PoolStateModel
from financing_kernel.store.base import pool_key

pytestmark = pytest.mark.sql


class _LockNotAvailable(Exception):
    sqlstate = "55P03"


def _failing_commit(exc):
    def commit(self):
        raise exc

    return commit


class TestSchema:

    def test_ledger_tables_created(self, db_engine):
        tables = set(inspect(db_engine).get_table_names())
        assert {
            "ledger_invoices",
            "ledger_lifecycle_events",
            "ledger_invoice_payments",
            "ledger_collateral_positions",
            "ledger_pool_states",
            "ledger_pool_accounts",
            "ledger_yield_accounts",
            "ledger_settlement_rules",
            "ledger_settlement_executions",
        } <= tables

    def test_engine_is_current(self, db_engine):
        assert get_engine() is db_engine
        assert is_postgres() == (db_engine.dialect.name == "postgresql")


class TestErrorTranslation:

    def test_stale_version_becomes_optimistic_lock(self, sql_store, monkeypatch):
        monkeypatch.setattr(Session, "commit", _failing_commit(StaleDataError("stale")))
        with pytest.raises(OptimisticLockError) as exc_info:
            with sql_store.transaction(pool_key("p")) as txn:
                txn.put_pool(PoolState("p", 1, 0))
        assert exc_info.value.entity_id == "pool:p"

    def test_unique_violation_becomes_optimistic_lock(self, sql_store, monkeypatch):
        monkeypatch.setattr(
            Session, "commit", _failing_commit(IntegrityError("INSERT", {}, Exception("dup"))),
        )
        with pytest.raises(OptimisticLockError):
            with sql_store.transaction(pool_key("p")) as txn:
                txn.put_pool(PoolState("p", 1, 0))

    def test_lock_not_available_becomes_timeout(self, sql_store, monkeypatch):
        monkeypatch.setattr(
            Session, "commit",
            _failing_commit(OperationalError("SELECT", {}, _LockNotAvailable())),
        )
        with pytest.raises(StorageTimeoutError) as exc_info:
            with sql_store.transaction(pool_key("p"), timeout=0.5) as txn:
                txn.put_pool(PoolState("p", 1, 0))
        assert exc_info.value.timeout_seconds == 0.5

    def test_other_operational_error_is_storage_failure(self, sql_store, monkeypatch):
        monkeypatch.setattr(
            Session, "commit",
            _failing_commit(OperationalError("SELECT", {}, Exception("disk I/O error"))),
        )
        with pytest.raises(StorageFailureError) as exc_info:
            with sql_store.transaction(pool_key("p")) as txn:
                txn.put_pool(PoolState("p", 1, 0))
        assert not isinstance(exc_info.value, StorageTimeoutError)
        assert exc_info.value.operation == "transaction"

    def test_failed_commit_leaves_no_state(self, sql_store, monkeypatch):
        with monkeypatch.context() as m:
            m.setattr(Session, "commit", _failing_commit(StaleDataError("stale")))
            with pytest.raises(OptimisticLockError):
                with sql_store.transaction(pool_key("p")) as txn:
                    txn.put_pool(PoolState("p", 1, 0))
        assert sql_store.get_pool("p") is None

    def test_domain_errors_propagate_unchanged(self, sql_store):
        with pytest.raises(KeyError):
            with sql_store.transaction(pool_key("p")) as txn:
                txn.put_pool(PoolState("p", 1, 0))
                raise KeyError("domain")
        assert sql_store.get_pool("p") is None


class TestUTCDateTime:

    def test_naive_values_tagged_utc(self):
        decorator = UTCDateTime()
        value = decorator.process_result_value(datetime(2024, 1, 1, 12), None)
        assert value == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)


class TestSessionScope:

    def test_commits_on_clean_exit(self, db_engine):
        with session_scope() as session:
            session.add(PoolStateModel.from_dto(PoolState("p", 3, 1)))

        with session_scope() as session:
            row = session.execute(select(PoolStateModel)).scalar_one()
            assert row.to_dto() == PoolState("p", 3, 1)
            assert isinstance(row.id, UUID)

    def test_rolls_back_on_error(self, db_engine):
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                session.add(PoolStateModel.from_dto(PoolState("p", 3, 1)))
                session.flush()
                raise RuntimeError("abort")

        with session_scope() as session:
            assert session.execute(select(PoolStateModel)).first() is None
