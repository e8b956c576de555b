"""
Pytest fixtures for the financing ledger test suite.

Provides:
- Structured logging configuration and log capture
- DeterministicClock
- In-memory and SQL-backed ledger stores
- Service fixtures wired to the in-memory store

Environment Variables:
- DATABASE_URL: SQLAlchemy URL for the SQL store fixtures.  Defaults to
  in-memory SQLite; set it to a PostgreSQL URL to exercise row locking
  against a real server.
"""

import json
import logging
import os
from io import StringIO

import pytest

from financing_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from financing_kernel.domain.clock import DeterministicClock
from financing_kernel.domain.types import PoolTerms
from financing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from financing_kernel.services import (
    CollateralAccountant,
    InvoiceLifecycleTracker,
    LedgerEventIngestor,
    SettlementSplitter,
    YieldLedger,
)
from financing_kernel.store.memory import InMemoryLedgerStore
from financing_kernel.store.sql import SqlLedgerStore

from financing_batch.services.accrual_engine import YieldAccrualEngine

DEFAULT_DATABASE_URL = "sqlite:///:memory:"

POOL_ID = "pool-1"

ISSUER = "0x1111111111111111111111111111111111111111"
DEBTOR = "0x2222222222222222222222222222222222222222"
COMPANY = "0x3333333333333333333333333333333333333333"


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
    Capture financing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, tracker):
            tracker.record_issuance(...)
            logs = captured_logs()
            assert any(r["message"] == "invoice_issued" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("financing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "sql: mark test as running against the SQL ledger store"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for key locks"
    )


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


# =============================================================================
# Clock and terms
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def pool_terms() -> PoolTerms:
    return PoolTerms(
        pool_id=POOL_ID,
        ltv_bps=6000,
        max_utilization_bps=8000,
        max_single_loan_bps=0,
        annual_rate_bps=500,
        tick_seconds=60,
    )


# =============================================================================
# Stores
# =============================================================================


@pytest.fixture
def memory_store():
    return InMemoryLedgerStore(lock_timeout_seconds=5.0)


@pytest.fixture
def db_engine():
    """Fresh engine and schema per test; dropped at teardown."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    drop_tables()
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def sql_store(db_engine):
    return SqlLedgerStore(get_session_factory(), lock_timeout_seconds=5.0)


@pytest.fixture(params=["memory", "sql"])
def any_store(request):
    """Runs the test once per LedgerStore backend."""
    if request.param == "memory":
        return InMemoryLedgerStore(lock_timeout_seconds=5.0)
    request.getfixturevalue("db_engine")
    return SqlLedgerStore(get_session_factory(), lock_timeout_seconds=5.0)


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def store(memory_store):
    """Default store for service tests."""
    return memory_store


@pytest.fixture
def tracker(store, deterministic_clock):
    return InvoiceLifecycleTracker(store, deterministic_clock)


@pytest.fixture
def accountant(store, pool_terms, deterministic_clock):
    return CollateralAccountant(store, pool_terms, deterministic_clock)


@pytest.fixture
def yield_ledger(store, pool_terms, deterministic_clock):
    return YieldLedger(store, deterministic_clock, {pool_terms.pool_id: pool_terms})


@pytest.fixture
def splitter(store, deterministic_clock):
    return SettlementSplitter(store, deterministic_clock)


@pytest.fixture
def ingestor(tracker, accountant, splitter):
    return LedgerEventIngestor(tracker, accountant, splitter)


@pytest.fixture
def accrual_engine(store, pool_terms, deterministic_clock):
    return YieldAccrualEngine(
        store, {pool_terms.pool_id: pool_terms}, clock=deterministic_clock,
    )


@pytest.fixture
def issue_invoice(tracker):
    """Factory fixture: issue an invoice with sensible defaults."""

    def _issue(invoice_id="inv-1", amount=1000, currency="USDC", **kwargs):
        return tracker.record_issuance(
            invoice_id,
            issuer=kwargs.pop("issuer", ISSUER),
            debtor=kwargs.pop("debtor", DEBTOR),
            amount=amount,
            due_date=kwargs.pop("due_date", None),
            currency=currency,
            **kwargs,
        )

    return _issue


@pytest.fixture
def financed_invoice(tracker, issue_invoice):
    """Factory fixture: issue an invoice and move it to FINANCED."""

    def _financed(invoice_id="inv-1", amount=1000, currency="USDC"):
        issue_invoice(invoice_id, amount=amount, currency=currency)
        tracker.apply_status_transition(invoice_id, "TOKENIZED")
        return tracker.apply_status_transition(invoice_id, "FINANCED")

    return _financed
