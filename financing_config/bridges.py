"""
Bridges from parsed configuration to kernel and batch components.

The only place where ``StoreSettings`` / ``AccrualSettings`` turn into
live objects.
"""

from __future__ import annotations

from financing_batch.services.accrual_engine import YieldAccrualEngine
from financing_batch.services.scheduler import AccrualScheduler
from financing_config.schema import LedgerConfig, StoreSettings
from financing_kernel.domain.clock import Clock
from financing_kernel.services.yield_ledger import YieldLedger
from financing_kernel.store.base import LedgerStore
from financing_kernel.store.memory import InMemoryLedgerStore


def build_store(settings: StoreSettings) -> LedgerStore:
    """Create the configured ledger store.

    The sql backend initializes the module-level engine and creates any
    missing tables.
    """
    if settings.backend == "memory":
        return InMemoryLedgerStore(lock_timeout_seconds=settings.lock_timeout_seconds)

    from financing_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
    )
    from financing_kernel.store.sql import SqlLedgerStore

    init_engine_from_url(settings.database_url, echo=settings.echo)
    create_tables()
    return SqlLedgerStore(
        get_session_factory(), lock_timeout_seconds=settings.lock_timeout_seconds,
    )


def build_accrual_engine(
    config: LedgerConfig,
    store: LedgerStore,
    clock: Clock | None = None,
) -> YieldAccrualEngine:
    return YieldAccrualEngine(
        store,
        config.terms_by_pool,
        clock=clock,
        account_timeout_seconds=config.accrual.account_timeout_seconds,
    )


def build_yield_ledger(
    config: LedgerConfig,
    store: LedgerStore,
    clock: Clock | None = None,
) -> YieldLedger:
    return YieldLedger(store, clock, config.terms_by_pool)


def build_accrual_scheduler(engine: YieldAccrualEngine, config: LedgerConfig) -> AccrualScheduler:
    return AccrualScheduler(
        engine,
        pool_ids=[p.pool_id for p in config.pools],
        tick_interval_seconds=config.accrual.tick_interval_seconds,
    )
