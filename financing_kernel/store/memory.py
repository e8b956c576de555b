"""
InMemoryLedgerStore -- process-local ledger store.

One ``threading.Lock`` per entity key provides single-writer-per-key.
Committed records live in a single dict keyed by ``EntityKey``; a short
``_commit_lock`` makes each commit (and each unlocked read) atomic with
respect to other commits.  Used by tests and by single-process
deployments configured with ``store.backend: memory``.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterator

from financing_kernel.domain.types import (
    CollateralPosition,
    Invoice,
    InvoicePayment,
    InvoiceStatus,
    LifecycleEvent,
    PoolAccount,
    PoolState,
    SettlementExecution,
    SettlementRule,
    YieldAccount,
)
from financing_kernel.exceptions import StorageTimeoutError
from financing_kernel.logging_config import get_logger
from financing_kernel.store.base import (
    INVOICE,
    POOL_ACCOUNT,
    POSITION,
    YIELD,
    EntityKey,
    LedgerStore,
    LedgerTransaction,
    canonical_keys,
    format_key,
    invoice_key,
    pool_account_key,
    pool_key,
    position_key,
    rule_key,
    yield_key,
)

logger = get_logger("store.memory")


class _MemoryTransaction(LedgerTransaction):
    """Stages writes and appends until the owning store commits them."""

    def __init__(self, store: InMemoryLedgerStore, keys: tuple[EntityKey, ...]):
        super().__init__(keys)
        self._store = store
        self._staged: dict[EntityKey, Any] = {}
        self._events: list[LifecycleEvent] = []
        self._payments: list[InvoicePayment] = []
        self._executions: list[SettlementExecution] = []

    def _read(self, key: EntityKey) -> Any:
        self._require(key)
        if key in self._staged:
            return self._staged[key]
        return self._store._read(key)

    def _write(self, key: EntityKey, record: Any) -> None:
        self._require(key)
        self._staged[key] = record

    def get_invoice(self, invoice_id):
        return self._read(invoice_key(invoice_id))

    def put_invoice(self, invoice):
        self._write(invoice_key(invoice.invoice_id), invoice)

    def append_lifecycle_event(self, event):
        self._require(invoice_key(event.invoice_id))
        self._events.append(event)

    def append_payment(self, payment):
        self._require(invoice_key(payment.invoice_id))
        self._payments.append(payment)

    def get_position(self, invoice_id):
        return self._read(position_key(invoice_id))

    def put_position(self, position):
        self._write(position_key(position.invoice_id), position)

    def get_pool(self, pool_id):
        return self._read(pool_key(pool_id))

    def put_pool(self, pool):
        self._write(pool_key(pool.pool_id), pool)

    def get_pool_account(self, wallet, pool_id):
        return self._read(pool_account_key(wallet, pool_id))

    def put_pool_account(self, account):
        self._write(pool_account_key(account.wallet, account.pool_id), account)

    def get_yield_account(self, wallet, pool_id):
        return self._read(yield_key(wallet, pool_id))

    def put_yield_account(self, account):
        self._write(yield_key(account.wallet, account.pool_id), account)

    def get_rule(self, rule_id):
        return self._read(rule_key(rule_id))

    def put_rule(self, rule):
        self._write(rule_key(rule.rule_id), rule)

    def append_execution(self, execution):
        self._require(rule_key(execution.rule_id))
        self._executions.append(execution)

    def get_execution(self, rule_id, execution_id):
        self._require(rule_key(rule_id))
        for execution in self._executions:
            if execution.execution_id == execution_id:
                return execution
        return self._store._find_execution(rule_id, execution_id)

    def count_executions(self, rule_id):
        self._require(rule_key(rule_id))
        staged = sum(1 for e in self._executions if e.rule_id == rule_id)
        return self._store._count_executions(rule_id) + staged


class InMemoryLedgerStore(LedgerStore):
    """
    Thread-safe in-memory ``LedgerStore``.

    Args:
        lock_timeout_seconds: Default bound on key lock acquisition.
            ``None`` waits indefinitely.
    """

    def __init__(self, lock_timeout_seconds: float | None = None):
        self.lock_timeout_seconds = lock_timeout_seconds
        self._records: dict[EntityKey, Any] = {}
        self._lifecycle_events: list[LifecycleEvent] = []
        self._payments: list[InvoicePayment] = []
        self._executions: list[SettlementExecution] = []
        self._key_locks: dict[EntityKey, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        self._commit_lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _lock_for(self, key: EntityKey) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def _acquire(self, keys: tuple[EntityKey, ...], timeout: float | None) -> list[threading.Lock]:
        held: list[threading.Lock] = []
        for key in keys:
            lock = self._lock_for(key)
            acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
            if not acquired:
                for h in reversed(held):
                    h.release()
                logger.warning(
                    "store_lock_timeout",
                    extra={"key": format_key(key), "timeout_seconds": timeout},
                )
                raise StorageTimeoutError(format_key(key), timeout)
            held.append(lock)
        return held

    @contextmanager
    def transaction(
        self, *keys: EntityKey, timeout: float | None = None,
    ) -> Iterator[LedgerTransaction]:
        ordered = canonical_keys(keys)
        held = self._acquire(ordered, self._effective_timeout(timeout))
        try:
            txn = _MemoryTransaction(self, ordered)
            yield txn
            self._commit(txn)
        finally:
            for lock in reversed(held):
                lock.release()

    def _commit(self, txn: _MemoryTransaction) -> None:
        with self._commit_lock:
            self._records.update(txn._staged)
            self._lifecycle_events.extend(txn._events)
            self._payments.extend(txn._payments)
            self._executions.extend(txn._executions)

    def _read(self, key: EntityKey) -> Any:
        with self._commit_lock:
            return self._records.get(key)

    def _count_executions(self, rule_id: str) -> int:
        with self._commit_lock:
            return sum(1 for e in self._executions if e.rule_id == rule_id)

    def _find_execution(self, rule_id: str, execution_id: str) -> SettlementExecution | None:
        with self._commit_lock:
            for execution in self._executions:
                if execution.rule_id == rule_id and execution.execution_id == execution_id:
                    return execution
        return None

    def _scan(self, kind: str, pool_id: str | None = None) -> list[Any]:
        with self._commit_lock:
            keys = sorted(
                k for k in self._records
                if k[0] == kind and (pool_id is None or k[1] == pool_id)
            )
            return [self._records[k] for k in keys]

    # -------------------------------------------------------------------------
    # Unlocked reads
    # -------------------------------------------------------------------------

    def get_invoice(self, invoice_id: str) -> Invoice | None:
        return self._read(invoice_key(invoice_id))

    def get_position(self, invoice_id: str) -> CollateralPosition | None:
        return self._read(position_key(invoice_id))

    def get_pool(self, pool_id: str) -> PoolState | None:
        return self._read(pool_key(pool_id))

    def get_pool_account(self, wallet: str, pool_id: str) -> PoolAccount | None:
        return self._read(pool_account_key(wallet, pool_id))

    def get_yield_account(self, wallet: str, pool_id: str) -> YieldAccount | None:
        return self._read(yield_key(wallet, pool_id))

    def get_rule(self, rule_id: str) -> SettlementRule | None:
        return self._read(rule_key(rule_id))

    def list_invoices(self, status: InvoiceStatus | None = None) -> list[Invoice]:
        invoices = self._scan(INVOICE)
        if status is None:
            return invoices
        return [i for i in invoices if i.status == status]

    def list_positions(self, pool_id: str) -> list[CollateralPosition]:
        return [p for p in self._scan(POSITION) if p.pool_id == pool_id]

    def list_pool_accounts(self, pool_id: str) -> list[PoolAccount]:
        return self._scan(POOL_ACCOUNT, pool_id)

    def list_yield_accounts(self, pool_id: str) -> list[YieldAccount]:
        return self._scan(YIELD, pool_id)

    def list_lifecycle_events(self, invoice_id: str) -> list[LifecycleEvent]:
        with self._commit_lock:
            return [e for e in self._lifecycle_events if e.invoice_id == invoice_id]

    def list_payments(self, invoice_id: str) -> list[InvoicePayment]:
        with self._commit_lock:
            return [p for p in self._payments if p.invoice_id == invoice_id]

    def list_executions(self, rule_id: str | None = None) -> list[SettlementExecution]:
        with self._commit_lock:
            selected = [
                e for e in self._executions
                if rule_id is None or e.rule_id == rule_id
            ]
        return sorted(selected, key=lambda e: (e.timestamp, e.rule_id, e.sequence))
