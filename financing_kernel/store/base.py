"""
Module: financing_kernel.store.base
Responsibility: Narrow repository interface every ledger service writes
    through, plus the ``EntityKey`` helpers used to declare what a
    transaction locks.
Architecture position: Kernel > Store.  Imports from domain/ and
    exceptions only.  Services depend on ``LedgerStore``; concrete stores
    live in memory.py and sql.py.

Invariants enforced:
    - Single writer per key: every key declared on ``transaction()`` is
      held exclusively until the transaction ends.
    - Canonical lock order: keys are sorted before acquisition so two
      transactions declaring overlapping keys never deadlock.
    - All-or-nothing: staged writes are applied only on clean exit.
    - Declared keys only: touching an undeclared key raises ``ValueError``.

Failure modes:
    - StorageTimeoutError when a key lock is not acquired in time.
    - StorageFailureError / OptimisticLockError from the backing store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Iterable

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

EntityKey = tuple[str, ...]

INVOICE = "invoice"
POSITION = "position"
POOL = "pool"
POOL_ACCOUNT = "pool_account"
YIELD = "yield"
RULE = "rule"


def invoice_key(invoice_id: str) -> EntityKey:
    return (INVOICE, invoice_id)


def position_key(invoice_id: str) -> EntityKey:
    return (POSITION, invoice_id)


def pool_key(pool_id: str) -> EntityKey:
    return (POOL, pool_id)


def pool_account_key(wallet: str, pool_id: str) -> EntityKey:
    return (POOL_ACCOUNT, pool_id, wallet)


def yield_key(wallet: str, pool_id: str) -> EntityKey:
    return (YIELD, pool_id, wallet)


def rule_key(rule_id: str) -> EntityKey:
    return (RULE, rule_id)


def format_key(key: EntityKey) -> str:
    return ":".join(key)


def canonical_keys(keys: Iterable[EntityKey]) -> tuple[EntityKey, ...]:
    """Deduplicated keys in global lock order."""
    return tuple(sorted(set(keys)))


class LedgerTransaction(ABC):
    """
    Handle yielded by ``LedgerStore.transaction``.

    Contract:
        Reads return the transaction's own staged writes first, then the
        committed state.  Writes are visible only inside the transaction
        until it exits cleanly.
    """

    def __init__(self, keys: tuple[EntityKey, ...]):
        self._keys = frozenset(keys)

    @property
    def keys(self) -> frozenset[EntityKey]:
        return self._keys

    def _require(self, key: EntityKey) -> EntityKey:
        if key not in self._keys:
            raise ValueError(
                f"Key {format_key(key)} was not declared on this transaction"
            )
        return key

    # Invoices

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> Invoice | None: ...

    @abstractmethod
    def put_invoice(self, invoice: Invoice) -> None: ...

    @abstractmethod
    def append_lifecycle_event(self, event: LifecycleEvent) -> None:
        """Requires ``invoice_key(event.invoice_id)``."""

    @abstractmethod
    def append_payment(self, payment: InvoicePayment) -> None:
        """Requires ``invoice_key(payment.invoice_id)``."""

    # Positions and pools

    @abstractmethod
    def get_position(self, invoice_id: str) -> CollateralPosition | None: ...

    @abstractmethod
    def put_position(self, position: CollateralPosition) -> None: ...

    @abstractmethod
    def get_pool(self, pool_id: str) -> PoolState | None: ...

    @abstractmethod
    def put_pool(self, pool: PoolState) -> None: ...

    # Omnibus ledger and yield

    @abstractmethod
    def get_pool_account(self, wallet: str, pool_id: str) -> PoolAccount | None: ...

    @abstractmethod
    def put_pool_account(self, account: PoolAccount) -> None: ...

    @abstractmethod
    def get_yield_account(self, wallet: str, pool_id: str) -> YieldAccount | None: ...

    @abstractmethod
    def put_yield_account(self, account: YieldAccount) -> None: ...

    # Settlement

    @abstractmethod
    def get_rule(self, rule_id: str) -> SettlementRule | None: ...

    @abstractmethod
    def put_rule(self, rule: SettlementRule) -> None: ...

    @abstractmethod
    def append_execution(self, execution: SettlementExecution) -> None:
        """Requires ``rule_key(execution.rule_id)``."""

    @abstractmethod
    def get_execution(self, rule_id: str, execution_id: str) -> SettlementExecution | None:
        """Committed or staged execution of a rule by id.  Requires ``rule_key``."""

    @abstractmethod
    def count_executions(self, rule_id: str) -> int:
        """Committed plus staged executions of a rule.  Requires ``rule_key``."""


class LedgerStore(ABC):
    """
    Keyed, transactional persistence for ledger records.

    Contract:
        ``transaction(*keys, timeout=None)`` is a context manager yielding
        a ``LedgerTransaction``.  ``timeout`` bounds lock acquisition and
        falls back to the store's ``lock_timeout_seconds`` (``None`` waits
        indefinitely).

        The remaining methods are unlocked reads of committed state.
        They must not be called from inside an open transaction; use the
        transaction handle instead.
        Lists are ordered deterministically (by key, or by append order
        for the append-only streams).
    """

    lock_timeout_seconds: float | None = None

    @abstractmethod
    def transaction(
        self, *keys: EntityKey, timeout: float | None = None,
    ) -> AbstractContextManager[LedgerTransaction]: ...

    def _effective_timeout(self, timeout: float | None) -> float | None:
        return self.lock_timeout_seconds if timeout is None else timeout

    # Point reads

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> Invoice | None: ...

    @abstractmethod
    def get_position(self, invoice_id: str) -> CollateralPosition | None: ...

    @abstractmethod
    def get_pool(self, pool_id: str) -> PoolState | None: ...

    @abstractmethod
    def get_pool_account(self, wallet: str, pool_id: str) -> PoolAccount | None: ...

    @abstractmethod
    def get_yield_account(self, wallet: str, pool_id: str) -> YieldAccount | None: ...

    @abstractmethod
    def get_rule(self, rule_id: str) -> SettlementRule | None: ...

    # Scans

    @abstractmethod
    def list_invoices(self, status: InvoiceStatus | None = None) -> list[Invoice]: ...

    @abstractmethod
    def list_positions(self, pool_id: str) -> list[CollateralPosition]: ...

    @abstractmethod
    def list_pool_accounts(self, pool_id: str) -> list[PoolAccount]: ...

    @abstractmethod
    def list_yield_accounts(self, pool_id: str) -> list[YieldAccount]: ...

    @abstractmethod
    def list_lifecycle_events(self, invoice_id: str) -> list[LifecycleEvent]: ...

    @abstractmethod
    def list_payments(self, invoice_id: str) -> list[InvoicePayment]: ...

    @abstractmethod
    def list_executions(self, rule_id: str | None = None) -> list[SettlementExecution]: ...
