"""Ledger store: keyed transactional persistence (in-memory and SQL)."""

from financing_kernel.store.base import (
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
from financing_kernel.store.memory import InMemoryLedgerStore

__all__ = [
    "EntityKey",
    "InMemoryLedgerStore",
    "LedgerStore",
    "LedgerTransaction",
    "canonical_keys",
    "format_key",
    "invoice_key",
    "pool_account_key",
    "pool_key",
    "position_key",
    "rule_key",
    "yield_key",
]
