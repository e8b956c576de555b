"""
LedgerConfig schema.

Human-authored YAML is parsed by the loader into these frozen types.
Pool terms reuse the kernel's ``PoolTerms`` so services consume the
parsed configuration directly.
"""

from __future__ import annotations

from dataclasses import dataclass

from financing_kernel.domain.types import PoolTerms
from financing_kernel.domain.values import normalize_entity_id

STORE_BACKENDS = ("memory", "sql")


@dataclass(frozen=True)
class AccrualSettings:
    """Scheduler cadence and per-account lock bound."""

    tick_interval_seconds: float = 60
    account_timeout_seconds: float | None = 5.0


@dataclass(frozen=True)
class StoreSettings:
    """Ledger store backend selection."""

    backend: str = "memory"
    database_url: str | None = None
    lock_timeout_seconds: float | None = 10.0
    echo: bool = False


@dataclass(frozen=True)
class LedgerConfig:
    """Complete ledger configuration."""

    config_id: str
    version: int
    pools: tuple[PoolTerms, ...]
    accrual: AccrualSettings
    store: StoreSettings
    checksum: str = ""

    @property
    def terms_by_pool(self) -> dict[str, PoolTerms]:
        return {p.pool_id: p for p in self.pools}

    def pool(self, pool_id: str) -> PoolTerms:
        """Terms of ``pool_id`` (any hex casing).  Raises KeyError when not configured."""
        wanted = normalize_entity_id(pool_id)
        for terms in self.pools:
            if terms.pool_id == wanted:
                return terms
        raise KeyError(f"Pool not configured: {pool_id}")
