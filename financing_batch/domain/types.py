"""
financing_batch.domain.types -- Pure frozen dataclasses for yield accrual runs.

ZERO I/O.  Frozen dataclasses with tuples for immutable collections.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class AccrualCycleStatus(str, Enum):
    """Outcome of one accrual cycle."""

    COMPLETED = "completed"  # Every account accrued
    PARTIALLY_COMPLETED = "partially_completed"  # Some accounts failed
    FAILED = "failed"  # No account succeeded
    ABORTED = "aborted"  # Stopped at an account boundary


@dataclass(frozen=True)
class AccountFailure:
    """One account whose accrual step failed; it catches up next cycle."""

    wallet: str
    error_code: str
    error_message: str


@dataclass(frozen=True)
class AccountAccrual:
    """Yield applied to one account in a cycle."""

    wallet: str
    ticks: int
    yield_amount: int


@dataclass(frozen=True)
class AccrualCycleResult:
    """Summary of one accrual cycle over a pool.

    ``accounts_processed`` counts accounts attempted (succeeded + failed);
    accounts with zero elapsed ticks count as succeeded with no change.
    """

    cycle_id: str
    pool_id: str
    accounts_processed: int
    accounts_succeeded: int
    accounts_failed: int
    total_yield_accrued: int
    aborted: bool
    failures: tuple[AccountFailure, ...]
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    accruals: tuple[AccountAccrual, ...] = ()

    @property
    def status(self) -> AccrualCycleStatus:
        if self.aborted:
            return AccrualCycleStatus.ABORTED
        if self.accounts_failed == 0:
            return AccrualCycleStatus.COMPLETED
        if self.accounts_succeeded == 0:
            return AccrualCycleStatus.FAILED
        return AccrualCycleStatus.PARTIALLY_COMPLETED
