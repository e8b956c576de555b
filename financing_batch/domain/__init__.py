"""Pure types for yield accrual runs."""

from financing_batch.domain.types import (
    AccountAccrual,
    AccountFailure,
    AccrualCycleResult,
    AccrualCycleStatus,
)

__all__ = [
    "AccountAccrual",
    "AccountFailure",
    "AccrualCycleResult",
    "AccrualCycleStatus",
]
