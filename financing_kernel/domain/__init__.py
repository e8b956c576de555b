"""
financing_kernel.domain -- Pure types, values and rules.

ZERO I/O.  All records are frozen dataclasses.
"""

from financing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from financing_kernel.domain.types import (
    CollateralPosition,
    Invoice,
    InvoicePayment,
    InvoiceStatus,
    LifecycleEvent,
    PoolAccount,
    PoolState,
    PoolTerms,
    SettlementExecution,
    SettlementResult,
    SettlementRule,
    SplitAllocation,
    YieldAccount,
)

__all__ = [
    "Clock",
    "CollateralPosition",
    "DeterministicClock",
    "Invoice",
    "InvoicePayment",
    "InvoiceStatus",
    "LifecycleEvent",
    "PoolAccount",
    "PoolState",
    "PoolTerms",
    "SettlementExecution",
    "SettlementResult",
    "SettlementRule",
    "SplitAllocation",
    "SystemClock",
    "YieldAccount",
]
