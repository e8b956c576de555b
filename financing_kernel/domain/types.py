"""
financing_kernel.domain.types -- Pure frozen dataclasses for the ledger.

ZERO I/O.  Every ledger record is immutable; services derive new versions
with ``dataclasses.replace`` and write them back through the store inside
a key-locked transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from financing_kernel.domain.values import normalize_entity_id


# =============================================================================
# Status enums
# =============================================================================


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status (registry enum order)."""

    NONE = "NONE"
    ISSUED = "ISSUED"
    TOKENIZED = "TOKENIZED"
    FINANCED = "FINANCED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    DEFAULTED = "DEFAULTED"


# =============================================================================
# Invoices
# =============================================================================


@dataclass(frozen=True)
class Invoice:
    """Tokenized invoice.

    ``cumulative_paid`` never decreases and never exceeds ``amount``.
    """

    invoice_id: str
    issuer: str
    debtor: str
    amount: int
    currency: str | None
    due_date: datetime | None
    status: InvoiceStatus
    cumulative_paid: int = 0
    is_financed: bool = False
    token_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def outstanding(self) -> int:
        return self.amount - self.cumulative_paid


@dataclass(frozen=True)
class LifecycleEvent:
    """One status change, appended to the audit stream."""

    event_id: str
    invoice_id: str
    old_status: InvoiceStatus
    new_status: InvoiceStatus
    timestamp: datetime


@dataclass(frozen=True)
class InvoicePayment:
    """One payment applied to an invoice."""

    payment_id: str
    invoice_id: str
    amount: int
    cumulative_paid: int
    timestamp: datetime


# =============================================================================
# Pools and collateral
# =============================================================================


@dataclass(frozen=True)
class PoolTerms:
    """Configured constants of a financing pool.

    ``max_single_loan_bps == 0`` disables the per-draw cap.
    ``pool_id`` is stored in canonical form (hex ids lowercased) so every
    service keys the pool identically.
    """

    pool_id: str
    ltv_bps: int = 6000
    max_utilization_bps: int = 8000
    max_single_loan_bps: int = 0
    annual_rate_bps: int = 500
    tick_seconds: int = 60
    carry_remainder: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "pool_id", normalize_entity_id(self.pool_id))


@dataclass(frozen=True)
class PoolState:
    """Running liquidity totals of a pool."""

    pool_id: str
    total_liquidity: int = 0
    total_borrowed: int = 0

    @property
    def available_liquidity(self) -> int:
        return self.total_liquidity - self.total_borrowed


@dataclass(frozen=True)
class CollateralPosition:
    """Collateral locked against one invoice (1:1).

    ``exists`` distinguishes a live position from one that was released;
    a never-locked invoice has no record at all.
    """

    invoice_id: str
    pool_id: str
    token_id: str
    owner: str
    face_value: int
    ltv_bps: int
    credit_limit: int
    used_credit: int = 0
    exists: bool = True
    liquidated: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def available_credit(self) -> int:
        return self.credit_limit - self.used_credit


# =============================================================================
# Omnibus ledger and yield
# =============================================================================


@dataclass(frozen=True)
class PoolAccount:
    """Omnibus ledger entry: shares a wallet holds in a pool."""

    wallet: str
    pool_id: str
    share_balance: int = 0


@dataclass(frozen=True)
class YieldAccount:
    """Accrued liquidity-provider yield for one (wallet, pool).

    ``carry`` is the sub-unit accrual remainder, scaled by WAD.
    """

    wallet: str
    pool_id: str
    accrued_yield: int = 0
    carry: int = 0
    last_accrued_at: datetime | None = None
    total_claimed: int = 0


# =============================================================================
# Settlement
# =============================================================================


@dataclass(frozen=True)
class SettlementRule:
    """Proportional payout plan for an invoice's proceeds."""

    rule_id: str
    invoice_id: str
    payer: str
    recipients: tuple[str, ...]
    bps_split: tuple[int, ...]
    active: bool = True
    created_at: datetime | None = None

    @property
    def total_bps(self) -> int:
        return sum(self.bps_split)


@dataclass(frozen=True)
class SettlementExecution:
    """Immutable record of one settlement run against a rule."""

    execution_id: str
    rule_id: str
    invoice_id: str
    gross_amount: int
    currency: str | None
    timestamp: datetime
    sequence: int


@dataclass(frozen=True)
class SplitAllocation:
    """Amount routed to one recipient by a split."""

    recipient: str
    bps: int
    amount: int


@dataclass(frozen=True)
class SettlementResult:
    """Execution record plus the computed allocations."""

    execution: SettlementExecution
    allocations: tuple[SplitAllocation, ...]
