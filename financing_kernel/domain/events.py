"""
Decoded contract events consumed by the ledger.

The indexing collaborator decodes logs from the invoice token, registry,
financing pool and settlement router and hands these DTOs to
``LedgerEventIngestor``.  Timestamps are block timestamps, either a
``datetime`` or UNIX seconds.  ``tx_hash`` / ``log_index`` identify the
originating log where available.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

Timestamp = datetime | int


def to_datetime(value: Timestamp) -> datetime:
    """Block timestamp (datetime or UNIX seconds) as an aware UTC datetime."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


@dataclass(frozen=True, kw_only=True)
class LedgerEvent:
    """Common envelope fields."""

    timestamp: Timestamp

    @property
    def event_type(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, kw_only=True)
class InvoiceMinted(LedgerEvent):
    invoice_id: str | bytes
    token_id: str
    issuer: str
    debtor: str
    amount: int
    due_date: Timestamp | None = None
    currency: str | None = None


@dataclass(frozen=True, kw_only=True)
class InvoiceRegistered(LedgerEvent):
    invoice_id: str | bytes
    token_id: str


@dataclass(frozen=True, kw_only=True)
class InvoiceStatusUpdated(LedgerEvent):
    invoice_id: str | bytes
    old_status: str | int
    new_status: str | int


@dataclass(frozen=True, kw_only=True)
class PaymentRecorded(LedgerEvent):
    invoice_id: str | bytes
    amount: int


@dataclass(frozen=True, kw_only=True)
class CollateralLocked(LedgerEvent):
    invoice_id: str | bytes
    company: str
    token_id: str


@dataclass(frozen=True, kw_only=True)
class CreditDrawn(LedgerEvent):
    invoice_id: str | bytes
    amount: int


@dataclass(frozen=True, kw_only=True)
class CreditRepaid(LedgerEvent):
    invoice_id: str | bytes
    amount: int


@dataclass(frozen=True, kw_only=True)
class CollateralReleased(LedgerEvent):
    invoice_id: str | bytes


@dataclass(frozen=True, kw_only=True)
class CollateralLiquidated(LedgerEvent):
    invoice_id: str | bytes


@dataclass(frozen=True, kw_only=True)
class SettlementRuleCreated(LedgerEvent):
    rule_id: str | bytes
    invoice_id: str | bytes
    payer: str
    recipients: tuple[str, ...]
    bps_split: tuple[int, ...]


@dataclass(frozen=True, kw_only=True)
class SettlementExecuted(LedgerEvent):
    rule_id: str | bytes
    invoice_id: str | bytes
    gross_amount: int
    tx_hash: str | None = None
    log_index: int | None = None
