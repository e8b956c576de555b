"""
ORM models for invoices and their append-only payment and lifecycle streams.

Contract:
    ``InvoiceModel`` is mutable under a row lock and versioned
    (``version_id_col``) so a concurrent write that slipped past the lock
    fails with StaleDataError instead of overwriting.  ``LifecycleEventModel``
    and ``InvoicePaymentModel`` are insert-only; ``seq`` is the per-invoice
    append position, allocated while the invoice row is locked.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from financing_kernel.db.base import Base, UInt256String

if TYPE_CHECKING:
    from financing_kernel.domain.types import Invoice, InvoicePayment, LifecycleEvent


class InvoiceModel(Base):
    """Current state of one invoice."""

    __tablename__ = "ledger_invoices"

    __table_args__ = (
        Index("ix_ledger_invoices_status", "status"),
    )

    invoice_id: Mapped[str] = mapped_column(String(66), nullable=False, unique=True)
    issuer: Mapped[str] = mapped_column(String(100), nullable=False)
    debtor: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    currency: Mapped[str | None] = mapped_column(String(66), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    cumulative_paid: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    is_financed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    token_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> Invoice:
        from financing_kernel.domain.types import Invoice, InvoiceStatus

        return Invoice(
            invoice_id=self.invoice_id,
            issuer=self.issuer,
            debtor=self.debtor,
            amount=self.amount,
            currency=self.currency,
            due_date=self.due_date,
            status=InvoiceStatus(self.status),
            cumulative_paid=self.cumulative_paid,
            is_financed=self.is_financed,
            token_id=self.token_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_dto(cls, dto: Invoice) -> InvoiceModel:
        row = cls(invoice_id=dto.invoice_id)
        row.update_from_dto(dto)
        return row

    def update_from_dto(self, dto: Invoice) -> None:
        self.issuer = dto.issuer
        self.debtor = dto.debtor
        self.amount = dto.amount
        self.currency = dto.currency
        self.due_date = dto.due_date
        self.status = dto.status.value
        self.cumulative_paid = dto.cumulative_paid
        self.is_financed = dto.is_financed
        self.token_id = dto.token_id
        self.created_at = dto.created_at
        self.updated_at = dto.updated_at


class LifecycleEventModel(Base):
    """One status change of an invoice (insert-only)."""

    __tablename__ = "ledger_lifecycle_events"

    __table_args__ = (
        UniqueConstraint("invoice_id", "seq", name="uq_ledger_lifecycle_events_seq"),
    )

    event_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    invoice_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(nullable=False)
    old_status: Mapped[str] = mapped_column(String(20), nullable=False)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> LifecycleEvent:
        from financing_kernel.domain.types import InvoiceStatus, LifecycleEvent

        return LifecycleEvent(
            event_id=self.event_id,
            invoice_id=self.invoice_id,
            old_status=InvoiceStatus(self.old_status),
            new_status=InvoiceStatus(self.new_status),
            timestamp=self.timestamp,
        )

    @classmethod
    def from_dto(cls, dto: LifecycleEvent, seq: int) -> LifecycleEventModel:
        return cls(
            event_id=dto.event_id,
            invoice_id=dto.invoice_id,
            seq=seq,
            old_status=dto.old_status.value,
            new_status=dto.new_status.value,
            timestamp=dto.timestamp,
        )


class InvoicePaymentModel(Base):
    """One payment applied to an invoice (insert-only)."""

    __tablename__ = "ledger_invoice_payments"

    __table_args__ = (
        UniqueConstraint("invoice_id", "seq", name="uq_ledger_invoice_payments_seq"),
    )

    payment_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    invoice_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(nullable=False)
    amount: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    cumulative_paid: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> InvoicePayment:
        from financing_kernel.domain.types import InvoicePayment

        return InvoicePayment(
            payment_id=self.payment_id,
            invoice_id=self.invoice_id,
            amount=self.amount,
            cumulative_paid=self.cumulative_paid,
            timestamp=self.timestamp,
        )

    @classmethod
    def from_dto(cls, dto: InvoicePayment, seq: int) -> InvoicePaymentModel:
        return cls(
            payment_id=dto.payment_id,
            invoice_id=dto.invoice_id,
            seq=seq,
            amount=dto.amount,
            cumulative_paid=dto.cumulative_paid,
            timestamp=dto.timestamp,
        )
