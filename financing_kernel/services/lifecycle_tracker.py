"""
InvoiceLifecycleTracker -- invoice status, payments and the lifecycle stream.

Responsibility:
    Records invoice issuance, token registration, status transitions and
    payments, enforcing the forward-only lifecycle.  Every status change
    appends a ``LifecycleEvent``; every payment appends an
    ``InvoicePayment``.

Architecture position:
    Kernel > Services.  Transition rules live in
    ``financing_kernel.domain.lifecycle``; this service applies them under
    the invoice key lock.

Invariants enforced:
    - ``0 <= cumulative_paid <= amount``; overpayment is rejected before
      any status rule is consulted.
    - PAID implies ``cumulative_paid == amount``.
    - Status only moves forward, except DEFAULTED from any non-terminal
      status.

Failure modes:
    - DuplicateInvoiceError, UnknownInvoiceError, InvalidAmountError,
      OverpaymentError, InvalidTransitionError.
    - StorageFailureError / StorageTimeoutError from the store.

Usage:
    tracker = InvoiceLifecycleTracker(store, clock)
    tracker.record_issuance("inv-1", issuer, debtor, 1000, due, "USDC", now)
    tracker.apply_status_transition("inv-1", InvoiceStatus.FINANCED, now)
    tracker.apply_payment("inv-1", 400, now)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from uuid import uuid4

from financing_kernel.domain.lifecycle import (
    parse_status,
    status_after_payment,
    validate_transition,
)
from financing_kernel.domain.types import (
    Invoice,
    InvoicePayment,
    InvoiceStatus,
    LifecycleEvent,
)
from financing_kernel.domain.values import checked_uint256, normalize_entity_id, require_positive
from financing_kernel.exceptions import (
    DuplicateInvoiceError,
    OverpaymentError,
    UnknownInvoiceError,
)
from financing_kernel.logging_config import LogContext, get_logger
from financing_kernel.services.base import LedgerService
from financing_kernel.store.base import LedgerTransaction, invoice_key

logger = get_logger("services.lifecycle_tracker")

LifecycleListener = Callable[[LifecycleEvent], None]


class InvoiceLifecycleTracker(LedgerService):
    """Tracks the lifecycle of tokenized invoices."""

    def __init__(self, store, clock=None):
        super().__init__(store, clock)
        self._listeners: list[LifecycleListener] = []

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_listener(self, listener: LifecycleListener) -> None:
        """Register a callback invoked with each committed LifecycleEvent."""
        self._listeners.append(listener)

    def remove_listener(self, listener: LifecycleListener) -> None:
        self._listeners.remove(listener)

    def _notify(self, events: list[LifecycleEvent]) -> None:
        # Runs after commit; a failing listener cannot undo the transition.
        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception(
                        "lifecycle_listener_failed",
                        extra={
                            "event_id": event.event_id,
                            "listener": getattr(listener, "__qualname__", repr(listener)),
                        },
                    )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def record_issuance(
        self,
        invoice_id: str | bytes,
        issuer: str,
        debtor: str,
        amount: int,
        due_date: datetime | None,
        currency: str | None,
        timestamp: datetime | None = None,
        token_id: str | None = None,
    ) -> Invoice:
        """
        Create an invoice in ISSUED state.

        Raises:
            DuplicateInvoiceError: the id is already recorded.
            InvalidAmountError: ``amount <= 0``.
        """
        invoice_id = normalize_entity_id(invoice_id)
        require_positive("amount", amount)
        timestamp = timestamp or self.clock.now()

        with LogContext.bind(invoice_id=invoice_id):
            with self.store.transaction(invoice_key(invoice_id)) as txn:
                if txn.get_invoice(invoice_id) is not None:
                    raise DuplicateInvoiceError(invoice_id)

                invoice = Invoice(
                    invoice_id=invoice_id,
                    issuer=issuer,
                    debtor=debtor,
                    amount=amount,
                    currency=currency,
                    due_date=due_date,
                    status=InvoiceStatus.ISSUED,
                    cumulative_paid=0,
                    is_financed=False,
                    token_id=token_id,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
                txn.put_invoice(invoice)
                event = self._append_event(
                    txn, invoice_id, InvoiceStatus.NONE, InvoiceStatus.ISSUED, timestamp,
                )

            logger.info(
                "invoice_issued",
                extra={"amount": amount, "currency": currency, "issuer": issuer},
            )
        self._notify([event])
        return invoice

    def register_token(
        self,
        invoice_id: str | bytes,
        token_id: str,
        timestamp: datetime | None = None,
    ) -> Invoice:
        """Attach the registry token id to an invoice."""
        invoice_id = normalize_entity_id(invoice_id)
        timestamp = timestamp or self.clock.now()

        with self.store.transaction(invoice_key(invoice_id)) as txn:
            invoice = self._require_invoice(txn, invoice_id)
            invoice = replace(invoice, token_id=token_id, updated_at=timestamp)
            txn.put_invoice(invoice)

        logger.info(
            "invoice_token_registered",
            extra={"invoice_id": invoice_id, "token_id": token_id},
        )
        return invoice

    def apply_status_transition(
        self,
        invoice_id: str | bytes,
        new_status: InvoiceStatus | str | int,
        event_timestamp: datetime | None = None,
    ) -> Invoice:
        """
        Move an invoice to ``new_status``.

        Raises:
            UnknownInvoiceError: no issued record.
            InvalidTransitionError: see ``validate_transition``.
        """
        invoice_id = normalize_entity_id(invoice_id)
        target = parse_status(new_status)
        timestamp = event_timestamp or self.clock.now()

        with LogContext.bind(invoice_id=invoice_id):
            with self.store.transaction(invoice_key(invoice_id)) as txn:
                invoice = self._require_invoice(txn, invoice_id)
                validate_transition(invoice, target)
                old_status = invoice.status
                invoice = replace(invoice, status=target, updated_at=timestamp)
                txn.put_invoice(invoice)
                event = self._append_event(txn, invoice_id, old_status, target, timestamp)

            logger.info(
                "invoice_status_changed",
                extra={"old_status": old_status.value, "new_status": target.value},
            )
        self._notify([event])
        return invoice

    def apply_payment(
        self,
        invoice_id: str | bytes,
        paid_amount: int,
        timestamp: datetime | None = None,
    ) -> Invoice:
        """
        Apply a payment and derive the resulting status.

        Reaching the full amount moves the invoice to PAID; a partial
        payment moves it to PARTIALLY_PAID.

        Raises:
            InvalidAmountError: ``paid_amount <= 0``.
            UnknownInvoiceError: no issued record.
            OverpaymentError: cumulative would exceed the invoice amount.
            InvalidTransitionError: terminal invoice, or partial payment
                before FINANCED.
        """
        invoice_id = normalize_entity_id(invoice_id)
        require_positive("paid_amount", paid_amount)
        timestamp = timestamp or self.clock.now()
        events: list[LifecycleEvent] = []

        with LogContext.bind(invoice_id=invoice_id):
            with self.store.transaction(invoice_key(invoice_id)) as txn:
                invoice = self._require_invoice(txn, invoice_id)
                new_cumulative = checked_uint256(
                    "cumulative_paid", invoice.cumulative_paid + paid_amount,
                )
                if new_cumulative > invoice.amount:
                    raise OverpaymentError(
                        invoice_id, invoice.amount, invoice.cumulative_paid, paid_amount,
                    )

                target = status_after_payment(invoice, new_cumulative)
                old_status = invoice.status
                invoice = replace(
                    invoice,
                    cumulative_paid=new_cumulative,
                    status=target,
                    updated_at=timestamp,
                )
                txn.put_invoice(invoice)
                txn.append_payment(
                    InvoicePayment(
                        payment_id=str(uuid4()),
                        invoice_id=invoice_id,
                        amount=paid_amount,
                        cumulative_paid=new_cumulative,
                        timestamp=timestamp,
                    )
                )
                if target != old_status:
                    events.append(
                        self._append_event(txn, invoice_id, old_status, target, timestamp)
                    )

            logger.info(
                "invoice_payment_applied",
                extra={
                    "paid_amount": paid_amount,
                    "cumulative_paid": new_cumulative,
                    "status": target.value,
                },
            )
        self._notify(events)
        return invoice

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_invoice(self, invoice_id: str | bytes) -> Invoice:
        """Raises UnknownInvoiceError when absent."""
        invoice_id = normalize_entity_id(invoice_id)
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise UnknownInvoiceError(invoice_id)
        return invoice

    def list_events(self, invoice_id: str | bytes) -> list[LifecycleEvent]:
        return self.store.list_lifecycle_events(normalize_entity_id(invoice_id))

    def list_payments(self, invoice_id: str | bytes) -> list[InvoicePayment]:
        return self.store.list_payments(normalize_entity_id(invoice_id))

    def list_invoices(self, status: InvoiceStatus | str | int | None = None) -> list[Invoice]:
        return self.store.list_invoices(None if status is None else parse_status(status))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _require_invoice(txn: LedgerTransaction, invoice_id: str) -> Invoice:
        invoice = txn.get_invoice(invoice_id)
        if invoice is None:
            raise UnknownInvoiceError(invoice_id)
        return invoice

    @staticmethod
    def _append_event(
        txn: LedgerTransaction,
        invoice_id: str,
        old_status: InvoiceStatus,
        new_status: InvoiceStatus,
        timestamp: datetime,
    ) -> LifecycleEvent:
        event = LifecycleEvent(
            event_id=str(uuid4()),
            invoice_id=invoice_id,
            old_status=old_status,
            new_status=new_status,
            timestamp=timestamp,
        )
        txn.append_lifecycle_event(event)
        return event
