"""
LedgerEventIngestor -- applies decoded contract events to the ledger.

Responsibility:
    Dispatches each ``financing_kernel.domain.events`` DTO to the service
    operation that mirrors it.  The indexing collaborator decodes logs and
    calls ``handle(event)`` once per log, in block order.

Architecture position:
    Kernel > Services.  Thin adapter over InvoiceLifecycleTracker,
    CollateralAccountant and SettlementSplitter.

Invariants enforced:
    - Validation happens against stored state, never against what the
      event claims the prior state was: an ``InvoiceStatusUpdated`` whose
      ``old_status`` disagrees with the ledger is logged as stale and the
      transition is still validated from the stored status.
    - Block timestamps given as UNIX seconds are converted to UTC.

Failure modes:
    - UnsupportedEventError for event types with no handler.
    - Every error of the underlying service operation propagates.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from financing_kernel.domain.events import (
    CollateralLiquidated,
    CollateralLocked,
    CollateralReleased,
    CreditDrawn,
    CreditRepaid,
    InvoiceMinted,
    InvoiceRegistered,
    InvoiceStatusUpdated,
    LedgerEvent,
    PaymentRecorded,
    SettlementExecuted,
    SettlementRuleCreated,
    to_datetime,
)
from financing_kernel.domain.lifecycle import parse_status
from financing_kernel.exceptions import UnsupportedEventError
from financing_kernel.logging_config import LogContext, get_logger
from financing_kernel.services.collateral_accountant import CollateralAccountant
from financing_kernel.services.lifecycle_tracker import InvoiceLifecycleTracker
from financing_kernel.services.settlement_splitter import SettlementSplitter

logger = get_logger("services.event_ingestor")


class LedgerEventIngestor:
    """
    Routes decoded events to ledger services.

    Args:
        tracker: Invoice lifecycle tracker.
        accountant: Accountant of the financing pool whose events are ingested.
        splitter: Settlement splitter.
    """

    def __init__(
        self,
        tracker: InvoiceLifecycleTracker,
        accountant: CollateralAccountant,
        splitter: SettlementSplitter,
    ):
        self.tracker = tracker
        self.accountant = accountant
        self.splitter = splitter
        self._handlers: dict[type[LedgerEvent], Callable[[Any], Any]] = {
            InvoiceMinted: self._on_invoice_minted,
            InvoiceRegistered: self._on_invoice_registered,
            InvoiceStatusUpdated: self._on_status_updated,
            PaymentRecorded: self._on_payment_recorded,
            CollateralLocked: self._on_collateral_locked,
            CreditDrawn: self._on_credit_drawn,
            CreditRepaid: self._on_credit_repaid,
            CollateralReleased: self._on_collateral_released,
            CollateralLiquidated: self._on_collateral_liquidated,
            SettlementRuleCreated: self._on_rule_created,
            SettlementExecuted: self._on_settlement_executed,
        }

    def handle(self, event: LedgerEvent) -> Any:
        """
        Apply one event and return the resulting ledger record.

        Raises:
            UnsupportedEventError: no handler for the event's type.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning(
                "ledger_event_unsupported",
                extra={"event_type": type(event).__name__},
            )
            raise UnsupportedEventError(type(event).__name__)

        correlation_id = None
        if isinstance(event, SettlementExecuted) and event.tx_hash is not None:
            correlation_id = f"{event.tx_hash}-{event.log_index}"

        with LogContext.bind(correlation_id=correlation_id):
            logger.debug("ledger_event_received", extra={"event_type": event.event_type})
            return handler(event)

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _on_invoice_minted(self, event: InvoiceMinted):
        return self.tracker.record_issuance(
            event.invoice_id,
            issuer=event.issuer,
            debtor=event.debtor,
            amount=event.amount,
            due_date=to_datetime(event.due_date) if event.due_date is not None else None,
            currency=event.currency,
            timestamp=to_datetime(event.timestamp),
            token_id=event.token_id,
        )

    def _on_invoice_registered(self, event: InvoiceRegistered):
        return self.tracker.register_token(
            event.invoice_id, event.token_id, to_datetime(event.timestamp),
        )

    def _on_status_updated(self, event: InvoiceStatusUpdated):
        claimed_old = parse_status(event.old_status)
        new_status = parse_status(event.new_status)
        stored = self.tracker.get_invoice(event.invoice_id)
        if stored.status != claimed_old:
            logger.warning(
                "ledger_event_stale_status",
                extra={
                    "invoice_id": stored.invoice_id,
                    "event_old_status": claimed_old.value,
                    "stored_status": stored.status.value,
                    "new_status": new_status.value,
                },
            )
        return self.tracker.apply_status_transition(
            event.invoice_id, new_status, to_datetime(event.timestamp),
        )

    def _on_payment_recorded(self, event: PaymentRecorded):
        return self.tracker.apply_payment(
            event.invoice_id, event.amount, to_datetime(event.timestamp),
        )

    def _on_collateral_locked(self, event: CollateralLocked):
        invoice = self.tracker.get_invoice(event.invoice_id)
        return self.accountant.lock_collateral(
            invoice.invoice_id,
            token_id=event.token_id,
            owner=event.company,
            invoice_face_value=invoice.amount,
            timestamp=to_datetime(event.timestamp),
        )

    def _on_credit_drawn(self, event: CreditDrawn):
        return self.accountant.draw(event.invoice_id, event.amount)

    def _on_credit_repaid(self, event: CreditRepaid):
        return self.accountant.repay(event.invoice_id, event.amount)

    def _on_collateral_released(self, event: CollateralReleased):
        return self.accountant.release_collateral(event.invoice_id)

    def _on_collateral_liquidated(self, event: CollateralLiquidated):
        return self.accountant.mark_liquidated(event.invoice_id)

    def _on_rule_created(self, event: SettlementRuleCreated):
        return self.splitter.create_rule(
            event.invoice_id,
            payer=event.payer,
            recipients=event.recipients,
            bps_split=event.bps_split,
            rule_id=event.rule_id,
            timestamp=to_datetime(event.timestamp),
        )

    def _on_settlement_executed(self, event: SettlementExecuted):
        return self.splitter.record_execution(
            event.rule_id,
            event.invoice_id,
            event.gross_amount,
            timestamp=to_datetime(event.timestamp),
            tx_hash=event.tx_hash,
            log_index=event.log_index,
        )
