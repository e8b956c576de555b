"""
Tests for InvoiceLifecycleTracker.

Issuance, forward-only status transitions, payments with automatic
PARTIALLY_PAID / PAID derivation, and the append-only lifecycle stream.
"""

from datetime import datetime, timedelta, timezone

import pytest

from financing_kernel.domain.types import InvoiceStatus
from financing_kernel.exceptions import (
    DuplicateInvoiceError,
    InvalidAmountError,
    InvalidTransitionError,
    OverpaymentError,
    UnknownInvoiceError,
)

ISSUER = "0x1111111111111111111111111111111111111111"
DEBTOR = "0x2222222222222222222222222222222222222222"


class TestIssuance:

    def test_record_issuance(self, tracker, deterministic_clock):
        due = datetime(2024, 3, 1, tzinfo=timezone.utc)
        invoice = tracker.record_issuance(
            "inv-1", ISSUER, DEBTOR, 1000, due, "USDC",
        )

        assert invoice.status == InvoiceStatus.ISSUED
        assert invoice.cumulative_paid == 0
        assert invoice.is_financed is False
        assert invoice.due_date == due
        assert invoice.created_at == deterministic_clock.now()
        assert tracker.get_invoice("inv-1") == invoice

        events = tracker.list_events("inv-1")
        assert [(e.old_status, e.new_status) for e in events] == [
            (InvoiceStatus.NONE, InvoiceStatus.ISSUED),
        ]

    def test_duplicate_rejected(self, issue_invoice):
        issue_invoice("inv-1")
        with pytest.raises(DuplicateInvoiceError):
            issue_invoice("inv-1")

    def test_bytes_id_normalized(self, tracker, issue_invoice):
        issue_invoice(b"\xde\xad")
        assert tracker.get_invoice("0xDEAD").invoice_id == "0xdead"

    def test_zero_amount_rejected(self, issue_invoice):
        with pytest.raises(InvalidAmountError):
            issue_invoice("inv-1", amount=0)

    def test_register_token(self, tracker, issue_invoice):
        issue_invoice("inv-1")
        invoice = tracker.register_token("inv-1", "42")
        assert invoice.token_id == "42"
        assert invoice.status == InvoiceStatus.ISSUED

    def test_unknown_invoice(self, tracker):
        with pytest.raises(UnknownInvoiceError):
            tracker.get_invoice("missing")
        with pytest.raises(UnknownInvoiceError):
            tracker.apply_status_transition("missing", "FINANCED")
        with pytest.raises(UnknownInvoiceError):
            tracker.apply_payment("missing", 10)


class TestStatusTransitions:

    def test_forward_transitions_recorded(self, tracker, issue_invoice, deterministic_clock):
        issue_invoice("inv-1")
        t1 = deterministic_clock.now() + timedelta(minutes=5)
        tracker.apply_status_transition("inv-1", InvoiceStatus.TOKENIZED, t1)
        invoice = tracker.apply_status_transition("inv-1", 3)

        assert invoice.status == InvoiceStatus.FINANCED
        events = tracker.list_events("inv-1")
        assert [e.new_status for e in events] == [
            InvoiceStatus.ISSUED, InvoiceStatus.TOKENIZED, InvoiceStatus.FINANCED,
        ]
        assert events[1].timestamp == t1

    def test_backward_transition_rejected_and_not_recorded(self, tracker, financed_invoice):
        financed_invoice("inv-1")
        with pytest.raises(InvalidTransitionError):
            tracker.apply_status_transition("inv-1", "TOKENIZED")

        assert tracker.get_invoice("inv-1").status == InvoiceStatus.FINANCED
        assert len(tracker.list_events("inv-1")) == 3

    def test_paid_without_payment_rejected(self, tracker, financed_invoice):
        financed_invoice("inv-1")
        with pytest.raises(InvalidTransitionError):
            tracker.apply_status_transition("inv-1", "PAID")

    def test_partially_paid_without_payment_rejected(self, tracker, financed_invoice):
        financed_invoice("inv-1")
        with pytest.raises(InvalidTransitionError, match="PARTIALLY_PAID"):
            tracker.apply_status_transition("inv-1", "PARTIALLY_PAID")

        invoice = tracker.get_invoice("inv-1")
        assert invoice.status == InvoiceStatus.FINANCED
        assert invoice.cumulative_paid == 0
        assert len(tracker.list_events("inv-1")) == 3

    def test_default_is_terminal(self, tracker, financed_invoice):
        financed_invoice("inv-1")
        tracker.apply_status_transition("inv-1", "DEFAULTED")
        with pytest.raises(InvalidTransitionError):
            tracker.apply_status_transition("inv-1", "PAID")
        with pytest.raises(InvalidTransitionError):
            tracker.apply_payment("inv-1", 1000)

    def test_list_invoices_by_status(self, tracker, issue_invoice, financed_invoice):
        issue_invoice("inv-a")
        financed_invoice("inv-b")
        assert [i.invoice_id for i in tracker.list_invoices("FINANCED")] == ["inv-b"]
        assert {i.invoice_id for i in tracker.list_invoices()} == {"inv-a", "inv-b"}


class TestPayments:

    def test_partial_then_full_payment(self, tracker, financed_invoice):
        financed_invoice("inv-1", amount=1000)

        invoice = tracker.apply_payment("inv-1", 400)
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID
        assert invoice.cumulative_paid == 400

        invoice = tracker.apply_payment("inv-1", 600)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.cumulative_paid == 1000

        with pytest.raises(OverpaymentError) as exc_info:
            tracker.apply_payment("inv-1", 1)
        assert exc_info.value.paid_amount == 1

        payments = tracker.list_payments("inv-1")
        assert [(p.amount, p.cumulative_paid) for p in payments] == [(400, 400), (600, 1000)]

    def test_overpayment_rejected_without_side_effects(self, tracker, financed_invoice):
        financed_invoice("inv-1", amount=1000)
        tracker.apply_payment("inv-1", 400)

        with pytest.raises(OverpaymentError):
            tracker.apply_payment("inv-1", 601)

        invoice = tracker.get_invoice("inv-1")
        assert invoice.cumulative_paid == 400
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID
        assert len(tracker.list_payments("inv-1")) == 1

    def test_second_partial_payment_records_no_status_event(self, tracker, financed_invoice):
        financed_invoice("inv-1", amount=1000)
        tracker.apply_payment("inv-1", 100)
        tracker.apply_payment("inv-1", 100)

        statuses = [e.new_status for e in tracker.list_events("inv-1")]
        assert statuses.count(InvoiceStatus.PARTIALLY_PAID) == 1

    def test_full_payment_before_financing(self, tracker, issue_invoice):
        issue_invoice("inv-1", amount=500)
        assert tracker.apply_payment("inv-1", 500).status == InvoiceStatus.PAID

    def test_partial_payment_before_financing_rejected(self, tracker, issue_invoice):
        issue_invoice("inv-1", amount=500)
        with pytest.raises(InvalidTransitionError):
            tracker.apply_payment("inv-1", 100)
        assert tracker.get_invoice("inv-1").cumulative_paid == 0

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_payment_rejected(self, tracker, financed_invoice, amount):
        financed_invoice("inv-1")
        with pytest.raises(InvalidAmountError):
            tracker.apply_payment("inv-1", amount)


class TestListeners:

    def test_listener_receives_committed_events(self, tracker, issue_invoice):
        seen = []
        tracker.add_listener(seen.append)
        issue_invoice("inv-1")
        tracker.apply_status_transition("inv-1", "FINANCED")

        assert [e.new_status for e in seen] == [InvoiceStatus.ISSUED, InvoiceStatus.FINANCED]

        tracker.remove_listener(seen.append)
        tracker.apply_status_transition("inv-1", "DEFAULTED")
        assert len(seen) == 2

    def test_failing_listener_does_not_undo_transition(
        self, tracker, issue_invoice, captured_logs,
    ):
        def broken(event):
            raise RuntimeError("listener down")

        tracker.add_listener(broken)
        issue_invoice("inv-1")

        assert tracker.get_invoice("inv-1").status == InvoiceStatus.ISSUED
        failures = [r for r in captured_logs() if r["message"] == "lifecycle_listener_failed"]
        assert len(failures) == 1
        assert failures[0]["exc_message"] == "listener down"

    def test_issuance_logged_with_invoice_context(self, issue_invoice, captured_logs):
        issue_invoice("inv-1", amount=1000)
        records = [r for r in captured_logs() if r["message"] == "invoice_issued"]
        assert records[0]["invoice_id"] == "inv-1"
        assert records[0]["amount"] == 1000
