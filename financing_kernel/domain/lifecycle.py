"""
Invoice lifecycle rules -- pure transition validation.

The status enum mirrors the on-chain registry ordering.  Transitions only
move forward along that ordering; ``DEFAULTED`` is reachable from any
non-terminal status.  ``PAID`` and ``DEFAULTED`` are terminal.
"""

from __future__ import annotations

from financing_kernel.domain.types import Invoice, InvoiceStatus
from financing_kernel.exceptions import InvalidTransitionError

STATUS_ORDER: tuple[InvoiceStatus, ...] = (
    InvoiceStatus.NONE,
    InvoiceStatus.ISSUED,
    InvoiceStatus.TOKENIZED,
    InvoiceStatus.FINANCED,
    InvoiceStatus.PARTIALLY_PAID,
    InvoiceStatus.PAID,
)

_RANK = {status: rank for rank, status in enumerate(STATUS_ORDER)}

TERMINAL_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.DEFAULTED})

# Partial payments only make sense once the invoice has been financed.
PARTIAL_PAYMENT_SOURCES = frozenset({
    InvoiceStatus.FINANCED,
    InvoiceStatus.PARTIALLY_PAID,
})

# Registry enum integer codes, as emitted by contract events.
STATUS_CODES: dict[int, InvoiceStatus] = {
    0: InvoiceStatus.NONE,
    1: InvoiceStatus.ISSUED,
    2: InvoiceStatus.TOKENIZED,
    3: InvoiceStatus.FINANCED,
    4: InvoiceStatus.PARTIALLY_PAID,
    5: InvoiceStatus.PAID,
    6: InvoiceStatus.DEFAULTED,
}


def parse_status(value: InvoiceStatus | str | int) -> InvoiceStatus:
    """Coerce an enum, its name, or its registry code into InvoiceStatus."""
    if isinstance(value, InvoiceStatus):
        return value
    if isinstance(value, int):
        try:
            return STATUS_CODES[value]
        except KeyError:
            raise ValueError(f"Unknown invoice status code: {value}") from None
    return InvoiceStatus(value.upper())


def is_terminal(status: InvoiceStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_forward(current: InvoiceStatus, new: InvoiceStatus) -> bool:
    """True when ``new`` ranks strictly after ``current`` in STATUS_ORDER."""
    if current not in _RANK or new not in _RANK:
        return False
    return _RANK[new] > _RANK[current]


def validate_transition(invoice: Invoice, new_status: InvoiceStatus) -> None:
    """
    Check that ``invoice`` may move to ``new_status``.

    Raises:
        InvalidTransitionError: target is NONE, source is terminal, the move
            is backwards or sideways, PAID without full payment, or
            PARTIALLY_PAID without a partial payment.
    """
    current = invoice.status

    def reject(reason: str) -> InvalidTransitionError:
        return InvalidTransitionError(
            invoice.invoice_id, current.value, new_status.value, reason
        )

    if new_status == InvoiceStatus.NONE:
        raise reject("NONE is not a reachable status")
    if is_terminal(current):
        raise reject(f"{current.value} is terminal")
    if new_status == InvoiceStatus.DEFAULTED:
        return
    if not is_forward(current, new_status):
        raise reject("status may only move forward")
    if new_status == InvoiceStatus.PAID and invoice.cumulative_paid != invoice.amount:
        raise reject(
            f"cumulative_paid {invoice.cumulative_paid} != amount {invoice.amount}"
        )
    if new_status == InvoiceStatus.PARTIALLY_PAID and not (
        0 < invoice.cumulative_paid < invoice.amount
    ):
        raise reject(
            f"PARTIALLY_PAID needs 0 < cumulative_paid < amount, "
            f"got {invoice.cumulative_paid} of {invoice.amount}"
        )


def status_after_payment(invoice: Invoice, new_cumulative: int) -> InvoiceStatus:
    """
    Status an invoice takes once ``new_cumulative`` has been paid.

    Preconditions:
        ``0 < new_cumulative <= invoice.amount`` (overpayment already rejected).

    Raises:
        InvalidTransitionError: payment on a terminal invoice, or a partial
            payment before the invoice is financed.
    """
    current = invoice.status
    if new_cumulative == invoice.amount:
        target = InvoiceStatus.PAID
        if is_terminal(current):
            raise InvalidTransitionError(
                invoice.invoice_id, current.value, target.value, f"{current.value} is terminal"
            )
        return target

    target = InvoiceStatus.PARTIALLY_PAID
    if current not in PARTIAL_PAYMENT_SOURCES:
        raise InvalidTransitionError(
            invoice.invoice_id,
            current.value,
            target.value,
            "partial payment requires FINANCED or PARTIALLY_PAID",
        )
    return target
