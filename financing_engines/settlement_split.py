"""
financing_engines.settlement_split -- Basis-point split of settlement proceeds.

Responsibility:
    Divide a gross settlement amount among a rule's recipients by basis
    points using truncating integer division.  The truncation remainder
    is assigned deterministically to the LAST recipient, so allocations
    always sum to the gross amount.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Conservation: ``sum(a.amount for a in allocations) == gross_amount``.
    - Rule shape: equal-length recipients / bps, each bps in [0, 10000],
      total bps <= 10000, at least one recipient, no duplicate recipient.

Failure modes:
    - RuleInactiveError for a deactivated rule.
    - InvalidRuleError / DuplicateRecipientError for a malformed rule.
    - InvalidAmountError for a negative gross amount.
    - ArithmeticOverflowError for a gross amount beyond uint256.
"""

from __future__ import annotations

from collections.abc import Sequence

from financing_engines.tracer import traced_engine
from financing_kernel.domain.types import SettlementRule, SplitAllocation
from financing_kernel.domain.values import BPS_DENOMINATOR, apply_bps, checked_uint256
from financing_kernel.exceptions import (
    DuplicateRecipientError,
    InvalidAmountError,
    InvalidRuleError,
    RuleInactiveError,
)


def validate_rule_shape(
    recipients: Sequence[str],
    bps_split: Sequence[int],
    rule_id: str | None = None,
) -> None:
    """
    Check recipient/bps shape.

    Raises:
        InvalidRuleError: no recipients, length mismatch, bps out of range
            or total over 10000.
        DuplicateRecipientError: a recipient appears twice.
    """
    if not recipients:
        raise InvalidRuleError("rule has no recipients", rule_id)
    if len(recipients) != len(bps_split):
        raise InvalidRuleError(
            f"{len(recipients)} recipients but {len(bps_split)} bps entries", rule_id
        )
    for bps in bps_split:
        if not isinstance(bps, int) or isinstance(bps, bool):
            raise InvalidRuleError(f"bps {bps!r} is not an integer", rule_id)
        if not 0 <= bps <= BPS_DENOMINATOR:
            raise InvalidRuleError(f"bps {bps} outside 0..{BPS_DENOMINATOR}", rule_id)
    total = sum(bps_split)
    if total > BPS_DENOMINATOR:
        raise InvalidRuleError(f"total bps {total} exceeds {BPS_DENOMINATOR}", rule_id)

    seen: set[str] = set()
    for recipient in recipients:
        if not recipient:
            raise InvalidRuleError("empty recipient", rule_id)
        if recipient in seen:
            raise DuplicateRecipientError(recipient)
        seen.add(recipient)


@traced_engine("settlement_split", "1.0", fingerprint_fields=("gross_amount", "rule"))
def compute_split(gross_amount: int, rule: SettlementRule) -> tuple[SplitAllocation, ...]:
    """
    Split ``gross_amount`` across ``rule.recipients``.

    ``amount_i = gross * bps_i // 10000`` for every recipient; the last
    recipient additionally receives ``gross - sum(amount_i)``.  When the
    rule's bps total less than 10000 the undistributed share also lands on
    the last recipient.

    Example:
        bps (5000, 3000, 2000) over 101 -> 50, 30, 21.
    """
    if not rule.active:
        raise RuleInactiveError(rule.rule_id)
    validate_rule_shape(rule.recipients, rule.bps_split, rule.rule_id)
    if gross_amount < 0:
        raise InvalidAmountError("gross_amount", gross_amount, "must not be negative")
    checked_uint256("gross_amount", gross_amount)

    amounts = [apply_bps(gross_amount, bps) for bps in rule.bps_split]
    amounts[-1] += gross_amount - sum(amounts)

    return tuple(
        SplitAllocation(recipient=recipient, bps=bps, amount=amount)
        for recipient, bps, amount in zip(rule.recipients, rule.bps_split, amounts)
    )
