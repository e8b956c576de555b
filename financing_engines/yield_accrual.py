"""
financing_engines.yield_accrual -- Fixed-point liquidity-provider yield math.

Responsibility:
    Per-tick rate derivation, elapsed-tick counting and the accrual step
    for one account.  All values are integers; rates are scaled by WAD
    (10**18) and every division truncates.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Timestamps are passed in;
    nothing here reads a clock.

Invariants enforced:
    - Additivity with carry: accruing t1 ticks then t2 ticks yields the
      same total as t1 + t2 ticks at once (the sub-unit remainder is
      carried, never dropped).
    - Without carry the result is ``ticks * floor(share * rate / WAD)``,
      i.e. the per-tick floor applied once per tick.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta

from financing_engines.tracer import traced_engine
from financing_kernel.domain.types import PoolTerms, YieldAccount
from financing_kernel.domain.values import BPS_DENOMINATOR, WAD, checked_uint256

SECONDS_PER_YEAR = 365 * 86_400

_ONE_MICROSECOND = timedelta(microseconds=1)


def ticks_per_year(tick_seconds: int) -> int:
    if tick_seconds <= 0:
        raise ValueError(f"tick_seconds must be positive, got {tick_seconds}")
    return SECONDS_PER_YEAR // tick_seconds


def rate_per_tick_wad(annual_rate_bps: int, tick_seconds: int) -> int:
    """
    Per-tick rate scaled by WAD.

    5% APY (500 bps) over 60-second ticks: 95129375951.
    """
    if annual_rate_bps < 0:
        raise ValueError(f"annual_rate_bps must not be negative, got {annual_rate_bps}")
    return annual_rate_bps * WAD // (BPS_DENOMINATOR * ticks_per_year(tick_seconds))


def elapsed_ticks(
    last_accrued_at: datetime | None,
    now: datetime,
    tick_seconds: int,
) -> int:
    """
    Whole ticks between the checkpoint and ``now``.

    A never-accrued account (``last_accrued_at is None``) counts as one
    tick.  A checkpoint at or after ``now`` counts as zero.
    """
    if last_accrued_at is None:
        return 1
    elapsed_us = (now - last_accrued_at) // _ONE_MICROSECOND
    if elapsed_us <= 0:
        return 0
    return elapsed_us // (tick_seconds * 1_000_000)


def advance_checkpoint(
    last_accrued_at: datetime | None,
    now: datetime,
    ticks: int,
    tick_seconds: int,
) -> datetime:
    """New checkpoint after accruing ``ticks``; partial ticks stay pending."""
    if last_accrued_at is None:
        return now
    return last_accrued_at + timedelta(seconds=ticks * tick_seconds)


@traced_engine(
    "yield_accrual",
    "1.0",
    fingerprint_fields=("share_balance", "rate_wad", "ticks", "carry"),
    level=logging.DEBUG,
)
def compute_accrual(
    share_balance: int,
    rate_wad: int,
    ticks: int,
    carry: int = 0,
    carry_remainder: bool = True,
) -> tuple[int, int]:
    """
    Yield earned by ``share_balance`` over ``ticks``.

    Returns:
        ``(yield_amount, new_carry)``.  With ``carry_remainder`` the
        numerator ``share * rate * ticks + carry`` is split into whole
        units and a remainder below WAD; otherwise each tick is floored
        independently and the carry is always 0.
    """
    if share_balance < 0 or rate_wad < 0 or ticks < 0 or carry < 0:
        raise ValueError("accrual inputs must not be negative")
    if ticks == 0 or share_balance == 0:
        return 0, carry if carry_remainder else 0

    if carry_remainder:
        numerator = share_balance * rate_wad * ticks + carry
        return numerator // WAD, numerator % WAD
    return ticks * (share_balance * rate_wad // WAD), 0


def accrue_account(
    account: YieldAccount,
    share_balance: int,
    rate_wad: int,
    terms: PoolTerms,
    now: datetime,
) -> tuple[YieldAccount, int, int]:
    """
    Bring ``account`` up to ``now`` assuming ``share_balance`` was held
    for every pending tick.

    Returns:
        ``(account, ticks, yield_amount)``.  With no whole tick elapsed the
        input account is returned unchanged.

    Raises:
        ArithmeticOverflowError: accrued yield would exceed uint256.
    """
    ticks = elapsed_ticks(account.last_accrued_at, now, terms.tick_seconds)
    if ticks == 0:
        return account, 0, 0

    amount, carry = compute_accrual(
        share_balance, rate_wad, ticks, account.carry, terms.carry_remainder,
    )
    updated = replace(
        account,
        accrued_yield=checked_uint256("accrued_yield", account.accrued_yield + amount),
        carry=carry,
        last_accrued_at=advance_checkpoint(
            account.last_accrued_at, now, ticks, terms.tick_seconds,
        ),
    )
    return updated, ticks, amount
