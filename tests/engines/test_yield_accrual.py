"""
Tests for financing_engines.yield_accrual.

Fixed-point rate derivation, tick counting and the carry/no-carry
accrual step.
"""

from datetime import datetime, timedelta, timezone

import pytest

from financing_engines.yield_accrual import (
    accrue_account,
    advance_checkpoint,
    compute_accrual,
    elapsed_ticks,
    rate_per_tick_wad,
    ticks_per_year,
)
from financing_kernel.domain.types import PoolTerms, YieldAccount
from financing_kernel.domain.values import UINT256_MAX, WAD
from financing_kernel.exceptions import ArithmeticOverflowError

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

RATE_500_BPS_60S = 95_129_375_951


class TestRate:

    def test_ticks_per_year(self):
        assert ticks_per_year(60) == 525_600
        assert ticks_per_year(86_400) == 365

    def test_rate_per_tick_5_percent_minute_ticks(self):
        assert rate_per_tick_wad(500, 60) == RATE_500_BPS_60S

    def test_zero_rate(self):
        assert rate_per_tick_wad(0, 60) == 0

    def test_invalid_inputs(self):
        with pytest.raises(ValueError):
            ticks_per_year(0)
        with pytest.raises(ValueError):
            rate_per_tick_wad(-1, 60)


class TestElapsedTicks:

    def test_never_accrued_counts_one_tick(self):
        assert elapsed_ticks(None, T0, 60) == 1

    def test_whole_ticks_only(self):
        assert elapsed_ticks(T0, T0 + timedelta(seconds=59), 60) == 0
        assert elapsed_ticks(T0, T0 + timedelta(seconds=60), 60) == 1
        assert elapsed_ticks(T0, T0 + timedelta(seconds=179), 60) == 2

    def test_checkpoint_in_future_is_zero(self):
        assert elapsed_ticks(T0, T0 - timedelta(seconds=600), 60) == 0

    def test_advance_checkpoint_keeps_partial_tick(self):
        now = T0 + timedelta(seconds=150)
        assert advance_checkpoint(T0, now, 2, 60) == T0 + timedelta(seconds=120)

    def test_advance_checkpoint_first_accrual_is_now(self):
        assert advance_checkpoint(None, T0, 1, 60) == T0


class TestComputeAccrual:

    def test_one_wad_of_shares_one_tick(self):
        assert compute_accrual(WAD, RATE_500_BPS_60S, 1) == (RATE_500_BPS_60S, 0)

    def test_carry_accumulates_sub_unit_remainder(self):
        # 1 share earns 95129375951 / 1e18 units per tick: all carry.
        amount, carry = compute_accrual(1, RATE_500_BPS_60S, 1)
        assert amount == 0
        assert carry == RATE_500_BPS_60S

        amount, carry = compute_accrual(1, RATE_500_BPS_60S, 1, carry)
        assert amount == 0
        assert carry == 2 * RATE_500_BPS_60S

    def test_carry_crosses_unit_boundary(self):
        amount, carry = compute_accrual(1, 1, 1, WAD - 1)
        assert (amount, carry) == (1, 0)

    def test_without_carry_floors_each_tick(self):
        shares = WAD + WAD // 2
        per_tick = shares * RATE_500_BPS_60S // WAD
        assert compute_accrual(shares, RATE_500_BPS_60S, 3, carry_remainder=False) == (
            3 * per_tick, 0,
        )

    def test_zero_ticks_or_shares_preserve_carry(self):
        assert compute_accrual(WAD, RATE_500_BPS_60S, 0, 17) == (0, 17)
        assert compute_accrual(0, RATE_500_BPS_60S, 5, 17) == (0, 17)
        assert compute_accrual(0, RATE_500_BPS_60S, 5, 17, carry_remainder=False) == (0, 0)

    def test_negative_input_rejected(self):
        with pytest.raises(ValueError):
            compute_accrual(-1, RATE_500_BPS_60S, 1)

    def test_traces_at_debug(self, captured_logs):
        compute_accrual(WAD, RATE_500_BPS_60S, 1)
        traces = [
            r for r in captured_logs()
            if r["message"] == "FINANCING_ENGINE_TRACE" and r["engine_name"] == "yield_accrual"
        ]
        assert len(traces) == 1
        assert traces[0]["level"] == "DEBUG"


class TestAccrueAccount:

    TERMS = PoolTerms(pool_id="pool-1")

    def test_whole_ticks_applied(self):
        account = YieldAccount(wallet="0xa1", pool_id="pool-1", last_accrued_at=T0)

        updated, ticks, amount = accrue_account(
            account, WAD, RATE_500_BPS_60S, self.TERMS, T0 + timedelta(seconds=150),
        )

        assert (ticks, amount) == (2, 2 * RATE_500_BPS_60S)
        assert updated.accrued_yield == 2 * RATE_500_BPS_60S
        assert updated.last_accrued_at == T0 + timedelta(seconds=120)

    def test_no_elapsed_tick_returns_same_account(self):
        account = YieldAccount(wallet="0xa1", pool_id="pool-1", last_accrued_at=T0)
        result = accrue_account(account, WAD, RATE_500_BPS_60S, self.TERMS, T0)
        assert result == (account, 0, 0)

    def test_overflow_rejected(self):
        account = YieldAccount(
            wallet="0xa1", pool_id="pool-1", accrued_yield=UINT256_MAX, last_accrued_at=T0,
        )
        with pytest.raises(ArithmeticOverflowError):
            accrue_account(
                account, WAD, RATE_500_BPS_60S, self.TERMS, T0 + timedelta(seconds=60),
            )
