"""
Concurrency tests for the ledger services on the in-memory store.

Threads are released together through a Barrier so that every
read-modify-write races for the same key locks.  Totals afterwards must
match a serial execution: no lost update, no limit overshoot, no
duplicate sequence.

Skip with: pytest -m "not slow_locks"
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from financing_kernel.domain.types import InvoiceStatus
from financing_kernel.domain.values import WAD
from financing_kernel.exceptions import (
    CreditLimitExceededError,
    InsufficientYieldError,
    OverpaymentError,
    PoolUtilizationExceededError,
)

pytestmark = pytest.mark.slow_locks

PER_TICK = 95_129_375_951
ALICE = "0xa1"


def _race(num_threads, fn):
    """Run ``fn(i)`` on ``num_threads`` threads released together.

    Returns (results, errors) where errors are the raised exceptions.
    """
    barrier = Barrier(num_threads, timeout=30)

    def worker(i):
        barrier.wait()
        try:
            return fn(i), None
        except Exception as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=num_threads) as executor:
        outcomes = list(executor.map(worker, range(num_threads)))
    results = [r for r, e in outcomes if e is None]
    errors = [e for r, e in outcomes if e is not None]
    return results, errors


class TestCreditRaces:

    def test_concurrent_draws_respect_pool_utilization(self, accountant):
        # 10_000 liquidity at 80% utilization admits exactly 8 draws of 1000
        accountant.deposit_liquidity(10_000)
        for i in range(20):
            accountant.lock_collateral(f"inv-{i}", str(i), "company", 10_000)

        results, errors = _race(20, lambda i: accountant.draw(f"inv-{i}", 1000))

        assert len(results) == 8
        assert len(errors) == 12
        assert all(isinstance(e, PoolUtilizationExceededError) for e in errors)
        assert accountant.pool_state().total_borrowed == 8000
        assert sum(p.used_credit for p in accountant.list_positions()) == 8000

    def test_concurrent_draws_respect_credit_limit(self, accountant):
        accountant.deposit_liquidity(1_000_000)
        accountant.lock_collateral("inv-1", "1", "company", 10_000)

        results, errors = _race(10, lambda i: accountant.draw("inv-1", 1000))

        assert sorted(results) == [1000, 2000, 3000, 4000, 5000, 6000]
        assert all(isinstance(e, CreditLimitExceededError) for e in errors)
        assert accountant.get_position("inv-1").used_credit == 6000
        assert accountant.pool_state().total_borrowed == 6000

    def test_concurrent_repay_and_draw_balance(self, accountant):
        accountant.deposit_liquidity(1_000_000)
        accountant.lock_collateral("inv-1", "1", "company", 10_000)
        accountant.draw("inv-1", 5000)

        def step(i):
            if i % 2:
                return accountant.repay("inv-1", 100)
            return accountant.draw("inv-1", 100)

        _, errors = _race(20, step)

        assert errors == []
        assert accountant.get_position("inv-1").used_credit == 5000
        assert accountant.pool_state().total_borrowed == 5000


class TestPaymentRaces:

    def test_concurrent_payments_never_overpay(self, tracker, financed_invoice):
        financed_invoice("inv-1", amount=1000)

        results, errors = _race(20, lambda i: tracker.apply_payment("inv-1", 100))

        assert len(results) == 10
        assert all(isinstance(e, OverpaymentError) for e in errors)

        invoice = tracker.get_invoice("inv-1")
        assert invoice.cumulative_paid == 1000
        assert invoice.status == InvoiceStatus.PAID
        payments = tracker.list_payments("inv-1")
        assert [p.cumulative_paid for p in payments] == list(range(100, 1001, 100))

    def test_one_event_per_status_change(self, tracker, financed_invoice):
        financed_invoice("inv-1", amount=1000)

        _race(10, lambda i: tracker.apply_payment("inv-1", 100))

        statuses = [e.new_status for e in tracker.list_events("inv-1")]
        assert statuses.count(InvoiceStatus.PARTIALLY_PAID) == 1
        assert statuses.count(InvoiceStatus.PAID) == 1


class TestYieldRaces:

    def test_claims_interleaved_with_accrual(
        self, yield_ledger, accrual_engine, deterministic_clock,
    ):
        yield_ledger.set_share_balance(ALICE, "pool-1", WAD)
        accrual_engine.run_cycle("pool-1")

        def step(i):
            if i == 0:
                for _ in range(5):
                    deterministic_clock.advance(60)
                    accrual_engine.run_cycle("pool-1")
                return 0
            return yield_ledger.claim_yield(ALICE, "pool-1", 1000)

        results, errors = _race(11, step)

        assert all(isinstance(e, InsufficientYieldError) for e in errors)
        claimed = sum(results)
        account = yield_ledger.get_yield_account(ALICE, "pool-1")
        assert account.total_claimed == claimed == 10_000
        assert account.accrued_yield + account.total_claimed == 6 * PER_TICK

    def test_concurrent_claim_all(self, yield_ledger, accrual_engine):
        yield_ledger.set_share_balance(ALICE, "pool-1", WAD)
        accrual_engine.run_cycle("pool-1")

        results, errors = _race(8, lambda i: yield_ledger.claim_yield(ALICE, "pool-1"))

        assert errors == []
        assert sorted(results, reverse=True)[0] == PER_TICK
        assert sum(results) == PER_TICK
        assert yield_ledger.get_yield_account(ALICE, "pool-1").accrued_yield == 0


class TestSettlementRaces:

    def test_concurrent_executions_get_unique_sequences(self, splitter, issue_invoice):
        issue_invoice("inv-1")
        splitter.create_rule("inv-1", "payer", ["a", "b"], [5000, 5000], rule_id="rule-1")

        results, errors = _race(16, lambda i: splitter.execute("rule-1", 100 + i))

        assert errors == []
        sequences = sorted(r.execution.sequence for r in results)
        assert sequences == list(range(1, 17))
        assert len({r.execution.execution_id for r in results}) == 16

    def test_concurrent_replay_recorded_once(self, splitter, issue_invoice):
        issue_invoice("inv-1")
        splitter.create_rule("inv-1", "payer", ["a"], [10_000], rule_id="rule-1")

        results, errors = _race(
            8,
            lambda i: splitter.record_execution(
                "rule-1", "inv-1", 500, tx_hash="0xabc", log_index=0,
            ),
        )

        assert errors == []
        assert len({r.execution_id for r in results}) == 1
        assert len(splitter.list_executions("rule-1")) == 1
