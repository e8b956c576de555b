"""
Contract tests run against every LedgerStore backend.

Declared-key enforcement, all-or-nothing commits, read-your-writes inside
a transaction, 256-bit round trips and deterministic list ordering.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from financing_kernel.domain.types import (
    CollateralPosition,
    Invoice,
    InvoicePayment,
    InvoiceStatus,
    LifecycleEvent,
    PoolAccount,
    PoolState,
    SettlementExecution,
    SettlementRule,
    YieldAccount,
)
from financing_kernel.domain.values import UINT256_MAX
from financing_kernel.store.base import (
    canonical_keys,
    format_key,
    invoice_key,
    pool_account_key,
    pool_key,
    position_key,
    rule_key,
    yield_key,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _invoice(invoice_id="inv-1", amount=1000, status=InvoiceStatus.ISSUED) -> Invoice:
    return Invoice(
        invoice_id=invoice_id,
        issuer="issuer",
        debtor="debtor",
        amount=amount,
        currency="USDC",
        due_date=T0 + timedelta(days=30),
        status=status,
        created_at=T0,
        updated_at=T0,
    )


class TestKeys:

    def test_format_key(self):
        assert format_key(yield_key("0xabc", "pool-1")) == "yield:pool-1:0xabc"

    def test_canonical_keys_sorted_and_deduplicated(self):
        keys = canonical_keys([pool_key("p"), invoice_key("i"), pool_key("p")])
        assert keys == (invoice_key("i"), pool_key("p"))


class TestTransactionContract:

    def test_commit_visible_after_exit(self, any_store):
        with any_store.transaction(invoice_key("inv-1")) as txn:
            txn.put_invoice(_invoice())
            assert txn.get_invoice("inv-1").amount == 1000

        assert any_store.get_invoice("inv-1") == _invoice()

    def test_exception_discards_every_write(self, any_store):
        with pytest.raises(RuntimeError):
            with any_store.transaction(invoice_key("inv-1"), pool_key("pool-1")) as txn:
                txn.put_invoice(_invoice())
                txn.put_pool(PoolState("pool-1", 100, 0))
                raise RuntimeError("abort")

        assert any_store.get_invoice("inv-1") is None
        assert any_store.get_pool("pool-1") is None

    def test_undeclared_key_rejected(self, any_store):
        with pytest.raises(ValueError, match="not declared"):
            with any_store.transaction(invoice_key("inv-1")) as txn:
                txn.put_pool(PoolState("pool-1"))
        assert any_store.get_pool("pool-1") is None

    def test_update_existing_record(self, any_store):
        with any_store.transaction(invoice_key("inv-1")) as txn:
            txn.put_invoice(_invoice())
        with any_store.transaction(invoice_key("inv-1")) as txn:
            invoice = txn.get_invoice("inv-1")
            txn.put_invoice(
                replace(invoice, cumulative_paid=400, status=InvoiceStatus.PARTIALLY_PAID)
            )

        stored = any_store.get_invoice("inv-1")
        assert stored.cumulative_paid == 400
        assert stored.status == InvoiceStatus.PARTIALLY_PAID

    def test_duplicate_keys_declared_once(self, any_store):
        with any_store.transaction(pool_key("p"), pool_key("p")) as txn:
            txn.put_pool(PoolState("p", 1, 0))
        assert any_store.get_pool("p").total_liquidity == 1


class TestRoundTrips:

    def test_uint256_values(self, any_store):
        with any_store.transaction(pool_key("p"), yield_key("w", "p")) as txn:
            txn.put_pool(PoolState("p", UINT256_MAX, UINT256_MAX - 1))
            txn.put_yield_account(
                YieldAccount("w", "p", accrued_yield=UINT256_MAX, carry=10**18 - 1,
                             last_accrued_at=T0, total_claimed=2**200)
            )

        assert any_store.get_pool("p") == PoolState("p", UINT256_MAX, UINT256_MAX - 1)
        account = any_store.get_yield_account("w", "p")
        assert account.accrued_yield == UINT256_MAX
        assert account.carry == 10**18 - 1
        assert account.total_claimed == 2**200
        assert account.last_accrued_at == T0
        assert account.last_accrued_at.tzinfo is not None

    def test_position_and_rule(self, any_store):
        position = CollateralPosition(
            invoice_id="inv-1", pool_id="p", token_id="7", owner="o",
            face_value=10_000, ltv_bps=6000, credit_limit=6000, used_credit=10,
            exists=False, liquidated=True, created_at=T0, updated_at=T0,
        )
        rule = SettlementRule(
            rule_id="r", invoice_id="inv-1", payer="payer",
            recipients=("a", "b"), bps_split=(7000, 3000), active=False, created_at=T0,
        )
        with any_store.transaction(position_key("inv-1"), rule_key("r")) as txn:
            txn.put_position(position)
            txn.put_rule(rule)

        assert any_store.get_position("inv-1") == position
        assert any_store.get_rule("r") == rule

    def test_pool_accounts_listed_by_wallet(self, any_store):
        keys = [pool_account_key(w, "p") for w in ("w2", "w1")] + [pool_account_key("w0", "q")]
        with any_store.transaction(*keys) as txn:
            txn.put_pool_account(PoolAccount("w2", "p", 2))
            txn.put_pool_account(PoolAccount("w1", "p", 1))
            txn.put_pool_account(PoolAccount("w0", "q", 9))

        assert [a.wallet for a in any_store.list_pool_accounts("p")] == ["w1", "w2"]
        assert any_store.get_pool_account("w0", "q").share_balance == 9


class TestAppendStreams:

    def test_lifecycle_and_payments_in_append_order(self, any_store):
        with any_store.transaction(invoice_key("inv-1")) as txn:
            txn.put_invoice(_invoice())
            txn.append_lifecycle_event(LifecycleEvent(
                "e1", "inv-1", InvoiceStatus.NONE, InvoiceStatus.ISSUED, T0,
            ))
        with any_store.transaction(invoice_key("inv-1")) as txn:
            txn.append_lifecycle_event(LifecycleEvent(
                "e2", "inv-1", InvoiceStatus.ISSUED, InvoiceStatus.FINANCED, T0,
            ))
            txn.append_payment(InvoicePayment("p1", "inv-1", 10, 10, T0))
            txn.append_payment(InvoicePayment("p2", "inv-1", 5, 15, T0))

        assert [e.event_id for e in any_store.list_lifecycle_events("inv-1")] == ["e1", "e2"]
        assert [p.payment_id for p in any_store.list_payments("inv-1")] == ["p1", "p2"]
        assert any_store.list_payments("inv-2") == []

    def test_append_on_rolled_back_transaction_discarded(self, any_store):
        with pytest.raises(RuntimeError):
            with any_store.transaction(invoice_key("inv-1")) as txn:
                txn.put_invoice(_invoice())
                txn.append_payment(InvoicePayment("p1", "inv-1", 10, 10, T0))
                raise RuntimeError("abort")
        assert any_store.list_payments("inv-1") == []

    def test_executions(self, any_store):
        rule = SettlementRule("r", "inv-1", "payer", ("a",), (10_000,))
        with any_store.transaction(rule_key("r")) as txn:
            txn.put_rule(rule)
            assert txn.count_executions("r") == 0
            txn.append_execution(SettlementExecution("r-1", "r", "inv-1", 5, "USDC", T0, 1))
            assert txn.count_executions("r") == 1
            assert txn.get_execution("r", "r-1").gross_amount == 5

        with any_store.transaction(rule_key("r")) as txn:
            assert txn.get_execution("r", "missing") is None
            txn.append_execution(
                SettlementExecution("r-2", "r", "inv-1", 7, "USDC", T0 + timedelta(seconds=1), 2)
            )

        assert [e.sequence for e in any_store.list_executions("r")] == [1, 2]
        assert len(any_store.list_executions()) == 2

    def test_list_invoices_filtered(self, any_store):
        with any_store.transaction(invoice_key("a"), invoice_key("b")) as txn:
            txn.put_invoice(_invoice("b", status=InvoiceStatus.FINANCED))
            txn.put_invoice(_invoice("a"))

        assert [i.invoice_id for i in any_store.list_invoices()] == ["a", "b"]
        assert [i.invoice_id for i in any_store.list_invoices(InvoiceStatus.FINANCED)] == ["b"]
