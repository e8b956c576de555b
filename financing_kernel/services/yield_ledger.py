"""
YieldLedger -- omnibus share balances and the claim side of LP yield.

The accrual side lives in ``financing_batch.services.accrual_engine``;
both write the same ``YieldAccount`` records under ``yield_key`` so a
claim and a concurrent accrual serialize instead of overwriting.

A balance change first settles the account's pending whole ticks at the
balance held until now, then writes the new balance.  An account whose
old balance was zero has its checkpoint restarted instead, so ticks spent
without shares never earn yield.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import datetime

from financing_engines.yield_accrual import accrue_account, rate_per_tick_wad
from financing_kernel.domain.clock import Clock
from financing_kernel.domain.types import PoolAccount, PoolTerms, YieldAccount
from financing_kernel.domain.values import checked_uint256, normalize_entity_id, require_positive
from financing_kernel.exceptions import (
    InsufficientYieldError,
    InvalidAmountError,
    PoolNotFoundError,
)
from financing_kernel.logging_config import get_logger
from financing_kernel.services.base import LedgerService
from financing_kernel.store.base import (
    LedgerStore,
    LedgerTransaction,
    pool_account_key,
    yield_key,
)

logger = get_logger("services.yield_ledger")


def _checked_balance(wallet: str, share_balance: int) -> int:
    if not isinstance(share_balance, int) or isinstance(share_balance, bool):
        raise InvalidAmountError("share_balance", share_balance, "must be an integer")
    return checked_uint256(f"share_balance[{wallet}]", share_balance)


class YieldLedger(LedgerService):
    """Share balances per (wallet, pool) and accrued-yield claims.

    Args:
        store: Ledger store.
        clock: Time source for settlement checkpoints.
        terms_by_pool: Pool terms used to settle pending yield when a
            non-zero balance changes.
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Clock | None = None,
        terms_by_pool: Mapping[str, PoolTerms] | None = None,
    ):
        super().__init__(store, clock)
        self._terms = {
            normalize_entity_id(pool_id): terms
            for pool_id, terms in (terms_by_pool or {}).items()
        }

    def set_share_balance(self, wallet: str, pool_id: str, share_balance: int) -> PoolAccount:
        """
        Overwrite a wallet's share balance in a pool.

        Raises:
            InvalidAmountError: negative balance.
            PoolNotFoundError: pending yield must be settled for a pool
                with no configured terms.
        """
        pool_id = normalize_entity_id(pool_id)
        _checked_balance(wallet, share_balance)
        account = PoolAccount(wallet=wallet, pool_id=pool_id, share_balance=share_balance)
        now = self.clock.now()
        with self.store.transaction(
            pool_account_key(wallet, pool_id), yield_key(wallet, pool_id),
        ) as txn:
            self._settle_pending(txn, wallet, pool_id, now)
            txn.put_pool_account(account)

        logger.debug(
            "share_balance_set",
            extra={"wallet": wallet, "pool_id": pool_id, "share_balance": share_balance},
        )
        return account

    def apply_pool_snapshot(
        self,
        pool_id: str,
        rows: Mapping[str, int] | Iterable[tuple[str, int]],
    ) -> int:
        """
        Import an omnibus snapshot of ``wallet -> share_balance`` rows.

        All rows are validated before anything is written, then written in
        one transaction.  Wallets absent from the snapshot keep their
        current balance.

        Returns:
            Number of accounts written.

        Raises:
            InvalidAmountError: any negative balance (nothing is written).
        """
        pool_id = normalize_entity_id(pool_id)
        items = list(rows.items() if isinstance(rows, Mapping) else rows)
        balances: dict[str, int] = {}
        for wallet, share_balance in items:
            balances[wallet] = _checked_balance(wallet, share_balance)
        if not balances:
            return 0

        keys = []
        for wallet in balances:
            keys += [pool_account_key(wallet, pool_id), yield_key(wallet, pool_id)]
        now = self.clock.now()
        with self.store.transaction(*keys) as txn:
            for wallet, share_balance in balances.items():
                self._settle_pending(txn, wallet, pool_id, now)
                txn.put_pool_account(
                    PoolAccount(wallet=wallet, pool_id=pool_id, share_balance=share_balance)
                )

        logger.info(
            "pool_snapshot_applied",
            extra={"pool_id": pool_id, "accounts": len(balances)},
        )
        return len(balances)

    def claim_yield(self, wallet: str, pool_id: str, amount: int | None = None) -> int:
        """
        Subtract claimed yield from a wallet's accrued balance.

        ``amount=None`` claims everything accrued (possibly 0).

        Returns:
            The amount claimed.

        Raises:
            InvalidAmountError: ``amount <= 0``.
            InsufficientYieldError: more than accrued.
        """
        pool_id = normalize_entity_id(pool_id)
        if amount is not None:
            require_positive("amount", amount)

        with self.store.transaction(yield_key(wallet, pool_id)) as txn:
            account = txn.get_yield_account(wallet, pool_id) or YieldAccount(
                wallet=wallet, pool_id=pool_id,
            )
            claimed = account.accrued_yield if amount is None else amount
            if claimed > account.accrued_yield:
                raise InsufficientYieldError(wallet, pool_id, account.accrued_yield, claimed)
            if claimed:
                txn.put_yield_account(
                    replace(
                        account,
                        accrued_yield=account.accrued_yield - claimed,
                        total_claimed=checked_uint256(
                            "total_claimed", account.total_claimed + claimed,
                        ),
                    )
                )

        logger.info(
            "yield_claimed",
            extra={"wallet": wallet, "pool_id": pool_id, "amount": claimed},
        )
        return claimed

    def get_yield_account(self, wallet: str, pool_id: str) -> YieldAccount:
        """Yield account, or an empty one if the wallet never accrued."""
        pool_id = normalize_entity_id(pool_id)
        return self.store.get_yield_account(wallet, pool_id) or YieldAccount(
            wallet=wallet, pool_id=pool_id,
        )

    def get_share_balance(self, wallet: str, pool_id: str) -> int:
        account = self.store.get_pool_account(wallet, normalize_entity_id(pool_id))
        return account.share_balance if account else 0

    def total_shares(self, pool_id: str) -> int:
        return sum(
            a.share_balance
            for a in self.store.list_pool_accounts(normalize_entity_id(pool_id))
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _settle_pending(
        self,
        txn: LedgerTransaction,
        wallet: str,
        pool_id: str,
        now: datetime,
    ) -> None:
        """Close the accrual period of the balance about to be replaced."""
        current = txn.get_pool_account(wallet, pool_id)
        old_shares = current.share_balance if current is not None else 0
        account = txn.get_yield_account(wallet, pool_id)

        if old_shares == 0:
            # Nothing held since the checkpoint; restart it.  An account that
            # never accrued keeps its first-cycle tick.
            if account is not None and account.last_accrued_at != now:
                txn.put_yield_account(replace(account, last_accrued_at=now))
            return

        terms = self._terms.get(pool_id)
        if terms is None:
            raise PoolNotFoundError(pool_id)
        rate = rate_per_tick_wad(terms.annual_rate_bps, terms.tick_seconds)
        updated, ticks, amount = accrue_account(
            account or YieldAccount(wallet=wallet, pool_id=pool_id),
            old_shares, rate, terms, now,
        )
        if ticks:
            txn.put_yield_account(updated)
            logger.debug(
                "pending_yield_settled",
                extra={
                    "wallet": wallet,
                    "pool_id": pool_id,
                    "ticks": ticks,
                    "yield_amount": amount,
                },
            )
