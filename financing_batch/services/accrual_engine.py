"""
YieldAccrualEngine -- one accrual cycle over a pool's share accounts.

Contract:
    ``run_cycle(pool_id)`` scans the omnibus ledger of a pool and, for
    every account holding shares, performs one atomic read-modify-write of
    its ``YieldAccount`` under ``yield_key(wallet, pool_id)``.

Architecture: financing_batch/services.  Math from
    financing_engines.yield_accrual; persistence through LedgerStore.

Invariants enforced:
    - Additive accrual only: the stored balance is read and incremented
      inside the key lock, never overwritten from a value computed
      outside it.
    - Per-account checkpoint: each account accrues the whole ticks
      elapsed since its own ``last_accrued_at``; a cycle with no elapsed
      tick changes nothing, so overlapping or repeated cycles cannot
      double-accrue and a failed account catches up next cycle.
    - Balance held since the checkpoint: YieldLedger settles pending
      ticks at the old balance before writing a new one, so the balance
      read here applies to every tick being accrued.
    - Pool ids are matched in canonical form (hex lowercased).
    - Per-account isolation: one account's failure is logged and counted
      and never aborts the cycle.
    - Per-pool reentrancy guard: a second concurrent cycle on the same
      pool raises AccrualCycleInFlightError.
    - Graceful shutdown: a set ``stop_event`` stops the cycle at the next
      account boundary.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from datetime import datetime
from uuid import uuid4

from financing_engines.yield_accrual import accrue_account, rate_per_tick_wad
from financing_kernel.domain.clock import Clock, SystemClock
from financing_kernel.domain.types import PoolTerms, YieldAccount
from financing_kernel.domain.values import normalize_entity_id
from financing_kernel.exceptions import AccrualCycleInFlightError, PoolNotFoundError
from financing_kernel.logging_config import LogContext, get_logger
from financing_kernel.store.base import LedgerStore, pool_account_key, yield_key

from financing_batch.domain.types import (
    AccountAccrual,
    AccountFailure,
    AccrualCycleResult,
)

logger = get_logger("batch.accrual_engine")


class YieldAccrualEngine:
    """Runs accrual cycles for configured pools.

    Args:
        store: Ledger store holding pool and yield accounts.
        terms_by_pool: Pool terms keyed by pool id.
        clock: Time source; one ``now()`` per cycle.
        account_timeout_seconds: Lock wait bound per account step.
    """

    def __init__(
        self,
        store: LedgerStore,
        terms_by_pool: Mapping[str, PoolTerms],
        clock: Clock | None = None,
        account_timeout_seconds: float | None = None,
    ):
        self._store = store
        self._terms = {
            normalize_entity_id(pool_id): terms for pool_id, terms in terms_by_pool.items()
        }
        self._clock = clock or SystemClock()
        self._account_timeout = account_timeout_seconds
        self._in_flight: dict[str, threading.Lock] = {
            pool_id: threading.Lock() for pool_id in self._terms
        }

    @property
    def pool_ids(self) -> tuple[str, ...]:
        return tuple(self._terms)

    def run_cycle(
        self,
        pool_id: str,
        stop_event: threading.Event | None = None,
    ) -> AccrualCycleResult:
        """Accrue yield for every share-holding account of ``pool_id``.

        Raises:
            PoolNotFoundError: no terms configured for the pool.
            AccrualCycleInFlightError: a cycle is already running for it.
        """
        pool_id = normalize_entity_id(pool_id)
        terms = self._terms.get(pool_id)
        if terms is None:
            raise PoolNotFoundError(pool_id)

        guard = self._in_flight[pool_id]
        if not guard.acquire(blocking=False):
            logger.warning("accrual_cycle_in_flight", extra={"pool_id": pool_id})
            raise AccrualCycleInFlightError(pool_id)
        try:
            return self._run_cycle(terms, stop_event)
        finally:
            guard.release()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_cycle(
        self,
        terms: PoolTerms,
        stop_event: threading.Event | None,
    ) -> AccrualCycleResult:
        cycle_id = str(uuid4())
        pool_id = terms.pool_id
        cycle_start = time.monotonic()
        started_at = self._clock.now()
        rate = rate_per_tick_wad(terms.annual_rate_bps, terms.tick_seconds)

        succeeded = 0
        failed = 0
        total_yield = 0
        aborted = False
        failures: list[AccountFailure] = []
        accruals: list[AccountAccrual] = []

        with LogContext.bind(cycle_id=cycle_id, pool_id=pool_id):
            accounts = [
                a for a in self._store.list_pool_accounts(pool_id) if a.share_balance > 0
            ]
            logger.info(
                "accrual_cycle_started",
                extra={"accounts": len(accounts), "rate_per_tick_wad": rate},
            )

            for account in accounts:
                if stop_event is not None and stop_event.is_set():
                    aborted = True
                    logger.info(
                        "accrual_cycle_stop_requested",
                        extra={"processed": succeeded + failed},
                    )
                    break

                try:
                    accrual = self._accrue_account(terms, rate, account.wallet, started_at)
                except Exception as exc:
                    failed += 1
                    failures.append(
                        AccountFailure(
                            wallet=account.wallet,
                            error_code=getattr(exc, "code", "UNHANDLED_EXCEPTION"),
                            error_message=str(exc),
                        )
                    )
                    logger.exception(
                        "accrual_account_failed",
                        extra={"wallet": account.wallet},
                    )
                    continue

                succeeded += 1
                total_yield += accrual.yield_amount
                if accrual.ticks:
                    accruals.append(accrual)

            duration_ms = int((time.monotonic() - cycle_start) * 1000)
            result = AccrualCycleResult(
                cycle_id=cycle_id,
                pool_id=pool_id,
                accounts_processed=succeeded + failed,
                accounts_succeeded=succeeded,
                accounts_failed=failed,
                total_yield_accrued=total_yield,
                aborted=aborted,
                failures=tuple(failures),
                started_at=started_at,
                completed_at=self._clock.now(),
                duration_ms=duration_ms,
                accruals=tuple(accruals),
            )

            logger.info(
                "accrual_cycle_completed",
                extra={
                    "status": result.status.value,
                    "accounts_succeeded": succeeded,
                    "accounts_failed": failed,
                    "total_yield_accrued": total_yield,
                    "duration_ms": duration_ms,
                },
            )
        return result

    def _accrue_account(
        self,
        terms: PoolTerms,
        rate: int,
        wallet: str,
        now: datetime,
    ) -> AccountAccrual:
        pool_id = terms.pool_id
        with self._store.transaction(
            yield_key(wallet, pool_id),
            pool_account_key(wallet, pool_id),
            timeout=self._account_timeout,
        ) as txn:
            # Balance re-read under lock; the scan may be stale.
            pool_account = txn.get_pool_account(wallet, pool_id)
            shares = pool_account.share_balance if pool_account is not None else 0
            account = txn.get_yield_account(wallet, pool_id) or YieldAccount(
                wallet=wallet, pool_id=pool_id,
            )

            updated, ticks, amount = accrue_account(account, shares, rate, terms, now)
            if ticks == 0:
                return AccountAccrual(wallet=wallet, ticks=0, yield_amount=0)
            txn.put_yield_account(updated)

        logger.debug(
            "accrual_account_applied",
            extra={"wallet": wallet, "ticks": ticks, "yield_amount": amount},
        )
        return AccountAccrual(wallet=wallet, ticks=ticks, yield_amount=amount)
