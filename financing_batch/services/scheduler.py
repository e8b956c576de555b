"""
AccrualScheduler -- In-process polling scheduler for yield accrual.

Contract:
    Every ``tick_interval_seconds`` runs one accrual cycle per configured
    pool through ``YieldAccrualEngine``.

Architecture: financing_batch/services.

Invariants enforced:
    - A pool whose previous cycle is still running is skipped, never run
      twice concurrently.
    - Graceful shutdown: ``stop()`` sets the stop event, which the engine
      checks between accounts, then joins the thread.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence

from financing_kernel.exceptions import AccrualCycleInFlightError
from financing_kernel.logging_config import get_logger

from financing_batch.domain.types import AccrualCycleResult
from financing_batch.services.accrual_engine import YieldAccrualEngine

logger = get_logger("batch.scheduler")


class AccrualScheduler:
    """Background recurring accrual.

    Contract:
        - ``tick()`` runs one cycle per pool and returns the results.
        - ``start()`` runs ``tick()`` every interval on a daemon thread.

    Non-goals:
        - Single process only; two schedulers on one pool rely on the
          engine's in-flight guard and the per-account checkpoints.
    """

    def __init__(
        self,
        engine: YieldAccrualEngine,
        pool_ids: Sequence[str] | None = None,
        tick_interval_seconds: float = 60,
    ):
        self._engine = engine
        self._pool_ids = tuple(pool_ids) if pool_ids is not None else engine.pool_ids
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> list[AccrualCycleResult]:
        """Run one cycle for every pool (public for testing).

        Pools with a cycle in flight are skipped.  A failing pool is logged
        and does not prevent the others from running.
        """
        results: list[AccrualCycleResult] = []
        for pool_id in self._pool_ids:
            if self._stop_event.is_set():
                break
            try:
                results.append(self._engine.run_cycle(pool_id, stop_event=self._stop_event))
            except AccrualCycleInFlightError:
                logger.info("accrual_pool_skipped_in_flight", extra={"pool_id": pool_id})
            except Exception:
                logger.exception("accrual_cycle_failed", extra={"pool_id": pool_id})
        return results

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="accrual-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "accrual_scheduler_started",
            extra={"tick_interval": self._tick_interval, "pools": list(self._pool_ids)},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the scheduler to finish.

        Args:
            timeout: Seconds to wait for an in-flight cycle to reach an
                account boundary and the thread to exit.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("accrual_scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background polling loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("accrual_scheduler_tick_failed")
            self._stop_event.wait(timeout=self._tick_interval)
