"""
CollateralAccountant -- collateral positions, credit lines and pool limits.

Responsibility:
    One accountant serves one financing pool.  It locks invoice collateral,
    derives the credit limit from the loan-to-value ratio, and applies
    draws and repayments to both the position and the pool totals in a
    single transaction.  It also tracks pool liquidity deposits and
    withdrawals.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - ``credit_limit = face_value * ltv_bps // 10000`` (truncating).
    - ``used_credit <= credit_limit`` at all times.
    - ``(total_borrowed + amount) * 10000 <= total_liquidity * max_utilization_bps``
      for every draw.
    - A single draw never exceeds ``total_liquidity * max_single_loan_bps // 10000``
      when the pool caps single loans.
    - Position and pool totals change together or not at all.

Failure modes:
    - PositionExistsError, PositionNotFoundError, PositionLiquidatedError.
    - CreditLimitExceededError, MaxSingleLoanExceededError,
      PoolUtilizationExceededError, RepaymentExceedsBalanceError,
      CreditOutstandingError, InsufficientLiquidityError.
    - InvalidAmountError for non-positive amounts or bps outside [0, 10000].
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from financing_kernel.domain.types import CollateralPosition, PoolState, PoolTerms
from financing_kernel.domain.values import (
    BPS_DENOMINATOR,
    apply_bps,
    checked_uint256,
    normalize_entity_id,
    require_bps,
    require_positive,
)
from financing_kernel.exceptions import (
    CreditLimitExceededError,
    CreditOutstandingError,
    InsufficientLiquidityError,
    MaxSingleLoanExceededError,
    PoolUtilizationExceededError,
    PositionExistsError,
    PositionLiquidatedError,
    PositionNotFoundError,
    RepaymentExceedsBalanceError,
)
from financing_kernel.logging_config import LogContext, get_logger
from financing_kernel.services.base import LedgerService
from financing_kernel.store.base import (
    LedgerTransaction,
    invoice_key,
    pool_key,
    position_key,
)

logger = get_logger("services.collateral_accountant")


class CollateralAccountant(LedgerService):
    """
    Position and liquidity accounting for one pool.

    Args:
        store: Ledger store.
        terms: Configured constants of the pool served.
        clock: Time source for position timestamps.
    """

    def __init__(self, store, terms: PoolTerms, clock=None):
        super().__init__(store, clock)
        self.terms = terms

    @property
    def pool_id(self) -> str:
        return self.terms.pool_id

    # -------------------------------------------------------------------------
    # Collateral
    # -------------------------------------------------------------------------

    def lock_collateral(
        self,
        invoice_id: str | bytes,
        token_id: str,
        owner: str,
        invoice_face_value: int,
        ltv_bps: int | None = None,
        timestamp: datetime | None = None,
    ) -> CollateralPosition:
        """
        Open a position against an invoice.

        Marks the invoice financed when it is known to the ledger.

        Raises:
            InvalidAmountError: non-positive face value or ltv outside [0, 10000].
            PositionExistsError: a live position already exists.
        """
        invoice_id = normalize_entity_id(invoice_id)
        require_positive("invoice_face_value", invoice_face_value)
        ltv = require_bps("ltv_bps", self.terms.ltv_bps if ltv_bps is None else ltv_bps)
        timestamp = timestamp or self.clock.now()

        with LogContext.bind(invoice_id=invoice_id, pool_id=self.pool_id):
            with self.store.transaction(
                position_key(invoice_id), invoice_key(invoice_id),
            ) as txn:
                existing = txn.get_position(invoice_id)
                if existing is not None and existing.exists:
                    raise PositionExistsError(invoice_id)

                position = CollateralPosition(
                    invoice_id=invoice_id,
                    pool_id=self.pool_id,
                    token_id=token_id,
                    owner=owner,
                    face_value=invoice_face_value,
                    ltv_bps=ltv,
                    credit_limit=apply_bps(invoice_face_value, ltv),
                    used_credit=0,
                    exists=True,
                    liquidated=False,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
                txn.put_position(position)

                invoice = txn.get_invoice(invoice_id)
                if invoice is not None:
                    txn.put_invoice(replace(invoice, is_financed=True, updated_at=timestamp))

            logger.info(
                "collateral_locked",
                extra={
                    "token_id": token_id,
                    "face_value": invoice_face_value,
                    "ltv_bps": ltv,
                    "credit_limit": position.credit_limit,
                },
            )
        return position

    def draw(self, invoice_id: str | bytes, amount: int) -> int:
        """
        Draw credit against a position.

        Returns:
            The position's new ``used_credit``.

        Raises:
            PositionNotFoundError, PositionLiquidatedError, InvalidAmountError,
            CreditLimitExceededError, MaxSingleLoanExceededError,
            PoolUtilizationExceededError.
        """
        invoice_id = normalize_entity_id(invoice_id)
        require_positive("amount", amount)

        with LogContext.bind(invoice_id=invoice_id, pool_id=self.pool_id):
            with self.store.transaction(
                position_key(invoice_id), pool_key(self.pool_id),
            ) as txn:
                position = self._require_position(txn, invoice_id)
                if position.liquidated:
                    raise PositionLiquidatedError(invoice_id)
                if position.used_credit + amount > position.credit_limit:
                    raise CreditLimitExceededError(
                        invoice_id, position.credit_limit, position.used_credit, amount,
                    )

                pool = self._pool(txn)
                self._check_pool_limits(pool, amount)

                now = self.clock.now()
                used = position.used_credit + amount
                txn.put_position(replace(position, used_credit=used, updated_at=now))
                txn.put_pool(replace(pool, total_borrowed=pool.total_borrowed + amount))

            logger.info(
                "credit_drawn",
                extra={
                    "amount": amount,
                    "used_credit": used,
                    "total_borrowed": pool.total_borrowed + amount,
                },
            )
        return used

    def repay(self, invoice_id: str | bytes, amount: int) -> int:
        """
        Repay drawn credit.

        Returns:
            The position's new ``used_credit``.

        Raises:
            PositionNotFoundError, InvalidAmountError, RepaymentExceedsBalanceError.
        """
        invoice_id = normalize_entity_id(invoice_id)
        require_positive("amount", amount)

        with LogContext.bind(invoice_id=invoice_id, pool_id=self.pool_id):
            with self.store.transaction(
                position_key(invoice_id), pool_key(self.pool_id),
            ) as txn:
                position = self._require_position(txn, invoice_id)
                if amount > position.used_credit:
                    raise RepaymentExceedsBalanceError(
                        invoice_id, position.used_credit, amount,
                    )

                pool = self._pool(txn)
                now = self.clock.now()
                used = position.used_credit - amount
                borrowed = checked_uint256("total_borrowed", pool.total_borrowed - amount)
                txn.put_position(replace(position, used_credit=used, updated_at=now))
                txn.put_pool(replace(pool, total_borrowed=borrowed))

            logger.info(
                "credit_repaid",
                extra={"amount": amount, "used_credit": used, "total_borrowed": borrowed},
            )
        return used

    def release_collateral(self, invoice_id: str | bytes) -> CollateralPosition:
        """
        Exit a fully repaid position and clear the invoice's financed flag.

        Raises:
            PositionNotFoundError, CreditOutstandingError.
        """
        invoice_id = normalize_entity_id(invoice_id)

        with LogContext.bind(invoice_id=invoice_id, pool_id=self.pool_id):
            with self.store.transaction(
                position_key(invoice_id), invoice_key(invoice_id),
            ) as txn:
                position = self._require_position(txn, invoice_id)
                if position.used_credit > 0:
                    raise CreditOutstandingError(invoice_id, position.used_credit)

                now = self.clock.now()
                position = replace(position, exists=False, updated_at=now)
                txn.put_position(position)

                invoice = txn.get_invoice(invoice_id)
                if invoice is not None:
                    txn.put_invoice(replace(invoice, is_financed=False, updated_at=now))

            logger.info("collateral_released")
        return position

    def mark_liquidated(self, invoice_id: str | bytes) -> CollateralPosition:
        """Flag a position as liquidated; further draws are rejected."""
        invoice_id = normalize_entity_id(invoice_id)

        with LogContext.bind(invoice_id=invoice_id, pool_id=self.pool_id):
            with self.store.transaction(position_key(invoice_id)) as txn:
                position = self._require_position(txn, invoice_id)
                position = replace(position, liquidated=True, updated_at=self.clock.now())
                txn.put_position(position)

            logger.warning(
                "collateral_liquidated",
                extra={"used_credit": position.used_credit},
            )
        return position

    # -------------------------------------------------------------------------
    # Liquidity
    # -------------------------------------------------------------------------

    def deposit_liquidity(self, amount: int) -> PoolState:
        require_positive("amount", amount)
        with self.store.transaction(pool_key(self.pool_id)) as txn:
            pool = self._pool(txn)
            pool = replace(
                pool,
                total_liquidity=checked_uint256(
                    "total_liquidity", pool.total_liquidity + amount,
                ),
            )
            txn.put_pool(pool)

        logger.info(
            "liquidity_deposited",
            extra={
                "pool_id": self.pool_id,
                "amount": amount,
                "total_liquidity": pool.total_liquidity,
            },
        )
        return pool

    def withdraw_liquidity(self, amount: int) -> PoolState:
        """
        Remove liquidity from the pool.

        Raises:
            InsufficientLiquidityError: would drop liquidity below borrowed.
        """
        require_positive("amount", amount)
        with self.store.transaction(pool_key(self.pool_id)) as txn:
            pool = self._pool(txn)
            if amount > pool.available_liquidity:
                raise InsufficientLiquidityError(
                    self.pool_id, pool.available_liquidity, amount,
                )
            pool = replace(pool, total_liquidity=pool.total_liquidity - amount)
            txn.put_pool(pool)

        logger.info(
            "liquidity_withdrawn",
            extra={
                "pool_id": self.pool_id,
                "amount": amount,
                "total_liquidity": pool.total_liquidity,
            },
        )
        return pool

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def pool_state(self) -> PoolState:
        return self.store.get_pool(self.pool_id) or PoolState(pool_id=self.pool_id)

    def utilization_bps(self) -> int:
        """Borrowed share of liquidity in bps (0 for an empty pool)."""
        pool = self.pool_state()
        if pool.total_liquidity == 0:
            return 0
        return pool.total_borrowed * BPS_DENOMINATOR // pool.total_liquidity

    def get_position(self, invoice_id: str | bytes) -> CollateralPosition:
        """Raises PositionNotFoundError unless a position of this pool exists."""
        invoice_id = normalize_entity_id(invoice_id)
        position = self.store.get_position(invoice_id)
        if position is None or position.pool_id != self.pool_id:
            raise PositionNotFoundError(invoice_id, self.pool_id)
        return position

    def list_positions(self, include_exited: bool = False) -> list[CollateralPosition]:
        positions = self.store.list_positions(self.pool_id)
        if include_exited:
            return positions
        return [p for p in positions if p.exists]

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_position(self, txn: LedgerTransaction, invoice_id: str) -> CollateralPosition:
        position = txn.get_position(invoice_id)
        if position is None or not position.exists or position.pool_id != self.pool_id:
            raise PositionNotFoundError(invoice_id, self.pool_id)
        return position

    def _pool(self, txn: LedgerTransaction) -> PoolState:
        return txn.get_pool(self.pool_id) or PoolState(pool_id=self.pool_id)

    def _check_pool_limits(self, pool: PoolState, amount: int) -> None:
        if self.terms.max_single_loan_bps > 0:
            cap = apply_bps(pool.total_liquidity, self.terms.max_single_loan_bps)
            if amount > cap:
                raise MaxSingleLoanExceededError(self.pool_id, amount, cap)

        new_borrowed = pool.total_borrowed + amount
        if (
            new_borrowed * BPS_DENOMINATOR
            > pool.total_liquidity * self.terms.max_utilization_bps
        ):
            raise PoolUtilizationExceededError(
                self.pool_id,
                pool.total_borrowed,
                pool.total_liquidity,
                amount,
                self.terms.max_utilization_bps,
            )
