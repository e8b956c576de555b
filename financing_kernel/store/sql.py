"""
Module: financing_kernel.store.sql
Responsibility: ``LedgerStore`` backed by the SQLAlchemy ORM.
Architecture position: Kernel > Store.  Imports from db/, models/, domain/.

Invariants enforced:
    - One session per transaction, committed on clean exit and rolled back
      on any exception.
    - Every declared key's row is loaded ``SELECT ... FOR UPDATE`` in
      canonical key order before the caller's body runs.  On PostgreSQL
      the wait is bounded by ``lock_timeout`` for this transaction only.
    - Mutable rows carry a ``version`` column (SQLAlchemy ``version_id_col``)
      so an UPDATE that lost a race fails instead of overwriting.  Rows
      that did not exist yet are protected by their UNIQUE natural key.

Failure modes:
    - OptimisticLockError: stale version, or a concurrent INSERT of the
      same natural key.
    - StorageTimeoutError: PostgreSQL lock_timeout expired.
    - StorageFailureError: any other SQLAlchemy error.
    Domain errors raised by the caller roll back and propagate unchanged.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Iterator

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

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
from financing_kernel.exceptions import (
    OptimisticLockError,
    StorageFailureError,
    StorageTimeoutError,
)
from financing_kernel.logging_config import get_logger
from financing_kernel.models import (
    CollateralPositionModel,
    InvoiceModel,
    InvoicePaymentModel,
    LifecycleEventModel,
    PoolAccountModel,
    PoolStateModel,
    SettlementExecutionModel,
    SettlementRuleModel,
    YieldAccountModel,
)
from financing_kernel.store.base import (
    INVOICE,
    POOL,
    POOL_ACCOUNT,
    POSITION,
    RULE,
    YIELD,
    EntityKey,
    LedgerStore,
    LedgerTransaction,
    canonical_keys,
    format_key,
    invoice_key,
    pool_account_key,
    pool_key,
    position_key,
    rule_key,
    yield_key,
)

logger = get_logger("store.sql")

# PostgreSQL SQLSTATE lock_not_available
_PG_LOCK_NOT_AVAILABLE = "55P03"


def _row_query(key: EntityKey):
    """SELECT for the row behind ``key``."""
    kind = key[0]
    if kind == INVOICE:
        return select(InvoiceModel).where(InvoiceModel.invoice_id == key[1])
    if kind == POSITION:
        return select(CollateralPositionModel).where(
            CollateralPositionModel.invoice_id == key[1]
        )
    if kind == POOL:
        return select(PoolStateModel).where(PoolStateModel.pool_id == key[1])
    if kind == POOL_ACCOUNT:
        return select(PoolAccountModel).where(
            PoolAccountModel.pool_id == key[1], PoolAccountModel.wallet == key[2],
        )
    if kind == YIELD:
        return select(YieldAccountModel).where(
            YieldAccountModel.pool_id == key[1], YieldAccountModel.wallet == key[2],
        )
    if kind == RULE:
        return select(SettlementRuleModel).where(SettlementRuleModel.rule_id == key[1])
    raise ValueError(f"Unknown entity key kind: {kind}")


_MODEL_FOR_KIND: dict[str, Any] = {
    INVOICE: InvoiceModel,
    POSITION: CollateralPositionModel,
    POOL: PoolStateModel,
    POOL_ACCOUNT: PoolAccountModel,
    YIELD: YieldAccountModel,
    RULE: SettlementRuleModel,
}


class _SqlTransaction(LedgerTransaction):
    """Holds the locked rows of one transaction's session."""

    def __init__(self, session: Session, keys: tuple[EntityKey, ...]):
        super().__init__(keys)
        self._session = session
        self._rows: dict[EntityKey, Any] = {}

    def lock_rows(self) -> None:
        for key in sorted(self._keys):
            self._rows[key] = self._session.execute(
                _row_query(key)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()

    def _read(self, key: EntityKey) -> Any:
        self._require(key)
        row = self._rows.get(key)
        return row.to_dto() if row is not None else None

    def _write(self, key: EntityKey, dto: Any) -> None:
        self._require(key)
        row = self._rows.get(key)
        if row is None:
            row = _MODEL_FOR_KIND[key[0]].from_dto(dto)
            self._session.add(row)
            self._rows[key] = row
        else:
            row.update_from_dto(dto)

    def _next_seq(self, model: Any, invoice_id: str) -> int:
        self._session.flush()
        current = self._session.execute(
            select(func.count()).select_from(model).where(model.invoice_id == invoice_id)
        ).scalar_one()
        return current + 1

    def get_invoice(self, invoice_id):
        return self._read(invoice_key(invoice_id))

    def put_invoice(self, invoice):
        self._write(invoice_key(invoice.invoice_id), invoice)

    def append_lifecycle_event(self, event):
        self._require(invoice_key(event.invoice_id))
        seq = self._next_seq(LifecycleEventModel, event.invoice_id)
        self._session.add(LifecycleEventModel.from_dto(event, seq))

    def append_payment(self, payment):
        self._require(invoice_key(payment.invoice_id))
        seq = self._next_seq(InvoicePaymentModel, payment.invoice_id)
        self._session.add(InvoicePaymentModel.from_dto(payment, seq))

    def get_position(self, invoice_id):
        return self._read(position_key(invoice_id))

    def put_position(self, position):
        self._write(position_key(position.invoice_id), position)

    def get_pool(self, pool_id):
        return self._read(pool_key(pool_id))

    def put_pool(self, pool):
        self._write(pool_key(pool.pool_id), pool)

    def get_pool_account(self, wallet, pool_id):
        return self._read(pool_account_key(wallet, pool_id))

    def put_pool_account(self, account):
        self._write(pool_account_key(account.wallet, account.pool_id), account)

    def get_yield_account(self, wallet, pool_id):
        return self._read(yield_key(wallet, pool_id))

    def put_yield_account(self, account):
        self._write(yield_key(account.wallet, account.pool_id), account)

    def get_rule(self, rule_id):
        return self._read(rule_key(rule_id))

    def put_rule(self, rule):
        self._write(rule_key(rule.rule_id), rule)

    def append_execution(self, execution):
        self._require(rule_key(execution.rule_id))
        self._session.add(SettlementExecutionModel.from_dto(execution))

    def get_execution(self, rule_id, execution_id):
        self._require(rule_key(rule_id))
        row = self._session.execute(
            select(SettlementExecutionModel).where(
                SettlementExecutionModel.rule_id == rule_id,
                SettlementExecutionModel.execution_id == execution_id,
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def count_executions(self, rule_id):
        self._require(rule_key(rule_id))
        self._session.flush()
        return self._session.execute(
            select(func.count())
            .select_from(SettlementExecutionModel)
            .where(SettlementExecutionModel.rule_id == rule_id)
        ).scalar_one()


class SqlLedgerStore(LedgerStore):
    """
    SQLAlchemy-backed ``LedgerStore``.

    Args:
        session_factory: ``sessionmaker`` from ``get_session_factory()``.
        lock_timeout_seconds: Default row-lock wait bound (PostgreSQL).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        lock_timeout_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self.lock_timeout_seconds = lock_timeout_seconds

    @contextmanager
    def transaction(
        self, *keys: EntityKey, timeout: float | None = None,
    ) -> Iterator[LedgerTransaction]:
        ordered = canonical_keys(keys)
        effective = self._effective_timeout(timeout)
        label = ",".join(format_key(k) for k in ordered)
        session = self._session_factory()
        try:
            if effective is not None and session.get_bind().dialect.name == "postgresql":
                session.execute(
                    select(func.set_config(
                        "lock_timeout", f"{int(effective * 1000)}ms", True,
                    ))
                )
            txn = _SqlTransaction(session, ordered)
            txn.lock_rows()
            yield txn
            session.commit()
        except (StaleDataError, IntegrityError) as exc:
            session.rollback()
            logger.warning(
                "store_optimistic_conflict",
                extra={"keys": label, "error": type(exc).__name__},
            )
            raise OptimisticLockError("ledger_row", label) from exc
        except OperationalError as exc:
            session.rollback()
            sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
            if sqlstate == _PG_LOCK_NOT_AVAILABLE:
                logger.warning(
                    "store_lock_timeout",
                    extra={"keys": label, "timeout_seconds": effective},
                )
                raise StorageTimeoutError(label, effective) from exc
            logger.error("store_transaction_failed", extra={"keys": label}, exc_info=True)
            raise StorageFailureError(str(exc), operation="transaction") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("store_transaction_failed", extra={"keys": label}, exc_info=True)
            raise StorageFailureError(str(exc), operation="transaction") from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Unlocked reads
    # -------------------------------------------------------------------------

    def _query(self, operation: str, fn: Callable[[Session], Any]) -> Any:
        session = self._session_factory()
        try:
            return fn(session)
        except SQLAlchemyError as exc:
            logger.error("store_read_failed", extra={"operation": operation}, exc_info=True)
            raise StorageFailureError(str(exc), operation=operation) from exc
        finally:
            session.close()

    def _get(self, key: EntityKey) -> Any:
        def load(session: Session) -> Any:
            row = session.execute(_row_query(key)).scalar_one_or_none()
            return row.to_dto() if row is not None else None

        return self._query(f"get_{key[0]}", load)

    def _list(self, operation: str, stmt) -> list:
        return self._query(
            operation,
            lambda session: [row.to_dto() for row in session.execute(stmt).scalars()],
        )

    def get_invoice(self, invoice_id: str) -> Invoice | None:
        return self._get(invoice_key(invoice_id))

    def get_position(self, invoice_id: str) -> CollateralPosition | None:
        return self._get(position_key(invoice_id))

    def get_pool(self, pool_id: str) -> PoolState | None:
        return self._get(pool_key(pool_id))

    def get_pool_account(self, wallet: str, pool_id: str) -> PoolAccount | None:
        return self._get(pool_account_key(wallet, pool_id))

    def get_yield_account(self, wallet: str, pool_id: str) -> YieldAccount | None:
        return self._get(yield_key(wallet, pool_id))

    def get_rule(self, rule_id: str) -> SettlementRule | None:
        return self._get(rule_key(rule_id))

    def list_invoices(self, status: InvoiceStatus | None = None) -> list[Invoice]:
        stmt = select(InvoiceModel).order_by(InvoiceModel.invoice_id)
        if status is not None:
            stmt = stmt.where(InvoiceModel.status == status.value)
        return self._list("list_invoices", stmt)

    def list_positions(self, pool_id: str) -> list[CollateralPosition]:
        return self._list(
            "list_positions",
            select(CollateralPositionModel)
            .where(CollateralPositionModel.pool_id == pool_id)
            .order_by(CollateralPositionModel.invoice_id),
        )

    def list_pool_accounts(self, pool_id: str) -> list[PoolAccount]:
        return self._list(
            "list_pool_accounts",
            select(PoolAccountModel)
            .where(PoolAccountModel.pool_id == pool_id)
            .order_by(PoolAccountModel.wallet),
        )

    def list_yield_accounts(self, pool_id: str) -> list[YieldAccount]:
        return self._list(
            "list_yield_accounts",
            select(YieldAccountModel)
            .where(YieldAccountModel.pool_id == pool_id)
            .order_by(YieldAccountModel.wallet),
        )

    def list_lifecycle_events(self, invoice_id: str) -> list[LifecycleEvent]:
        return self._list(
            "list_lifecycle_events",
            select(LifecycleEventModel)
            .where(LifecycleEventModel.invoice_id == invoice_id)
            .order_by(LifecycleEventModel.seq),
        )

    def list_payments(self, invoice_id: str) -> list[InvoicePayment]:
        return self._list(
            "list_payments",
            select(InvoicePaymentModel)
            .where(InvoicePaymentModel.invoice_id == invoice_id)
            .order_by(InvoicePaymentModel.seq),
        )

    def list_executions(self, rule_id: str | None = None) -> list[SettlementExecution]:
        stmt = select(SettlementExecutionModel)
        if rule_id is not None:
            stmt = stmt.where(SettlementExecutionModel.rule_id == rule_id)
        stmt = stmt.order_by(
            SettlementExecutionModel.timestamp,
            SettlementExecutionModel.rule_id,
            SettlementExecutionModel.sequence,
        )
        return self._list("list_executions", stmt)
