"""
ORM models for the omnibus share ledger and accrued liquidity-provider yield.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from financing_kernel.db.base import Base, UInt256String

if TYPE_CHECKING:
    from financing_kernel.domain.types import PoolAccount, YieldAccount


class PoolAccountModel(Base):
    """Shares a wallet holds in a pool."""

    __tablename__ = "ledger_pool_accounts"

    __table_args__ = (
        UniqueConstraint("pool_id", "wallet", name="uq_ledger_pool_accounts_wallet"),
    )

    pool_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    wallet: Mapped[str] = mapped_column(String(100), nullable=False)
    share_balance: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> PoolAccount:
        from financing_kernel.domain.types import PoolAccount

        return PoolAccount(
            wallet=self.wallet,
            pool_id=self.pool_id,
            share_balance=self.share_balance,
        )

    @classmethod
    def from_dto(cls, dto: PoolAccount) -> PoolAccountModel:
        return cls(pool_id=dto.pool_id, wallet=dto.wallet, share_balance=dto.share_balance)

    def update_from_dto(self, dto: PoolAccount) -> None:
        self.share_balance = dto.share_balance


class YieldAccountModel(Base):
    """Accrual checkpoint and balances for one (wallet, pool)."""

    __tablename__ = "ledger_yield_accounts"

    __table_args__ = (
        UniqueConstraint("pool_id", "wallet", name="uq_ledger_yield_accounts_wallet"),
    )

    pool_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    wallet: Mapped[str] = mapped_column(String(100), nullable=False)
    accrued_yield: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    carry: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    last_accrued_at: Mapped[datetime | None] = mapped_column(nullable=True)
    total_claimed: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> YieldAccount:
        from financing_kernel.domain.types import YieldAccount

        return YieldAccount(
            wallet=self.wallet,
            pool_id=self.pool_id,
            accrued_yield=self.accrued_yield,
            carry=self.carry,
            last_accrued_at=self.last_accrued_at,
            total_claimed=self.total_claimed,
        )

    @classmethod
    def from_dto(cls, dto: YieldAccount) -> YieldAccountModel:
        row = cls(pool_id=dto.pool_id, wallet=dto.wallet)
        row.update_from_dto(dto)
        return row

    def update_from_dto(self, dto: YieldAccount) -> None:
        self.accrued_yield = dto.accrued_yield
        self.carry = dto.carry
        self.last_accrued_at = dto.last_accrued_at
        self.total_claimed = dto.total_claimed
