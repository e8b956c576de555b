"""
ORM models for collateral positions and pool liquidity totals.

Both tables are versioned; the SQL store locks the rows before mutating.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from financing_kernel.db.base import Base, UInt256String

if TYPE_CHECKING:
    from financing_kernel.domain.types import CollateralPosition, PoolState


class CollateralPositionModel(Base):
    """Collateral locked against one invoice."""

    __tablename__ = "ledger_collateral_positions"

    invoice_id: Mapped[str] = mapped_column(String(66), nullable=False, unique=True)
    pool_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    token_id: Mapped[str] = mapped_column(String(100), nullable=False)
    owner: Mapped[str] = mapped_column(String(100), nullable=False)
    face_value: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    ltv_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    credit_limit: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    used_credit: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    # "exists" is reserved in SQL
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    liquidated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> CollateralPosition:
        from financing_kernel.domain.types import CollateralPosition

        return CollateralPosition(
            invoice_id=self.invoice_id,
            pool_id=self.pool_id,
            token_id=self.token_id,
            owner=self.owner,
            face_value=self.face_value,
            ltv_bps=self.ltv_bps,
            credit_limit=self.credit_limit,
            used_credit=self.used_credit,
            exists=self.is_open,
            liquidated=self.liquidated,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_dto(cls, dto: CollateralPosition) -> CollateralPositionModel:
        row = cls(invoice_id=dto.invoice_id)
        row.update_from_dto(dto)
        return row

    def update_from_dto(self, dto: CollateralPosition) -> None:
        self.pool_id = dto.pool_id
        self.token_id = dto.token_id
        self.owner = dto.owner
        self.face_value = dto.face_value
        self.ltv_bps = dto.ltv_bps
        self.credit_limit = dto.credit_limit
        self.used_credit = dto.used_credit
        self.is_open = dto.exists
        self.liquidated = dto.liquidated
        self.created_at = dto.created_at
        self.updated_at = dto.updated_at


class PoolStateModel(Base):
    """Liquidity and borrowed totals of one pool."""

    __tablename__ = "ledger_pool_states"

    pool_id: Mapped[str] = mapped_column(String(66), nullable=False, unique=True)
    total_liquidity: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    total_borrowed: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> PoolState:
        from financing_kernel.domain.types import PoolState

        return PoolState(
            pool_id=self.pool_id,
            total_liquidity=self.total_liquidity,
            total_borrowed=self.total_borrowed,
        )

    @classmethod
    def from_dto(cls, dto: PoolState) -> PoolStateModel:
        row = cls(pool_id=dto.pool_id)
        row.update_from_dto(dto)
        return row

    def update_from_dto(self, dto: PoolState) -> None:
        self.total_liquidity = dto.total_liquidity
        self.total_borrowed = dto.total_borrowed
