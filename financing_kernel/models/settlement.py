"""
ORM models for settlement rules and their executions.

``SettlementRuleModel`` stores recipients and basis points as JSON arrays
(order is significant: the last recipient takes the split remainder).
``SettlementExecutionModel`` is insert-only; ``(rule_id, sequence)`` is
unique, so two writers racing on the same rule cannot both commit.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from financing_kernel.db.base import Base, UInt256String

if TYPE_CHECKING:
    from financing_kernel.domain.types import SettlementExecution, SettlementRule


class SettlementRuleModel(Base):
    """Proportional payout plan for one invoice."""

    __tablename__ = "ledger_settlement_rules"

    rule_id: Mapped[str] = mapped_column(String(66), nullable=False, unique=True)
    invoice_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    payer: Mapped[str] = mapped_column(String(100), nullable=False)
    recipients: Mapped[list] = mapped_column(JSON, nullable=False)
    bps_split: Mapped[list] = mapped_column(JSON, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> SettlementRule:
        from financing_kernel.domain.types import SettlementRule

        return SettlementRule(
            rule_id=self.rule_id,
            invoice_id=self.invoice_id,
            payer=self.payer,
            recipients=tuple(self.recipients),
            bps_split=tuple(int(b) for b in self.bps_split),
            active=self.active,
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(cls, dto: SettlementRule) -> SettlementRuleModel:
        row = cls(rule_id=dto.rule_id)
        row.update_from_dto(dto)
        return row

    def update_from_dto(self, dto: SettlementRule) -> None:
        self.invoice_id = dto.invoice_id
        self.payer = dto.payer
        self.recipients = list(dto.recipients)
        self.bps_split = list(dto.bps_split)
        self.active = dto.active
        self.created_at = dto.created_at


class SettlementExecutionModel(Base):
    """One settlement run against a rule (insert-only)."""

    __tablename__ = "ledger_settlement_executions"

    __table_args__ = (
        UniqueConstraint("rule_id", "sequence", name="uq_ledger_settlement_executions_seq"),
    )

    execution_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    rule_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    invoice_id: Mapped[str] = mapped_column(String(66), nullable=False)
    gross_amount: Mapped[int] = mapped_column(UInt256String(), nullable=False)
    currency: Mapped[str | None] = mapped_column(String(66), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)

    def to_dto(self) -> SettlementExecution:
        from financing_kernel.domain.types import SettlementExecution

        return SettlementExecution(
            execution_id=self.execution_id,
            rule_id=self.rule_id,
            invoice_id=self.invoice_id,
            gross_amount=self.gross_amount,
            currency=self.currency,
            timestamp=self.timestamp,
            sequence=self.sequence,
        )

    @classmethod
    def from_dto(cls, dto: SettlementExecution) -> SettlementExecutionModel:
        return cls(
            execution_id=dto.execution_id,
            rule_id=dto.rule_id,
            invoice_id=dto.invoice_id,
            gross_amount=dto.gross_amount,
            currency=dto.currency,
            timestamp=dto.timestamp,
            sequence=dto.sequence,
        )
