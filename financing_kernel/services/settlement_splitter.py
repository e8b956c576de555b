"""
SettlementSplitter -- settlement rules and their append-only executions.

Responsibility:
    Registers proportional payout rules for invoices, computes exact
    splits of collected proceeds (``financing_engines.settlement_split``)
    and records each settlement execution.  No funds move here; the
    on-chain router performs transfers.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - Rules are validated on creation and again on every split.
    - Executions are append-only and never change their rule.
    - ``sequence`` is the 1-based per-rule counter, allocated under the
      rule key lock.
    - ``execution_id`` is ``{tx_hash}-{log_index}`` when the originating
      log is known, else ``{rule_id}-{sequence}``.  Replaying a log with
      an already-recorded id returns the existing execution.
    - An execution's currency is the invoice's currency.

Failure modes:
    - InvalidRuleError, DuplicateRecipientError, DuplicateRuleError on create.
    - RuleNotFoundError, RuleInactiveError, InvalidRuleError (invoice
      mismatch), InvalidAmountError on execute / record.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime
from uuid import uuid4

from financing_engines.settlement_split import compute_split, validate_rule_shape
from financing_kernel.domain.types import (
    SettlementExecution,
    SettlementResult,
    SettlementRule,
)
from financing_kernel.domain.values import checked_uint256, normalize_entity_id
from financing_kernel.exceptions import (
    DuplicateRuleError,
    InvalidAmountError,
    InvalidRuleError,
    RuleNotFoundError,
)
from financing_kernel.logging_config import LogContext, get_logger
from financing_kernel.services.base import LedgerService
from financing_kernel.store.base import LedgerTransaction, invoice_key, rule_key

logger = get_logger("services.settlement_splitter")


class SettlementSplitter(LedgerService):
    """Settlement rule registry and execution recorder."""

    def create_rule(
        self,
        invoice_id: str | bytes,
        payer: str,
        recipients: Sequence[str],
        bps_split: Sequence[int],
        rule_id: str | bytes | None = None,
        timestamp: datetime | None = None,
    ) -> SettlementRule:
        """
        Register a settlement rule.

        ``rule_id`` defaults to a random 32-byte-safe hex id.

        Raises:
            InvalidRuleError, DuplicateRecipientError, DuplicateRuleError.
        """
        invoice_id = normalize_entity_id(invoice_id)
        rule_id = normalize_entity_id(rule_id) if rule_id is not None else "0x" + uuid4().hex
        recipients = tuple(recipients)
        bps_split = tuple(bps_split)
        validate_rule_shape(recipients, bps_split, rule_id)

        rule = SettlementRule(
            rule_id=rule_id,
            invoice_id=invoice_id,
            payer=payer,
            recipients=recipients,
            bps_split=bps_split,
            active=True,
            created_at=timestamp or self.clock.now(),
        )
        with LogContext.bind(rule_id=rule_id, invoice_id=invoice_id):
            with self.store.transaction(rule_key(rule_id)) as txn:
                if txn.get_rule(rule_id) is not None:
                    raise DuplicateRuleError(rule_id)
                txn.put_rule(rule)

            logger.info(
                "settlement_rule_created",
                extra={"recipients": len(recipients), "total_bps": rule.total_bps},
            )
        return rule

    def record_execution(
        self,
        rule_id: str | bytes,
        invoice_id: str | bytes,
        gross_amount: int,
        timestamp: datetime | None = None,
        tx_hash: str | None = None,
        log_index: int | None = None,
    ) -> SettlementExecution:
        """
        Append an execution record for a rule.  The rule is unchanged.

        Raises:
            RuleNotFoundError: unknown rule.
            InvalidRuleError: ``invoice_id`` is not the rule's invoice.
            InvalidAmountError: negative gross amount.
        """
        rule_id = normalize_entity_id(rule_id)
        invoice_id = normalize_entity_id(invoice_id)
        self._check_gross(gross_amount)
        timestamp = timestamp or self.clock.now()

        with LogContext.bind(rule_id=rule_id, invoice_id=invoice_id):
            with self.store.transaction(
                rule_key(rule_id), invoice_key(invoice_id),
            ) as txn:
                rule = self._require_rule(txn, rule_id)
                if rule.invoice_id != invoice_id:
                    raise InvalidRuleError(
                        f"rule belongs to invoice {rule.invoice_id}, not {invoice_id}",
                        rule_id,
                    )
                return self._append_execution(
                    txn, rule, gross_amount, timestamp, tx_hash, log_index,
                )

    def execute(
        self,
        rule_id: str | bytes,
        gross_amount: int,
        timestamp: datetime | None = None,
        tx_hash: str | None = None,
        log_index: int | None = None,
    ) -> SettlementResult:
        """
        Split ``gross_amount`` by the rule and record the execution.

        Raises:
            RuleNotFoundError, RuleInactiveError, InvalidRuleError,
            InvalidAmountError.
        """
        rule_id = normalize_entity_id(rule_id)
        self._check_gross(gross_amount)
        timestamp = timestamp or self.clock.now()

        # invoice_id never changes after creation, so it is safe to read unlocked.
        invoice_id = self.get_rule(rule_id).invoice_id

        with LogContext.bind(rule_id=rule_id, invoice_id=invoice_id):
            with self.store.transaction(
                rule_key(rule_id), invoice_key(invoice_id),
            ) as txn:
                rule = self._require_rule(txn, rule_id)
                allocations = compute_split(gross_amount, rule)
                execution = self._append_execution(
                    txn, rule, gross_amount, timestamp, tx_hash, log_index,
                )

        return SettlementResult(execution=execution, allocations=allocations)

    def deactivate_rule(self, rule_id: str | bytes) -> SettlementRule:
        rule_id = normalize_entity_id(rule_id)
        with self.store.transaction(rule_key(rule_id)) as txn:
            rule = replace(self._require_rule(txn, rule_id), active=False)
            txn.put_rule(rule)

        logger.info("settlement_rule_deactivated", extra={"rule_id": rule_id})
        return rule

    def get_rule(self, rule_id: str | bytes) -> SettlementRule:
        """Raises RuleNotFoundError when absent."""
        rule_id = normalize_entity_id(rule_id)
        rule = self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def list_executions(self, rule_id: str | bytes | None = None) -> list[SettlementExecution]:
        return self.store.list_executions(
            None if rule_id is None else normalize_entity_id(rule_id)
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _check_gross(gross_amount: int) -> None:
        if not isinstance(gross_amount, int) or isinstance(gross_amount, bool):
            raise InvalidAmountError("gross_amount", gross_amount, "must be an integer")
        checked_uint256("gross_amount", gross_amount)

    @staticmethod
    def _require_rule(txn: LedgerTransaction, rule_id: str) -> SettlementRule:
        rule = txn.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def _append_execution(
        self,
        txn: LedgerTransaction,
        rule: SettlementRule,
        gross_amount: int,
        timestamp: datetime,
        tx_hash: str | None,
        log_index: int | None,
    ) -> SettlementExecution:
        if tx_hash is not None and log_index is not None:
            execution_id = f"{tx_hash.lower()}-{log_index}"
            existing = txn.get_execution(rule.rule_id, execution_id)
            if existing is not None:
                logger.info(
                    "settlement_execution_replayed",
                    extra={"execution_id": execution_id},
                )
                return existing
        else:
            execution_id = None

        sequence = txn.count_executions(rule.rule_id) + 1
        invoice = txn.get_invoice(rule.invoice_id)
        execution = SettlementExecution(
            execution_id=execution_id or f"{rule.rule_id}-{sequence}",
            rule_id=rule.rule_id,
            invoice_id=rule.invoice_id,
            gross_amount=gross_amount,
            currency=invoice.currency if invoice is not None else None,
            timestamp=timestamp,
            sequence=sequence,
        )
        txn.append_execution(execution)

        logger.info(
            "settlement_executed",
            extra={
                "execution_id": execution.execution_id,
                "gross_amount": gross_amount,
                "currency": execution.currency,
                "sequence": sequence,
            },
        )
        return execution
