"""
Typed exception hierarchy for the financing kernel.

Every error is a typed class with a machine-readable ``code`` class
attribute and structured attributes; callers catch by type and read
fields, never parse messages.  The API layer maps codes to client text.

    FinancingLedgerError (base)
    |
    +-- NotFoundError
    |   +-- UnknownInvoiceError
    |   +-- PositionNotFoundError
    |   +-- RuleNotFoundError
    |   +-- PoolNotFoundError
    |
    +-- InvariantViolationError
    |   +-- InvalidTransitionError
    |   +-- InvalidRuleError
    |   +-- RuleInactiveError
    |   +-- InvalidAmountError
    |   +-- InvalidIdentifierError
    |   +-- OverpaymentError
    |   +-- RepaymentExceedsBalanceError
    |   +-- CreditOutstandingError
    |   +-- PositionLiquidatedError
    |
    +-- LimitExceededError
    |   +-- CreditLimitExceededError
    |   +-- PoolUtilizationExceededError
    |   +-- MaxSingleLoanExceededError
    |   +-- InsufficientLiquidityError
    |   +-- InsufficientYieldError
    |
    +-- DuplicateEntityError
    |   +-- DuplicateInvoiceError
    |   +-- PositionExistsError
    |   +-- DuplicateRecipientError
    |   +-- DuplicateRuleError
    |
    +-- ArithmeticOverflowError
    |
    +-- StorageFailureError          (recoverable by retry)
    |   +-- StorageTimeoutError
    |   +-- OptimisticLockError
    |
    +-- AccrualError
    |   +-- AccrualCycleInFlightError
    |
    +-- IngestionError
        +-- UnsupportedEventError

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Not found       | UNKNOWN_INVOICE               | Status/payment for an unissued invoice
                | POSITION_NOT_FOUND            | No live position for the invoice
                | RULE_NOT_FOUND                | Settlement rule id unknown
                | POOL_NOT_FOUND                | Pool id has no configured terms
----------------|-------------------------------|---------------------------------------
Invariant       | INVALID_TRANSITION            | Status would move backwards / from terminal
                | INVALID_RULE                  | Split lengths, bps range, bps total
                | RULE_INACTIVE                 | Splitting with a deactivated rule
                | INVALID_AMOUNT                | Non-positive / out-of-range quantity
                | INVALID_IDENTIFIER            | Id not representable in 32 bytes
                | OVERPAYMENT                   | cumulative_paid would exceed amount
                | REPAYMENT_EXCEEDS_BALANCE     | Repay more than used credit
                | CREDIT_OUTSTANDING            | Release while credit is drawn
                | POSITION_LIQUIDATED           | Draw against a liquidated position
----------------|-------------------------------|---------------------------------------
Limit           | CREDIT_LIMIT_EXCEEDED         | used_credit + draw > credit_limit
                | POOL_UTILIZATION_EXCEEDED     | Pool-wide utilization bound crossed
                | MAX_SINGLE_LOAN_EXCEEDED      | Single draw above pool cap
                | INSUFFICIENT_LIQUIDITY        | Withdraw below borrowed total
                | INSUFFICIENT_YIELD            | Claim more than accrued
----------------|-------------------------------|---------------------------------------
Duplicate       | DUPLICATE_INVOICE             | Invoice id already issued
                | POSITION_EXISTS               | Live position already locked
                | DUPLICATE_RECIPIENT           | Recipient repeated in a rule
                | DUPLICATE_RULE                | Rule id already registered
----------------|-------------------------------|---------------------------------------
Arithmetic      | ARITHMETIC_OVERFLOW           | Value beyond uint256
----------------|-------------------------------|---------------------------------------
Storage         | STORAGE_FAILURE               | Collaborator I/O error
                | STORAGE_TIMEOUT               | Key lock not acquired in time
                | OPTIMISTIC_LOCK_CONFLICT      | Concurrent modification detected
----------------|-------------------------------|---------------------------------------
Accrual         | ACCRUAL_CYCLE_IN_FLIGHT       | Cycle already running for the pool
----------------|-------------------------------|---------------------------------------
Ingestion       | UNSUPPORTED_EVENT             | No handler for the event type
"""


class FinancingLedgerError(Exception):
    """
    Base exception for all financing kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "FINANCING_LEDGER_ERROR"


# Not found


class NotFoundError(FinancingLedgerError):
    """Base exception for unknown entity ids."""

    code: str = "NOT_FOUND"


class UnknownInvoiceError(NotFoundError):
    """Invoice has no issued record."""

    code: str = "UNKNOWN_INVOICE"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Unknown invoice: {invoice_id}")


class PositionNotFoundError(NotFoundError):
    """No live collateral position exists for the invoice."""

    code: str = "POSITION_NOT_FOUND"

    def __init__(self, invoice_id: str, pool_id: str | None = None):
        self.invoice_id = invoice_id
        self.pool_id = pool_id
        where = f" in pool {pool_id}" if pool_id else ""
        super().__init__(f"No collateral position for invoice {invoice_id}{where}")


class RuleNotFoundError(NotFoundError):
    """Settlement rule id is unknown."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Settlement rule not found: {rule_id}")


class PoolNotFoundError(NotFoundError):
    """Pool id has no configured terms."""

    code: str = "POOL_NOT_FOUND"

    def __init__(self, pool_id: str):
        self.pool_id = pool_id
        super().__init__(f"Pool not configured: {pool_id}")


# Invariant violations


class InvariantViolationError(FinancingLedgerError):
    """Base exception for operations that would break a ledger invariant."""

    code: str = "INVARIANT_VIOLATION"


class InvalidTransitionError(InvariantViolationError):
    """Invoice status transition violates the lifecycle ordering."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, invoice_id: str, from_status: str, to_status: str, reason: str = ""):
        self.invoice_id = invoice_id
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition for invoice {invoice_id}: {from_status} -> {to_status}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class InvalidRuleError(InvariantViolationError):
    """Settlement rule shape is invalid."""

    code: str = "INVALID_RULE"

    def __init__(self, reason: str, rule_id: str | None = None):
        self.reason = reason
        self.rule_id = rule_id
        label = f"Invalid settlement rule {rule_id}" if rule_id else "Invalid settlement rule"
        super().__init__(f"{label}: {reason}")


class RuleInactiveError(InvariantViolationError):
    """Settlement rule has been deactivated."""

    code: str = "RULE_INACTIVE"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Settlement rule is inactive: {rule_id}")


class InvalidAmountError(InvariantViolationError):
    """Quantity is outside its permitted range."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: int, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value}: {reason}")


class InvalidIdentifierError(InvariantViolationError):
    """Identifier is not representable as 32 raw bytes."""

    code: str = "INVALID_IDENTIFIER"

    def __init__(self, value: object, reason: str):
        self.value = repr(value)
        self.reason = reason
        super().__init__(f"Invalid identifier {value!r}: {reason}")


class OverpaymentError(InvariantViolationError):
    """Payment would push cumulative_paid above the invoice amount."""

    code: str = "OVERPAYMENT"

    def __init__(self, invoice_id: str, amount: int, cumulative_paid: int, paid_amount: int):
        self.invoice_id = invoice_id
        self.amount = amount
        self.cumulative_paid = cumulative_paid
        self.paid_amount = paid_amount
        super().__init__(
            f"Payment of {paid_amount} on invoice {invoice_id} exceeds "
            f"outstanding {amount - cumulative_paid}"
        )


class RepaymentExceedsBalanceError(InvariantViolationError):
    """Repayment larger than the drawn credit."""

    code: str = "REPAYMENT_EXCEEDS_BALANCE"

    def __init__(self, invoice_id: str, used_credit: int, amount: int):
        self.invoice_id = invoice_id
        self.used_credit = used_credit
        self.amount = amount
        super().__init__(
            f"Repayment {amount} exceeds used credit {used_credit} on invoice {invoice_id}"
        )


class CreditOutstandingError(InvariantViolationError):
    """Collateral cannot be released while credit is drawn."""

    code: str = "CREDIT_OUTSTANDING"

    def __init__(self, invoice_id: str, used_credit: int):
        self.invoice_id = invoice_id
        self.used_credit = used_credit
        super().__init__(
            f"Cannot release collateral for invoice {invoice_id}: "
            f"{used_credit} credit outstanding"
        )


class PositionLiquidatedError(InvariantViolationError):
    """Position was liquidated and accepts no further draws."""

    code: str = "POSITION_LIQUIDATED"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Collateral position for invoice {invoice_id} is liquidated")


# Limits


class LimitExceededError(FinancingLedgerError):
    """Base exception for credit, utilization and balance bounds."""

    code: str = "LIMIT_EXCEEDED"


class CreditLimitExceededError(LimitExceededError):
    """Draw would exceed the position's LTV-bound credit limit."""

    code: str = "CREDIT_LIMIT_EXCEEDED"

    def __init__(self, invoice_id: str, credit_limit: int, used_credit: int, requested: int):
        self.invoice_id = invoice_id
        self.credit_limit = credit_limit
        self.used_credit = used_credit
        self.requested = requested
        super().__init__(
            f"Draw of {requested} on invoice {invoice_id} exceeds credit limit "
            f"{credit_limit} (used {used_credit})"
        )


class PoolUtilizationExceededError(LimitExceededError):
    """Draw would push pool utilization above its configured bound."""

    code: str = "POOL_UTILIZATION_EXCEEDED"

    def __init__(
        self,
        pool_id: str,
        total_borrowed: int,
        total_liquidity: int,
        requested: int,
        max_utilization_bps: int,
    ):
        self.pool_id = pool_id
        self.total_borrowed = total_borrowed
        self.total_liquidity = total_liquidity
        self.requested = requested
        self.max_utilization_bps = max_utilization_bps
        super().__init__(
            f"Draw of {requested} would exceed max utilization "
            f"{max_utilization_bps} bps of pool {pool_id}"
        )


class MaxSingleLoanExceededError(LimitExceededError):
    """Single draw larger than the pool's per-loan cap."""

    code: str = "MAX_SINGLE_LOAN_EXCEEDED"

    def __init__(self, pool_id: str, requested: int, max_single_loan: int):
        self.pool_id = pool_id
        self.requested = requested
        self.max_single_loan = max_single_loan
        super().__init__(
            f"Draw of {requested} exceeds max single loan {max_single_loan} in pool {pool_id}"
        )


class InsufficientLiquidityError(LimitExceededError):
    """Withdrawal would leave less liquidity than is borrowed."""

    code: str = "INSUFFICIENT_LIQUIDITY"

    def __init__(self, pool_id: str, available: int, requested: int):
        self.pool_id = pool_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Pool {pool_id} has {available} withdrawable liquidity, requested {requested}"
        )


class InsufficientYieldError(LimitExceededError):
    """Claim larger than the accrued yield."""

    code: str = "INSUFFICIENT_YIELD"

    def __init__(self, wallet: str, pool_id: str, accrued_yield: int, requested: int):
        self.wallet = wallet
        self.pool_id = pool_id
        self.accrued_yield = accrued_yield
        self.requested = requested
        super().__init__(
            f"Claim of {requested} exceeds accrued yield {accrued_yield} "
            f"for {wallet} in pool {pool_id}"
        )


# Duplicates


class DuplicateEntityError(FinancingLedgerError):
    """Base exception for entity ids that already exist."""

    code: str = "DUPLICATE_ENTITY"


class DuplicateInvoiceError(DuplicateEntityError):
    """Invoice id already issued."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice already exists: {invoice_id}")


class PositionExistsError(DuplicateEntityError):
    """A live collateral position already exists for the invoice."""

    code: str = "POSITION_EXISTS"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Collateral already locked for invoice {invoice_id}")


class DuplicateRecipientError(DuplicateEntityError):
    """Recipient listed more than once in a settlement rule."""

    code: str = "DUPLICATE_RECIPIENT"

    def __init__(self, recipient: str):
        self.recipient = recipient
        super().__init__(f"Duplicate settlement recipient: {recipient}")


class DuplicateRuleError(DuplicateEntityError):
    """Settlement rule id already registered."""

    code: str = "DUPLICATE_RULE"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Settlement rule already exists: {rule_id}")


# Arithmetic


class ArithmeticOverflowError(FinancingLedgerError):
    """Result would exceed the representable uint256 range."""

    code: str = "ARITHMETIC_OVERFLOW"

    def __init__(self, field: str, value: int):
        self.field = field
        self.value = value
        super().__init__(f"{field} overflows uint256: {value}")


# Storage


class StorageFailureError(FinancingLedgerError):
    """Ledger store I/O failed; the operation may be retried."""

    code: str = "STORAGE_FAILURE"

    def __init__(self, message: str, operation: str | None = None):
        self.operation = operation
        super().__init__(message)


class StorageTimeoutError(StorageFailureError):
    """A key lock was not acquired within the timeout."""

    code: str = "STORAGE_TIMEOUT"

    def __init__(self, key: str, timeout_seconds: float):
        self.key = key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for lock on {key}",
            operation="lock",
        )


class OptimisticLockError(StorageFailureError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction",
            operation="commit",
        )


# Accrual


class AccrualError(FinancingLedgerError):
    """Base exception for yield accrual cycle errors."""

    code: str = "ACCRUAL_ERROR"


class AccrualCycleInFlightError(AccrualError):
    """An accrual cycle is already running for the pool."""

    code: str = "ACCRUAL_CYCLE_IN_FLIGHT"

    def __init__(self, pool_id: str):
        self.pool_id = pool_id
        super().__init__(f"Accrual cycle already in flight for pool {pool_id}")


# Ingestion


class IngestionError(FinancingLedgerError):
    """Base exception for event ingestion errors."""

    code: str = "INGESTION_ERROR"


class UnsupportedEventError(IngestionError):
    """No handler is registered for the event type."""

    code: str = "UNSUPPORTED_EVENT"

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"Unsupported ledger event: {event_type}")
