"""ORM models.  Importing this package registers every ledger table."""

from financing_kernel.models.collateral import CollateralPositionModel, PoolStateModel
from financing_kernel.models.invoice import (
    InvoiceModel,
    InvoicePaymentModel,
    LifecycleEventModel,
)
from financing_kernel.models.settlement import (
    SettlementExecutionModel,
    SettlementRuleModel,
)
from financing_kernel.models.yield_account import PoolAccountModel, YieldAccountModel

__all__ = [
    "CollateralPositionModel",
    "InvoiceModel",
    "InvoicePaymentModel",
    "LifecycleEventModel",
    "PoolAccountModel",
    "PoolStateModel",
    "SettlementExecutionModel",
    "SettlementRuleModel",
    "YieldAccountModel",
]
