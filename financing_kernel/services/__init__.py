"""Ledger services: the imperative shell over domain rules and engines."""

from financing_kernel.services.base import LedgerService
from financing_kernel.services.collateral_accountant import CollateralAccountant
from financing_kernel.services.event_ingestor import LedgerEventIngestor
from financing_kernel.services.lifecycle_tracker import InvoiceLifecycleTracker
from financing_kernel.services.settlement_splitter import SettlementSplitter
from financing_kernel.services.yield_ledger import YieldLedger

__all__ = [
    "CollateralAccountant",
    "InvoiceLifecycleTracker",
    "LedgerEventIngestor",
    "LedgerService",
    "SettlementSplitter",
    "YieldLedger",
]
