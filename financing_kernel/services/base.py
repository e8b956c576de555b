"""
LedgerService -- abstract base for all ledger services.

Responsibility:
    Common constructor for services that mutate ledger state.  Every
    service receives a ``LedgerStore`` and a ``Clock``; all writes go
    through ``store.transaction(...)`` with the keys the operation touches
    declared up front.

Architecture position:
    Kernel > Services -- imperative shell over the pure domain rules and
    engines.

Invariants enforced:
    - Each public operation is one store transaction: it either commits
      every write or none of them.
    - Services never call ``datetime.now()``; time comes from the Clock.
"""

from abc import ABC

from financing_kernel.domain.clock import Clock, SystemClock
from financing_kernel.store.base import LedgerStore


class LedgerService(ABC):
    """
    Abstract base class for ledger services.

    Args:
        store: Ledger store every read and write goes through.
        clock: Time source for default timestamps.  Defaults to SystemClock.
    """

    def __init__(self, store: LedgerStore, clock: Clock | None = None):
        self.store = store
        self.clock = clock or SystemClock()
