"""
Module: financing_engines
Responsibility:
    Re-exports the pure calculation engines used by the ledger services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import financing_kernel.domain and financing_kernel.exceptions.

Invariants enforced:
    - Purity: engines never read a clock; timestamps are parameters.
    - Integer-only arithmetic with truncating division.
    - Determinism: identical inputs always produce identical outputs.

Every engine invocation is traced via ``@traced_engine``
(see ``financing_engines.tracer``).
"""

from financing_engines.settlement_split import compute_split, validate_rule_shape
from financing_engines.tracer import compute_input_fingerprint, traced_engine
from financing_engines.yield_accrual import (
    accrue_account,
    advance_checkpoint,
    compute_accrual,
    elapsed_ticks,
    rate_per_tick_wad,
    ticks_per_year,
)

__all__ = [
    "accrue_account",
    "advance_checkpoint",
    "compute_accrual",
    "compute_input_fingerprint",
    "compute_split",
    "elapsed_ticks",
    "rate_per_tick_wad",
    "ticks_per_year",
    "traced_engine",
    "validate_rule_shape",
]
