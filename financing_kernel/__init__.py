"""
Financing Kernel - off-chain invoice financing ledger

Bookkeeping core that stays consistent with on-chain state:
- Invoice lifecycle tracking with an append-only lifecycle event stream
- Collateral positions, credit lines and pool utilization limits
- Omnibus pool share balances and liquidity-provider yield accounts
- Settlement rules with exact basis-point splitting
- Single-writer-per-key ledger store (in-memory or SQLAlchemy)
"""

__version__ = "0.1.0"
