"""
financing_batch -- Recurring liquidity-provider yield accrual.

YieldAccrualEngine runs one cycle over a pool's share accounts;
AccrualScheduler drives cycles from a background thread.
"""
