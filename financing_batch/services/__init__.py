"""Accrual engine and scheduler."""

from financing_batch.services.accrual_engine import YieldAccrualEngine
from financing_batch.services.scheduler import AccrualScheduler

__all__ = ["AccrualScheduler", "YieldAccrualEngine"]
