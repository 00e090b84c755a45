"""Batch scheduling, operation execution and the runtime context."""

from .batch_scheduler import BatchScheduler
from .runtime import PagewrightRuntime
from .single_flight import SingleFlight
from .token_accountant import TokenAccountant

__all__ = ["BatchScheduler", "PagewrightRuntime", "SingleFlight", "TokenAccountant"]
