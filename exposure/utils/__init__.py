"""Utility modules for configuration, logging, errors and retries."""

from .config import Config
from .errors import (
    ExposureError,
    DependencyError,
    InvalidTransitionError,
    ReconciliationError,
)
from .retry import RetryPolicy, call_store, call_with_retry

__all__ = [
    'Config',
    'ExposureError',
    'DependencyError',
    'InvalidTransitionError',
    'ReconciliationError',
    'RetryPolicy',
    'call_store',
    'call_with_retry',
]
