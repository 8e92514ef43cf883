"""Resilience patterns for calls to the persistence collaborator.

Provides retry logic with exponential backoff.
"""

from .retry import (
    run_with_retry,
    RetryConfig,
    RetryExhausted,
)

__all__ = [
    "run_with_retry",
    "RetryConfig",
    "RetryExhausted",
]
