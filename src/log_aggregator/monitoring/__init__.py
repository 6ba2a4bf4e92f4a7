"""Monitoring module for pipeline health."""

from .retry_handler import (
    CircuitBreaker,
    CircuitState,
    ErrorCategory,
    ErrorClassifier,
    RetryConfig,
    RetryManager,
    RetryResult,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ErrorCategory",
    "ErrorClassifier",
    "RetryConfig",
    "RetryManager",
    "RetryResult",
]
