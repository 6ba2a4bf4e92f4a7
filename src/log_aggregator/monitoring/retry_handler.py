"""
Retry handling with exponential backoff for pipeline operations.

Provides robust error handling with:
- Exponential backoff with jitter
- Configurable retry limits
- Circuit breaker pattern
- Error classification against the pipeline error taxonomy
"""

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from ..exceptions import (
    ConfigurationError,
    DeliveryFailure,
    FormatUnknownError,
    MalformedEventError,
    ObjectNotFoundError,
    ObjectParseFailure,
    ParseError,
    TransientIOError,
)

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Categories of errors for retry decisions."""

    TRANSIENT = "transient"  # Retry with backoff
    RATE_LIMITED = "rate_limited"  # Wait and retry
    SERVICE_UNAVAILABLE = "service_unavailable"  # Wait longer and retry
    PERMANENT = "permanent"  # Do not retry
    UNKNOWN = "unknown"  # Retry with caution


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.1

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay before next retry attempt.

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = min(
            self.base_delay_seconds * (self.exponential_base**attempt),
            self.max_delay_seconds,
        )

        if self.jitter:
            jitter_range = delay * self.jitter_factor
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0, delay)


@dataclass
class RetryResult:
    """Result of a retry operation."""

    success: bool
    result: Any = None
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[Exception] = None
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "attempts": self.attempts,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "last_error": str(self.last_error) if self.last_error else None,
            "error_count": len(self.errors),
        }


class CircuitState(Enum):
    """States of a circuit breaker."""

    CLOSED = "closed"  # Calls pass through
    OPEN = "open"  # Calls rejected until the recovery timeout elapses
    HALF_OPEN = "half_open"  # Trial calls decide whether to close again


class CircuitBreaker:
    """
    Rejects calls to a dependency that keeps failing.

    After `failure_threshold` consecutive failures the circuit opens and
    allow_request() returns False until `recovery_timeout_seconds` have
    passed. The circuit then lets trial calls through; `success_threshold`
    successes close it, any failure opens it again.

    Shared between threads; every state change happens under a lock.

    Example:
        breaker = CircuitBreaker(failure_threshold=5, recovery_timeout_seconds=30)
        if breaker.allow_request():
            try:
                store.put_object(key, data)
            except TransientIOError:
                breaker.record_failure()
            else:
                breaker.record_success()
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout_seconds: float = 30.0,
        success_threshold: int = 1,
        clock: Callable[[], float] = time.monotonic,
        name: str = "circuit",
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")

        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout_seconds
        self.success_threshold = success_threshold
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._half_open_successes = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def allow_request(self) -> bool:
        """Check whether a call may go through now."""
        return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.success_threshold:
                    self._state = CircuitState.CLOSED
                    self._opened_at = None
                    logger.info(f"{self.name}: circuit closed after recovery")
            self._failures = 0

    def record_failure(self) -> None:
        with self._lock:
            self._maybe_half_open()
            self._failures += 1
            if self._state == CircuitState.HALF_OPEN:
                self._open()
                logger.warning(f"{self.name}: trial call failed, circuit open again")
            elif (
                self._state == CircuitState.CLOSED
                and self._failures >= self.failure_threshold
            ):
                self._open()
                logger.warning(
                    f"{self.name}: circuit opened after {self._failures} failures"
                )

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._half_open_successes = 0
            self._opened_at = None

    def get_state(self) -> dict:
        """Get current state as dictionary."""
        with self._lock:
            self._maybe_half_open()
            return {
                "state": self._state.value,
                "consecutive_failures": self._failures,
            }

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._half_open_successes = 0

    def _maybe_half_open(self) -> None:
        """Move OPEN to HALF_OPEN once the recovery timeout elapsed. Caller holds the lock."""
        if (
            self._state == CircuitState.OPEN
            and self._clock() - self._opened_at >= self.recovery_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            self._half_open_successes = 0
            logger.info(f"{self.name}: circuit half-open, allowing trial calls")


class ErrorClassifier:
    """
    Classifies errors to determine retry behavior.

    Pipeline exceptions are classified by type first; anything else
    falls back to message pattern matching.
    """

    TRANSIENT_TYPES = (TransientIOError, TimeoutError, ConnectionError)

    PERMANENT_TYPES = (
        FormatUnknownError,
        ParseError,
        ObjectParseFailure,
        MalformedEventError,
        ConfigurationError,
        ObjectNotFoundError,
        DeliveryFailure,
    )

    # Patterns for transient errors (network issues, timeouts)
    TRANSIENT_PATTERNS = [
        "timeout",
        "connection refused",
        "connection reset",
        "temporary failure",
        "temporarily unavailable",
        "unavailable",
        "503",
        "504",
    ]

    # Patterns for rate limiting
    RATE_LIMIT_PATTERNS = [
        "rate limit",
        "slow down",
        "throttl",
        "429",
    ]

    # Patterns for permanent errors (do not retry)
    PERMANENT_PATTERNS = [
        "not found",
        "404",
        "forbidden",
        "403",
        "access denied",
        "permission denied",
    ]

    @classmethod
    def classify(cls, error: Exception) -> ErrorCategory:
        """
        Classify an error to determine retry behavior.

        Args:
            error: The exception to classify

        Returns:
            ErrorCategory for retry decisions
        """
        if isinstance(error, cls.TRANSIENT_TYPES):
            return ErrorCategory.TRANSIENT

        if isinstance(error, cls.PERMANENT_TYPES):
            return ErrorCategory.PERMANENT

        error_str = str(error).lower()

        for pattern in cls.PERMANENT_PATTERNS:
            if pattern in error_str:
                return ErrorCategory.PERMANENT

        for pattern in cls.RATE_LIMIT_PATTERNS:
            if pattern in error_str:
                return ErrorCategory.RATE_LIMITED

        for pattern in cls.TRANSIENT_PATTERNS:
            if pattern in error_str:
                return ErrorCategory.TRANSIENT

        if isinstance(error, (ValueError, TypeError, KeyError)):
            return ErrorCategory.PERMANENT

        return ErrorCategory.UNKNOWN


class RetryManager:
    """
    Manages retry logic for operations with configurable strategies.

    Combines exponential backoff with error classification.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize retry manager.

        Args:
            config: Retry configuration
            sleep: Function used to wait between attempts
        """
        self.config = config or RetryConfig()
        self._sleep = sleep

    def execute_with_retry(
        self,
        func: Callable[..., Any],
        *args,
        retry_on: Optional[list[ErrorCategory]] = None,
        **kwargs,
    ) -> RetryResult:
        """
        Execute a function with retry logic.

        Args:
            func: Function to execute
            *args: Positional arguments for the function
            retry_on: Error categories to retry on (default: all but permanent)
            **kwargs: Keyword arguments for the function

        Returns:
            RetryResult with outcome and statistics
        """
        if retry_on is None:
            retry_on = [
                ErrorCategory.TRANSIENT,
                ErrorCategory.RATE_LIMITED,
                ErrorCategory.SERVICE_UNAVAILABLE,
                ErrorCategory.UNKNOWN,
            ]

        result = RetryResult(success=False)

        for attempt in range(self.config.max_retries + 1):
            result.attempts = attempt + 1

            try:
                result.result = func(*args, **kwargs)
                result.success = True

                logger.debug(f"Operation succeeded on attempt {attempt + 1}")
                break

            except Exception as e:
                category = ErrorClassifier.classify(e)
                error_info = {
                    "attempt": attempt + 1,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "category": category.value,
                }
                result.errors.append(error_info)
                result.last_error = e

                logger.warning(
                    f"Attempt {attempt + 1} failed: {e} (category: {category.value})"
                )

                # Check if we should retry
                if category not in retry_on:
                    logger.info(f"Not retrying: error category {category.value}")
                    break

                # Check if we've exhausted retries
                if attempt >= self.config.max_retries:
                    logger.error(f"Max retries ({self.config.max_retries}) exhausted")
                    break

                # Calculate and apply delay
                delay = self.config.calculate_delay(attempt)

                # Rate limited errors get extra delay
                if category == ErrorCategory.RATE_LIMITED:
                    delay *= 2
                elif category == ErrorCategory.SERVICE_UNAVAILABLE:
                    delay *= 3

                logger.info(f"Retrying in {delay:.2f} seconds...")
                result.total_delay_seconds += delay
                self._sleep(delay)

        return result
