"""
WillVault Retry Policy

Bounded backoff for calls to the durable store and the access ledger.

Only transport errors are retried (StorageUnavailable, LedgerUnavailable by
default). Cryptographic errors, validation errors, NotFound and explicit
ledger denials pass straight through. When attempts are exhausted the last
transport error is re-raised unchanged, so a caller can still tell an
outage from a denial.

Sleeps use asyncio.sleep and are therefore cancellable.
"""

import asyncio
import random
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Awaitable, Callable, Optional, TypeVar

from .config import RETRY_BASE_DELAY_SECONDS, RETRY_MAX_ATTEMPTS, RETRY_MAX_DELAY_SECONDS
from .errors import LedgerUnavailable, StorageUnavailable
from .logging_config import audit_log

T = TypeVar("T")


class BackoffStrategy(Enum):
    """Retry backoff strategies."""
    FIXED = auto()
    LINEAR = auto()
    EXPONENTIAL = auto()
    EXPONENTIAL_JITTER = auto()


@dataclass
class RetryConfig:
    """Retry policy configuration."""
    max_attempts: int = RETRY_MAX_ATTEMPTS
    base_delay_seconds: float = RETRY_BASE_DELAY_SECONDS
    max_delay_seconds: float = RETRY_MAX_DELAY_SECONDS
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL_JITTER
    jitter_factor: float = 0.5
    retryable_exceptions: tuple = (StorageUnavailable, LedgerUnavailable)


@dataclass
class RetryMetrics:
    """Retry metrics."""
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    retries_exhausted: int = 0
    total_retry_delay_seconds: float = 0.0


class RetryPolicy:
    """
    Async retry policy with configurable backoff.

    Example:
        retry = RetryPolicy(max_attempts=4)
        data = await retry.execute(lambda: store.get(locator), operation="store.get")
    """

    def __init__(
        self,
        max_attempts: int = RETRY_MAX_ATTEMPTS,
        base_delay_seconds: float = RETRY_BASE_DELAY_SECONDS,
        max_delay_seconds: float = RETRY_MAX_DELAY_SECONDS,
        backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL_JITTER,
        jitter_factor: float = 0.5,
        retryable_exceptions: tuple = (StorageUnavailable, LedgerUnavailable),
        on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.config = RetryConfig(
            max_attempts=max_attempts,
            base_delay_seconds=base_delay_seconds,
            max_delay_seconds=max_delay_seconds,
            backoff_strategy=backoff_strategy,
            jitter_factor=jitter_factor,
            retryable_exceptions=retryable_exceptions,
        )
        self._metrics = RetryMetrics()
        self._lock = threading.Lock()
        self._on_retry = on_retry

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(max_attempts=1)

    @property
    def metrics(self) -> RetryMetrics:
        """Snapshot of the retry counters."""
        with self._lock:
            return RetryMetrics(
                total_attempts=self._metrics.total_attempts,
                successful_attempts=self._metrics.successful_attempts,
                failed_attempts=self._metrics.failed_attempts,
                retries_exhausted=self._metrics.retries_exhausted,
                total_retry_delay_seconds=self._metrics.total_retry_delay_seconds,
            )

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        base = self.config.base_delay_seconds
        strategy = self.config.backoff_strategy

        if strategy == BackoffStrategy.FIXED:
            delay = base
        elif strategy == BackoffStrategy.LINEAR:
            delay = base * attempt
        elif strategy == BackoffStrategy.EXPONENTIAL:
            delay = base * (2 ** (attempt - 1))
        else:
            exp_delay = base * (2 ** (attempt - 1))
            delay = exp_delay + random.uniform(0, self.config.jitter_factor * exp_delay)

        return min(delay, self.config.max_delay_seconds)

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, self.config.retryable_exceptions)

    async def execute(self, func: Callable[[], Awaitable[T]], operation: str = "call") -> T:
        """
        Run `func` until it succeeds, raises a non-retryable error, or the
        attempts run out.

        Args:
            func: Zero-argument callable returning a fresh awaitable per attempt
            operation: Name used in retry log records
        """
        for attempt in range(1, self.config.max_attempts + 1):
            with self._lock:
                self._metrics.total_attempts += 1
            try:
                result = await func()
            except Exception as e:
                with self._lock:
                    self._metrics.failed_attempts += 1
                if not self.is_retryable(e):
                    raise
                if attempt >= self.config.max_attempts:
                    with self._lock:
                        self._metrics.retries_exhausted += 1
                    raise
                delay = self.calculate_delay(attempt)
                with self._lock:
                    self._metrics.total_retry_delay_seconds += delay
                audit_log.transport_retry(operation, attempt, delay, type(e).__name__)
                if self._on_retry:
                    self._on_retry(attempt, e, delay)
                await asyncio.sleep(delay)
            else:
                with self._lock:
                    self._metrics.successful_attempts += 1
                return result
        raise AssertionError("unreachable")
