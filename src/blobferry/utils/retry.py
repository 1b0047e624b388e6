"""
Retry utilities for blobferry.

One policy object drives every retried saga step: a bounded number of
attempts, exponential or fixed backoff, and a classifier predicate that
decides whether a given error is worth another attempt.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field, replace
from typing import (
    Awaitable,
    Callable,
    Optional,
    Tuple,
    Type,
    TypeVar,
)

T = TypeVar("T")

ErrorClassifier = Callable[[BaseException], bool]
RetryHook = Callable[[int, BaseException], None]
AttemptHook = Callable[[int], None]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry behavior for one step.

    An error is retried when it is an instance of ``retryable_errors`` and,
    if ``classifier`` is set, ``classifier(error)`` returns True. Anything
    else propagates immediately.

    Example:
        ```python
        policy = RetryPolicy(
            max_attempts=5,
            base_delay_ms=1000,
            retryable_errors=(LedgerNetworkError,),
        )

        claim_policy = RetryPolicy.fixed(
            delay_ms=5000,
            max_attempts=5,
            classifier=is_transient_claim_error,
        )
        ```
    """

    max_attempts: int = 3
    """Maximum number of attempts (first call included)."""

    base_delay_ms: int = 1000
    """Base delay in milliseconds for exponential backoff."""

    max_delay_ms: int = 30000
    """Maximum delay in milliseconds (cap for exponential growth)."""

    jitter: bool = True
    """Whether to add random jitter to delays."""

    exponential_base: float = 2.0
    """Base for exponential backoff calculation. 1.0 gives a fixed delay."""

    retryable_errors: Tuple[Type[BaseException], ...] = field(
        default_factory=lambda: (Exception,)
    )
    """Tuple of exception types that may trigger a retry."""

    classifier: Optional[ErrorClassifier] = None
    """Optional predicate narrowing which errors are retried."""

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be non-negative")

    @classmethod
    def fixed(
        cls,
        delay_ms: int,
        max_attempts: int,
        *,
        retryable_errors: Tuple[Type[BaseException], ...] = (Exception,),
        classifier: Optional[ErrorClassifier] = None,
    ) -> "RetryPolicy":
        """Policy with a constant delay between attempts."""
        return cls(
            max_attempts=max_attempts,
            base_delay_ms=delay_ms,
            max_delay_ms=delay_ms,
            jitter=False,
            exponential_base=1.0,
            retryable_errors=retryable_errors,
            classifier=classifier,
        )

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        """Single attempt, nothing is retried."""
        return cls(max_attempts=1, base_delay_ms=0, jitter=False)

    def with_overrides(self, **changes: object) -> "RetryPolicy":
        """Copy of this policy with some fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]

    def should_retry(self, error: BaseException) -> bool:
        """Whether ``error`` qualifies for another attempt under this policy."""
        if not isinstance(error, self.retryable_errors):
            return False
        if self.classifier is not None:
            return self.classifier(error)
        return True


def calculate_delay(attempt: int, policy: RetryPolicy) -> float:
    """
    Calculate delay with exponential backoff and optional jitter.

    Args:
        attempt: Zero-based attempt number (0 = first retry)
        policy: Retry policy

    Returns:
        Delay in seconds
    """
    delay_ms = policy.base_delay_ms * (policy.exponential_base ** attempt)
    delay_ms = min(delay_ms, policy.max_delay_ms)

    if policy.jitter:
        # Full jitter: random value between 0 and calculated delay
        delay_ms = random.uniform(0, delay_ms)

    return delay_ms / 1000


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    on_attempt: Optional[AttemptHook] = None,
    on_retry: Optional[RetryHook] = None,
) -> T:
    """
    Execute async function with retry logic.

    Args:
        fn: Async function to execute (no arguments)
        policy: Retry policy (uses defaults if None)
        on_attempt: Called with the 1-based attempt number before each call
        on_retry: Called with (attempt, error) before sleeping for a retry

    Returns:
        Result of the function

    Raises:
        The first non-retryable error, or the last error once attempts are
        exhausted.

    Example:
        ```python
        result = await retry_async(
            fetch_quote,
            RetryPolicy(max_attempts=5, retryable_errors=(QuoteUnavailableError,)),
        )
        ```
    """
    policy = policy or RetryPolicy()

    for attempt in range(policy.max_attempts):
        if on_attempt is not None:
            on_attempt(attempt + 1)
        try:
            return await fn()
        except Exception as e:
            if not policy.should_retry(e) or attempt >= policy.max_attempts - 1:
                raise
            if on_retry is not None:
                on_retry(attempt + 1, e)
            await asyncio.sleep(calculate_delay(attempt, policy))

    # max_attempts >= 1 guarantees the loop either returned or raised
    raise RuntimeError("Retry exhausted without error")

