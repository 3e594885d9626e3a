"""Retry delay calculation."""

from __future__ import annotations

from src.contracts.capability import RetryPolicy
from src.contracts.enums import BackoffStrategy


def backoff_delay_ms(attempt: int, policy: RetryPolicy) -> float:
    """Delay to wait after failed *attempt* (1-based) before the next one.

    fixed       — initial
    linear      — initial × attempt
    exponential — initial × multiplier^(attempt-1)

    The result is capped at ``max_delay_ms``.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    initial = policy.initial_delay_ms
    strategy = BackoffStrategy(policy.backoff_strategy)
    if strategy is BackoffStrategy.LINEAR:
        delay = initial * attempt
    elif strategy is BackoffStrategy.EXPONENTIAL:
        delay = initial * policy.backoff_multiplier ** (attempt - 1)
    else:
        delay = initial
    return min(delay, policy.max_delay_ms)


def backoff_schedule(policy: RetryPolicy) -> list[float]:
    """Delays between consecutive attempts (``max_attempts - 1`` entries)."""
    return [backoff_delay_ms(n, policy) for n in range(1, policy.max_attempts)]
