"""Delay strategies for transport-level retries.

A strategy answers one question: given the error of a failed attempt and
the attempt number (starting at 1), how long to wait before trying again,
or ``None`` to give up.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod


def is_retryable(error: BaseException) -> bool:
    """Transport errors declare their own retryability via ``retryable``."""
    return bool(getattr(error, "retryable", False))


class RetryStrategy(ABC):
    max_retries: int = 0

    @abstractmethod
    def delay_for(self, attempt: int) -> float: ...

    def should_retry(self, error: BaseException, attempt: int) -> float | None:
        if attempt > self.max_retries or not is_retryable(error):
            return None
        return self.delay_for(attempt)


class NoRetry(RetryStrategy):
    def delay_for(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, error: BaseException, attempt: int) -> float | None:
        return None


class FixedDelay(RetryStrategy):
    def __init__(self, delay: float = 1.0, max_retries: int = 3) -> None:
        self.delay = delay
        self.max_retries = max_retries

    def delay_for(self, attempt: int) -> float:
        return self.delay


class LinearBackoff(RetryStrategy):
    def __init__(
        self,
        initial_delay: float = 1.0,
        increment: float = 1.0,
        max_delay: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        self.initial_delay = initial_delay
        self.increment = increment
        self.max_delay = max_delay
        self.max_retries = max_retries

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.initial_delay + self.increment * (attempt - 1))


class ExponentialBackoff(RetryStrategy):
    """``min(max_delay, initial_delay * multiplier**attempt * (1 +/- jitter))``."""

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 0.1,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
        jitter: float = 0.1,
        rng: random.Random | None = None,
    ) -> None:
        if not 0 <= jitter <= 1:
            raise ValueError(f"jitter must be within [0, 1], got {jitter}")
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter = jitter
        self._rng = rng or random.Random()

    def delay_for(self, attempt: int) -> float:
        base = self.initial_delay * self.multiplier**attempt
        if self.jitter:
            base *= 1 + self._rng.uniform(-self.jitter, self.jitter)
        return min(self.max_delay, base)
