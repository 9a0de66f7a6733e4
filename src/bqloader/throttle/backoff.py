"""Exponential backoff for waiting on free BigQuery capacity.

``BackoffPolicy`` is immutable configuration; each submission draws from
its own ``BackoffSequence``.  Without jitter the n-th draw (0-indexed) is
exactly ``initial_delay * exponent ** n``, and draw ``max_retries + 1``
reports exhaustion by returning ``None``.  Exhaustion is a state of the
sequence, not an error from BigQuery.

Example usage:
    policy = BackoffPolicy(initial_delay=1.0, exponent=1.5, max_retries=3)
    backoff = policy.sequence()
    while (delay := backoff.next()) is not None:
        await asyncio.sleep(delay)
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from bqloader.core.config import LoaderConfig


@dataclass(frozen=True)
class BackoffPolicy:
    """Shape of the backoff schedule.

    Attributes:
        initial_delay: First wait, in seconds.
        exponent: Multiplier applied on every further draw.
        max_retries: Number of waits before the sequence is exhausted.
        max_delay: Optional cap on a single wait.
        jitter: Fraction (0.0-1.0) of each wait added at random.
        seed: Seed for the jitter RNG; equal seeds give equal sequences.
    """

    initial_delay: float
    exponent: float
    max_retries: int
    max_delay: float | None = None
    jitter: float = 0.0
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.exponent < 1:
            raise ValueError("exponent must be >= 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.max_delay is not None and self.max_delay <= 0:
            raise ValueError("max_delay must be positive")
        if not 0.0 <= self.jitter < 1.0:
            raise ValueError("jitter must be in [0.0, 1.0)")

    @classmethod
    def from_config(cls, config: LoaderConfig) -> BackoffPolicy:
        return cls(
            initial_delay=config.initial_backoff_seconds,
            exponent=config.backoff_exponent,
            max_retries=config.max_retries,
            max_delay=config.max_backoff_seconds,
            jitter=config.backoff_jitter,
        )

    def base_delay(self, n: int) -> float:
        """Un-jittered, uncapped delay for draw ``n``."""
        return self.initial_delay * self.exponent ** n

    def sequence(self) -> BackoffSequence:
        """Start a fresh sequence for one submission."""
        return BackoffSequence(self)

    def delays(self) -> list[float]:
        """Every delay a fresh sequence would yield, in order."""
        backoff = self.sequence()
        result: list[float] = []
        while (delay := backoff.next()) is not None:
            result.append(delay)
        return result


class BackoffSequence:
    """Stateful draw of successive waits from a BackoffPolicy.

    Delays never decrease; once ``max_retries`` waits have been drawn every
    further ``next()`` returns ``None``.
    """

    def __init__(self, policy: BackoffPolicy) -> None:
        self._policy = policy
        self._attempts = 0
        self._last = 0.0
        self._rng = random.Random(policy.seed)

    @property
    def attempts(self) -> int:
        """Waits drawn so far."""
        return self._attempts

    @property
    def exhausted(self) -> bool:
        return self._attempts >= self._policy.max_retries

    def next(self) -> float | None:
        """Return the next wait in seconds, or ``None`` once exhausted."""
        if self.exhausted:
            return None
        policy = self._policy
        delay = policy.base_delay(self._attempts)
        if policy.jitter:
            delay += delay * policy.jitter * self._rng.random()
        if policy.max_delay is not None:
            delay = min(delay, policy.max_delay)
        delay = max(delay, self._last)
        self._last = delay
        self._attempts += 1
        return delay


__all__ = ["BackoffPolicy", "BackoffSequence"]
