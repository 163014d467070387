"""Exponential backoff with jitter for failed queue events."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import timedelta

DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 60.0
DEFAULT_JITTER_RATIO = 0.3


def compute_backoff(
    attempt: int,
    *,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
    jitter_ratio: float = DEFAULT_JITTER_RATIO,
    rng: random.Random | None = None,
) -> float:
    """Return the delay in seconds before retry number `attempt` (1-based).

    `min(base * 2**(attempt - 1), max)` plus uniform jitter in
    `[0, jitter_ratio * delay]`, so many events failing together do not all
    come back at the same instant.
    """
    if attempt < 1:
        msg = f"attempt must be >= 1, got {attempt}"
        raise ValueError(msg)
    # Exponent is clamped so large attempt numbers cannot overflow the float.
    exponent = min(attempt - 1, 64)
    delay = min(base_delay * (2**exponent), max_delay)
    source = rng if rng is not None else random
    return delay + source.uniform(0, jitter_ratio * delay)


@dataclass
class RetryScheduler:
    """Configured retry policy shared by the batch worker."""

    base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS
    jitter_ratio: float = DEFAULT_JITTER_RATIO
    max_attempts: int = 3
    rng: random.Random = field(default_factory=random.Random)

    def backoff(self, attempt: int) -> timedelta:
        return timedelta(
            seconds=compute_backoff(
                attempt,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                jitter_ratio=self.jitter_ratio,
                rng=self.rng,
            ),
        )

    def should_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts
