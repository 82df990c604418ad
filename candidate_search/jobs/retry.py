"""Exponential backoff for re-enqueued embedding jobs."""

import random
from typing import Optional

JITTER_FRACTION = 0.1


class RetryPolicy:
    """Backoff configuration for job retries.

    The delay before retry ``n`` (1-based) is
    ``min(base_delay * exponential_base ** (n - 1), max_delay)`` with up to
    10% jitter either way. ``base_delay == 0`` re-enqueues immediately.
    """

    def __init__(
        self,
        base_delay: float = 2.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        rng: Optional[random.Random] = None
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self._rng = rng or random.Random()

    def delay_for(self, attempt: int) -> float:
        """Calculate the delay for the given retry number."""
        if self.base_delay <= 0:
            return 0.0

        delay = self.base_delay * (self.exponential_base ** max(attempt - 1, 0))
        delay = min(delay, self.max_delay)

        # Add jitter to avoid thundering herd
        if self.jitter:
            jitter_range = delay * JITTER_FRACTION
            delay += self._rng.uniform(-jitter_range, jitter_range)

        return max(delay, 0.0)

    @classmethod
    def immediate(cls) -> "RetryPolicy":
        return cls(base_delay=0.0, jitter=False)
