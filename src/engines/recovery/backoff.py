"""
Exponential backoff for recovery attempts.
"""

from dataclasses import dataclass
from datetime import timedelta

from src.core.config import settings


@dataclass(frozen=True)
class BackoffPolicy:
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    multiplier: float = 2.0

    @classmethod
    def from_settings(cls) -> "BackoffPolicy":
        return cls(
            base_delay_ms=settings.BASE_RETRY_DELAY_MS,
            max_delay_ms=settings.MAX_RETRY_DELAY_MS,
            multiplier=settings.RETRY_MULTIPLIER,
        )

    def next_delay_ms(self, attempt: int) -> float:
        """
        Delay before the attempt following failed attempt number `attempt`.

        attempt 1 -> base, attempt 2 -> base * multiplier, ... capped at max.
        """
        exponent = max(0, attempt - 1)
        return min(self.base_delay_ms * (self.multiplier ** exponent), self.max_delay_ms)

    def next_delay(self, attempt: int) -> timedelta:
        return timedelta(milliseconds=self.next_delay_ms(attempt))
