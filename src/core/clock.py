"""
Clock abstraction so the limiter, monitor and recovery engine can be driven
by a controllable time source in tests.
"""

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Current time as epoch seconds."""
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> float:
        return time.time()


def to_datetime(epoch_seconds: float) -> datetime:
    """Naive UTC datetime, matching what the database columns store."""
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).replace(tzinfo=None)


def to_epoch(value: datetime) -> float:
    """Inverse of to_datetime for naive UTC datetimes."""
    return value.replace(tzinfo=timezone.utc).timestamp()


def utcnow() -> datetime:
    """Current naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
