"""
Admission Controller

Decides per caller identity and traffic class whether a request may reach the
paid inference API. The shared Redis store is tried first; when it reports
StoreUnavailable the in-process store answers instead and the degradation is
logged. The request itself never fails because of the store.

The generic path (arbitrary limit/window, e.g. upload validation) always uses
the in-process store.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from src.core.clock import Clock, SystemClock
from src.core.config import settings
from src.core.exceptions import RateLimitExceededError
from src.core.logging import get_logger
from src.core.metrics import record_admission, record_store_fallback
from src.engines.admission.stores import (
    InMemoryCounterStore,
    RedisCounterStore,
    RateLimitEntry,
    StoreUnavailable,
)

logger = get_logger(__name__)


class TrafficClass(str, Enum):
    """Independently limited kinds of inference traffic."""
    VISION_ANALYSIS = "vision-analysis"           # Expensive image calls
    TEXT_CLASSIFICATION = "text-classification"   # Cheap ingredient zoning


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_seconds: float


@dataclass(frozen=True)
class AdmissionResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float     # epoch seconds
    backend: str

    def raise_for_rejection(self, now: Optional[float] = None):
        if not self.allowed:
            raise RateLimitExceededError(
                limit=self.limit,
                remaining=self.remaining,
                reset_at=self.reset_at,
                now=now
            )

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at * 1000)),
        }


def default_policies() -> Dict[TrafficClass, RateLimitPolicy]:
    window = settings.RATE_LIMIT_WINDOW_SECONDS
    return {
        TrafficClass.VISION_ANALYSIS: RateLimitPolicy(settings.IMAGE_ANALYSIS_RATE_LIMIT, window),
        TrafficClass.TEXT_CLASSIFICATION: RateLimitPolicy(settings.INGREDIENT_ZONING_RATE_LIMIT, window),
    }


class AdmissionController:
    """Dual-tier rate limiter with in-process fallback."""

    def __init__(
        self,
        policies: Optional[Dict[TrafficClass, RateLimitPolicy]] = None,
        shared_store: Optional[RedisCounterStore] = None,
        local_store: Optional[InMemoryCounterStore] = None,
        generic_store: Optional[InMemoryCounterStore] = None,
        clock: Optional[Clock] = None
    ):
        self.clock = clock or SystemClock()
        self.policies = policies or default_policies()
        self.shared_store = shared_store
        self.local_store = local_store or InMemoryCounterStore(self.clock)
        self.generic_store = generic_store or InMemoryCounterStore(self.clock)
        self.fallback_count = 0

    async def admit(self, identifier: str, traffic_class: TrafficClass) -> AdmissionResult:
        policy = self.policies[traffic_class]
        key = f"{traffic_class.value}:{identifier}"
        backend = self.local_store.backend

        entry = None
        if self.shared_store is not None:
            outcome = await self.shared_store.increment(key, policy.limit, policy.window_seconds)
            if isinstance(outcome, StoreUnavailable):
                self.fallback_count += 1
                record_store_fallback(traffic_class.value)
                logger.warning(
                    "rate_limit_store_unavailable",
                    traffic_class=traffic_class.value,
                    reason=outcome.reason,
                    fallback="memory"
                )
            else:
                entry = outcome
                backend = self.shared_store.backend

        if entry is None:
            entry = await self.local_store.increment(key, policy.limit, policy.window_seconds)

        result = self._to_result(entry, policy.limit, backend)
        record_admission(traffic_class.value, result.allowed, backend)

        if not result.allowed:
            logger.warning(
                "rate_limit_exceeded",
                identifier=identifier,
                traffic_class=traffic_class.value,
                limit=policy.limit,
                reset_at=result.reset_at,
                backend=backend
            )
        return result

    async def admit_generic(self, identifier: str, limit: int, window_seconds: float, scope: str = "generic") -> AdmissionResult:
        """Admission for callers outside the named traffic classes, in-process only."""
        entry = await self.generic_store.increment(f"{scope}:{identifier}", limit, window_seconds)
        result = self._to_result(entry, limit, self.generic_store.backend)
        record_admission(scope, result.allowed, self.generic_store.backend)

        if not result.allowed:
            logger.warning("rate_limit_exceeded", identifier=identifier, traffic_class=scope, limit=limit)
        return result

    async def cleanup(self) -> int:
        """Drop expired in-process entries (shared store keys expire on their own)."""
        return await self.local_store.cleanup() + await self.generic_store.cleanup()

    @staticmethod
    def _to_result(entry: RateLimitEntry, limit: int, backend: str) -> AdmissionResult:
        remaining = max(0, limit - entry.count) if entry.allowed else 0
        return AdmissionResult(
            allowed=entry.allowed,
            limit=limit,
            remaining=remaining,
            reset_at=entry.window_reset_at,
            backend=backend,
        )
