"""
AI Performance Monitor

Records every inference call per service: latency, success/failure and the
error signature. Keeps a rolling log of the last hour (capped in length) so
the health summary can report a recent failure rate next to the lifetime
counters.

Slow calls and high recent failure rates are logged as warnings. They are
advisory only, traffic is never blocked from here.
"""

import itertools
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional

from src.core.clock import Clock, SystemClock
from src.core.config import settings
from src.core.exceptions import ZoneGuardError
from src.core.logging import get_logger
from src.core.metrics import record_inference_call

logger = get_logger(__name__)

ONE_HOUR_SECONDS = 3600.0

IMAGE_ANALYSIS_SERVICE = "image-analysis"
INGREDIENT_ZONING_SERVICE = "ingredient-zoning"
DEFAULT_SERVICES = (IMAGE_ANALYSIS_SERVICE, INGREDIENT_ZONING_SERVICE)


@dataclass(frozen=True)
class RequestToken:
    request_id: str
    service: str
    started_at: float   # epoch seconds


@dataclass(frozen=True)
class RequestRecord:
    timestamp: float
    success: bool
    duration_ms: float


@dataclass
class ServiceStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_duration_ms: float = 0.0
    request_log: Deque[RequestRecord] = field(default_factory=deque)
    error_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def average_response_time_ms(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.total_duration_ms / self.total_requests

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests

    def recent(self, since: float) -> List[RequestRecord]:
        return [record for record in self.request_log if record.timestamp > since]

    def top_errors(self, n: int = 3) -> List[Dict[str, Any]]:
        ranked = sorted(self.error_counts.items(), key=lambda item: item[1], reverse=True)
        return [{"error": error, "count": count} for error, count in ranked[:n]]


def error_signature(error: Any, max_length: int = 120) -> str:
    """Stable, short key for grouping errors."""
    if isinstance(error, ZoneGuardError):
        signature = f"{error.code}: {error.message}"
    elif isinstance(error, BaseException):
        signature = f"{type(error).__name__}: {error}"
    else:
        signature = str(error)
    return signature[:max_length]


def _recent_failure_rate(records: List[RequestRecord]) -> float:
    if not records:
        return 0.0
    return sum(1 for record in records if not record.success) / len(records)


class AIPerformanceMonitor:
    """Per-service inference call statistics."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        services: Iterable[str] = DEFAULT_SERVICES,
        max_history: int = settings.MONITOR_MAX_HISTORY,
        slow_response_ms: float = settings.SLOW_RESPONSE_WARNING_MS,
        high_failure_rate: float = settings.HIGH_FAILURE_RATE_WARNING,
        high_failure_min_requests: int = settings.HIGH_FAILURE_RATE_MIN_REQUESTS
    ):
        self.clock = clock or SystemClock()
        self.max_history = max_history
        self.slow_response_ms = slow_response_ms
        self.high_failure_rate = high_failure_rate
        self.high_failure_min_requests = high_failure_min_requests
        self._services = tuple(services)
        self._stats: Dict[str, ServiceStats] = {name: ServiceStats() for name in self._services}
        self._ids = itertools.count(1)

    # =========================================================================
    # Recording
    # =========================================================================

    def start_request(self, service: str) -> RequestToken:
        token = RequestToken(
            request_id=f"{service}-{next(self._ids)}",
            service=service,
            started_at=self.clock.now()
        )
        logger.debug("ai_request_started", request_id=token.request_id, service=service)
        return token

    def end_request(
        self,
        token: RequestToken,
        success: bool,
        error: Any = None,
        duration_ms: Optional[float] = None,
        model: Optional[str] = None
    ):
        now = self.clock.now()
        if duration_ms is None:
            duration_ms = max(0.0, (now - token.started_at) * 1000.0)

        stats = self._stats.get(token.service)
        if stats is None:
            stats = self._stats[token.service] = ServiceStats()

        stats.total_requests += 1
        if success:
            stats.successful_requests += 1
        else:
            stats.failed_requests += 1
            signature = error_signature(error) if error is not None else "unknown error"
            stats.error_counts[signature] = stats.error_counts.get(signature, 0) + 1

        stats.total_duration_ms += duration_ms
        stats.request_log.append(RequestRecord(timestamp=now, success=success, duration_ms=duration_ms))
        while len(stats.request_log) > self.max_history:
            stats.request_log.popleft()

        record_inference_call(token.service, success, duration_ms)

        logger.debug(
            "ai_request_completed",
            request_id=token.request_id,
            service=token.service,
            success=success,
            duration_ms=round(duration_ms, 1),
            model=model
        )
        self._check_warnings(token.service, stats, duration_ms, model, now)

    def _check_warnings(self, service: str, stats: ServiceStats, duration_ms: float, model: Optional[str], now: float):
        if duration_ms > self.slow_response_ms:
            logger.warning("ai_slow_response", service=service, duration_ms=round(duration_ms, 1), model=model)

        recent = stats.recent(now - ONE_HOUR_SECONDS)
        failure_rate = _recent_failure_rate(recent)
        if failure_rate > self.high_failure_rate and len(recent) > self.high_failure_min_requests:
            logger.warning(
                "ai_high_failure_rate",
                service=service,
                failure_rate=round(failure_rate, 3),
                requests_last_hour=len(recent),
                failed_requests=stats.failed_requests
            )

    @asynccontextmanager
    async def track(self, service: str, model: Optional[str] = None):
        """
        Record the wrapped call as one request.

        Usage:
            async with monitor.track("image-analysis", model="openai/gpt-4o"):
                reply = await client.complete(...)
        """
        token = self.start_request(service)
        try:
            yield token
        except Exception as e:
            self.end_request(token, success=False, error=e, model=model)
            raise
        self.end_request(token, success=True, model=model)

    # =========================================================================
    # Reading
    # =========================================================================

    def get_service_stats(self, service: str) -> Optional[Dict[str, Any]]:
        stats = self._stats.get(service)
        if stats is None:
            return None
        return self._summarize(stats, self.clock.now())

    def get_health_summary(self) -> Dict[str, Dict[str, Any]]:
        now = self.clock.now()
        return {service: self._summarize(stats, now) for service, stats in self._stats.items()}

    def _summarize(self, stats: ServiceStats, now: float) -> Dict[str, Any]:
        recent = stats.recent(now - ONE_HOUR_SECONDS)
        return {
            "totalRequests": stats.total_requests,
            "successfulRequests": stats.successful_requests,
            "failedRequests": stats.failed_requests,
            "successRate": stats.success_rate,
            "averageResponseTime": round(stats.average_response_time_ms),
            "recentFailureRate": _recent_failure_rate(recent),
            "requestsLastHour": len(recent),
            "topErrors": stats.top_errors(3),
        }

    def export_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Raw per-service counters for external monitoring systems."""
        return {
            service: {
                "totalRequests": stats.total_requests,
                "successfulRequests": stats.successful_requests,
                "failedRequests": stats.failed_requests,
                "totalDurationMs": stats.total_duration_ms,
                "averageResponseTime": stats.average_response_time_ms,
                "requestLogSize": len(stats.request_log),
                "errorCounts": dict(stats.error_counts),
            }
            for service, stats in self._stats.items()
        }

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cleanup(self) -> int:
        """Drop log entries older than an hour and cap each log. Returns entries removed."""
        cutoff = self.clock.now() - ONE_HOUR_SECONDS
        removed = 0
        for stats in self._stats.values():
            kept = [record for record in stats.request_log if record.timestamp > cutoff][-self.max_history:]
            removed += len(stats.request_log) - len(kept)
            stats.request_log = deque(kept)

        logger.debug("ai_metrics_cleanup_completed", removed=removed)
        return removed

    def reset(self):
        self._stats = {name: ServiceStats() for name in self._services}
        logger.debug("ai_metrics_reset")
