"""
Health scoring over the monitor's summary.

The score starts at 100 and loses fixed penalties per service for a low
success rate, slow or elevated latency, a high recent failure rate and a
dominant recurring error. Thresholds come from HealthPolicy so they can be
tuned through settings.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from src.core.config import settings

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"
ERROR = "error"

# General recommendation triggers
CIRCUIT_BREAKER_ISSUE_COUNT = 3
TIMEOUT_HINT_LATENCY_MS = 6000


@dataclass(frozen=True)
class HealthPolicy:
    min_success_rate: float = 0.95
    min_samples: int = 10
    low_success_penalty: int = 15
    slow_latency_ms: float = 8000
    slow_latency_penalty: int = 10
    elevated_latency_ms: float = 5000
    elevated_latency_penalty: int = 5
    max_recent_failure_rate: float = 0.1
    min_recent_samples: int = 5
    recent_failure_penalty: int = 20
    dominant_error_share: float = 0.1
    dominant_error_penalty: int = 8

    @classmethod
    def from_settings(cls) -> "HealthPolicy":
        return cls(
            min_success_rate=settings.HEALTH_MIN_SUCCESS_RATE,
            min_samples=settings.HEALTH_MIN_SAMPLES,
            low_success_penalty=settings.HEALTH_LOW_SUCCESS_PENALTY,
            slow_latency_ms=settings.HEALTH_SLOW_LATENCY_MS,
            slow_latency_penalty=settings.HEALTH_SLOW_LATENCY_PENALTY,
            elevated_latency_ms=settings.HEALTH_ELEVATED_LATENCY_MS,
            elevated_latency_penalty=settings.HEALTH_ELEVATED_LATENCY_PENALTY,
            max_recent_failure_rate=settings.HEALTH_MAX_RECENT_FAILURE_RATE,
            min_recent_samples=settings.HEALTH_MIN_RECENT_SAMPLES,
            recent_failure_penalty=settings.HEALTH_RECENT_FAILURE_PENALTY,
            dominant_error_share=settings.HEALTH_DOMINANT_ERROR_SHARE,
            dominant_error_penalty=settings.HEALTH_DOMINANT_ERROR_PENALTY,
        )


@dataclass
class HealthAssessment:
    status: str
    score: int
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


def status_for_score(score: int) -> str:
    if score >= 90:
        return HEALTHY
    if score >= 70:
        return DEGRADED
    if score >= 50:
        return UNHEALTHY
    return ERROR


def assess_health(summary: Dict[str, Dict[str, Any]], policy: HealthPolicy) -> HealthAssessment:
    """Derive score, status, issues and recommendations from a health summary."""
    issues: List[str] = []
    recommendations: List[str] = []
    score = 100

    if not summary:
        issues.append("No AI services have recorded usage")

    for service, stats in summary.items():
        total = stats.get("totalRequests", 0)
        success_rate = stats.get("successRate", 0.0)
        latency = stats.get("averageResponseTime", 0)
        recent_rate = stats.get("recentFailureRate", 0.0)
        recent_count = stats.get("requestsLastHour", 0)
        top_errors = stats.get("topErrors") or []

        if total == 0:
            issues.append(f"{service} has no recorded usage")
            recommendations.append(f"Verify {service} is properly integrated and accessible")
            continue

        if success_rate < policy.min_success_rate and total >= policy.min_samples:
            issues.append(f"{service} has low success rate: {round(success_rate * 100)}%")
            recommendations.append(f"Investigate {service} failures and improve error handling")
            score -= policy.low_success_penalty

        if latency > policy.slow_latency_ms:
            issues.append(f"{service} has slow response times: {latency}ms")
            recommendations.append(f"Optimize {service} performance or consider timeout adjustments")
            score -= policy.slow_latency_penalty
        elif latency > policy.elevated_latency_ms:
            issues.append(f"{service} response times are elevated: {latency}ms")
            recommendations.append(f"Monitor {service} performance trends")
            score -= policy.elevated_latency_penalty

        if recent_rate > policy.max_recent_failure_rate and recent_count >= policy.min_recent_samples:
            issues.append(f"{service} recent failure rate is high: {round(recent_rate * 100)}%")
            recommendations.append(f"Immediate attention needed for {service} reliability")
            score -= policy.recent_failure_penalty

        if top_errors:
            top = top_errors[0]
            if top["count"] > total * policy.dominant_error_share:
                issues.append(f"{service} has frequent errors: {top['error']} ({top['count']} times)")
                recommendations.append(f"Address common error pattern in {service}: {top['error']}")
                score -= policy.dominant_error_penalty

    score = max(0, min(100, score))
    status = status_for_score(score)

    if status != HEALTHY:
        if len(issues) > CIRCUIT_BREAKER_ISSUE_COUNT:
            recommendations.append("Consider implementing circuit breaker pattern for AI services")
        if any(stats.get("averageResponseTime", 0) > TIMEOUT_HINT_LATENCY_MS for stats in summary.values()):
            recommendations.append("Consider implementing request timeouts and retry logic")

    return HealthAssessment(status=status, score=score, issues=issues, recommendations=recommendations)
