import pytest

from src.core.exceptions import ExternalAPIError, InferenceTimeoutError
from src.engines.monitoring.health import (
    DEGRADED,
    ERROR,
    HEALTHY,
    UNHEALTHY,
    HealthPolicy,
    assess_health,
    status_for_score,
)
from src.engines.monitoring.monitor import (
    IMAGE_ANALYSIS_SERVICE,
    INGREDIENT_ZONING_SERVICE,
    AIPerformanceMonitor,
    error_signature,
)
from tests.helpers import FakeClock

POLICY = HealthPolicy()


def record(monitor, service, success, duration_ms=100, error=None):
    token = monitor.start_request(service)
    monitor.end_request(token, success=success, error=error, duration_ms=duration_ms)


def service_stats(total=20, success_rate=1.0, latency=100, recent_rate=0.0, recent=20, top_errors=None):
    return {
        "totalRequests": total,
        "successfulRequests": round(total * success_rate),
        "failedRequests": total - round(total * success_rate),
        "successRate": success_rate,
        "averageResponseTime": latency,
        "recentFailureRate": recent_rate,
        "requestsLastHour": recent,
        "topErrors": top_errors or [],
    }


class TestAIPerformanceMonitor:

    def test_summary_counts_and_rates(self):
        monitor = AIPerformanceMonitor(clock=FakeClock())
        for _ in range(3):
            record(monitor, IMAGE_ANALYSIS_SERVICE, True, duration_ms=200)
        record(monitor, IMAGE_ANALYSIS_SERVICE, False, duration_ms=600, error=InferenceTimeoutError("timed out", service="image-analysis"))

        stats = monitor.get_service_stats(IMAGE_ANALYSIS_SERVICE)

        assert stats["totalRequests"] == 4
        assert stats["successfulRequests"] == 3
        assert stats["failedRequests"] == 1
        assert stats["successRate"] == 0.75
        assert stats["averageResponseTime"] == 300
        assert stats["recentFailureRate"] == 0.25
        assert stats["requestsLastHour"] == 4
        assert stats["topErrors"] == [{"error": "AI_SERVICE_ERROR: timed out", "count": 1}]

    def test_known_services_are_always_reported(self):
        summary = AIPerformanceMonitor(clock=FakeClock()).get_health_summary()

        assert set(summary) == {IMAGE_ANALYSIS_SERVICE, INGREDIENT_ZONING_SERVICE}
        assert summary[INGREDIENT_ZONING_SERVICE]["totalRequests"] == 0
        assert summary[INGREDIENT_ZONING_SERVICE]["successRate"] == 0.0

    def test_recent_window_excludes_calls_older_than_an_hour(self):
        clock = FakeClock()
        monitor = AIPerformanceMonitor(clock=clock)
        record(monitor, IMAGE_ANALYSIS_SERVICE, False, error="boom")
        clock.advance(3601)
        record(monitor, IMAGE_ANALYSIS_SERVICE, True)

        stats = monitor.get_service_stats(IMAGE_ANALYSIS_SERVICE)

        assert stats["totalRequests"] == 2
        assert stats["requestsLastHour"] == 1
        assert stats["recentFailureRate"] == 0.0

    def test_history_is_capped(self):
        monitor = AIPerformanceMonitor(clock=FakeClock(), max_history=5)
        for _ in range(8):
            record(monitor, IMAGE_ANALYSIS_SERVICE, True)

        assert monitor.get_service_stats(IMAGE_ANALYSIS_SERVICE)["requestsLastHour"] == 5
        assert monitor.export_metrics()[IMAGE_ANALYSIS_SERVICE]["totalRequests"] == 8

    def test_top_errors_are_ranked(self):
        monitor = AIPerformanceMonitor(clock=FakeClock())
        for _ in range(3):
            record(monitor, INGREDIENT_ZONING_SERVICE, False, error=ValueError("bad json"))
        record(monitor, INGREDIENT_ZONING_SERVICE, False, error="quota")
        for _ in range(2):
            record(monitor, INGREDIENT_ZONING_SERVICE, False, error=KeyError("zone"))
        record(monitor, INGREDIENT_ZONING_SERVICE, False, error="other")

        top = monitor.get_service_stats(INGREDIENT_ZONING_SERVICE)["topErrors"]

        assert [entry["count"] for entry in top] == [3, 2, 1]
        assert top[0]["error"] == "ValueError: bad json"

    @pytest.mark.asyncio
    async def test_track_records_success_and_failure(self):
        clock = FakeClock()
        monitor = AIPerformanceMonitor(clock=clock)

        async with monitor.track(IMAGE_ANALYSIS_SERVICE):
            clock.advance(1.5)

        with pytest.raises(ExternalAPIError):
            async with monitor.track(IMAGE_ANALYSIS_SERVICE):
                raise ExternalAPIError("502 from provider", service="image-analysis", http_status=502)

        stats = monitor.get_service_stats(IMAGE_ANALYSIS_SERVICE)
        assert stats["successfulRequests"] == 1
        assert stats["failedRequests"] == 1
        assert stats["averageResponseTime"] == 750

    @pytest.mark.asyncio
    async def test_cleanup_drops_old_entries(self):
        clock = FakeClock()
        monitor = AIPerformanceMonitor(clock=clock)
        record(monitor, IMAGE_ANALYSIS_SERVICE, True)
        record(monitor, INGREDIENT_ZONING_SERVICE, True)
        clock.advance(3700)
        record(monitor, IMAGE_ANALYSIS_SERVICE, True)

        assert await monitor.cleanup() == 2
        assert monitor.export_metrics()[IMAGE_ANALYSIS_SERVICE]["requestLogSize"] == 1

    def test_reset_clears_everything(self):
        monitor = AIPerformanceMonitor(clock=FakeClock())
        record(monitor, IMAGE_ANALYSIS_SERVICE, True)

        monitor.reset()

        assert monitor.get_service_stats(IMAGE_ANALYSIS_SERVICE)["totalRequests"] == 0

    def test_error_signature_is_truncated(self):
        assert len(error_signature(RuntimeError("x" * 500))) == 120
        assert error_signature("plain") == "plain"


class TestAssessHealth:

    def test_all_good_is_healthy(self):
        summary = {IMAGE_ANALYSIS_SERVICE: service_stats(), INGREDIENT_ZONING_SERVICE: service_stats()}

        assessment = assess_health(summary, POLICY)

        assert assessment.status == HEALTHY
        assert assessment.score == 100
        assert assessment.issues == []

    def test_unused_service_is_an_issue_without_penalty(self):
        summary = {IMAGE_ANALYSIS_SERVICE: service_stats(), INGREDIENT_ZONING_SERVICE: service_stats(total=0, recent=0)}

        assessment = assess_health(summary, POLICY)

        assert assessment.score == 100
        assert assessment.issues == ["ingredient-zoning has no recorded usage"]

    def test_empty_summary(self):
        assessment = assess_health({}, POLICY)

        assert assessment.score == 100
        assert assessment.issues == ["No AI services have recorded usage"]

    def test_low_success_needs_minimum_samples(self):
        few = assess_health({IMAGE_ANALYSIS_SERVICE: service_stats(total=9, success_rate=0.5, recent=0)}, POLICY)
        enough = assess_health({IMAGE_ANALYSIS_SERVICE: service_stats(total=10, success_rate=0.9, recent=0)}, POLICY)

        assert few.score == 100
        assert enough.score == 85
        assert enough.status == DEGRADED
        assert "image-analysis has low success rate: 90%" in enough.issues

    @pytest.mark.parametrize("latency,score", [(5000, 100), (5001, 95), (8000, 95), (8001, 90)])
    def test_latency_penalties(self, latency, score):
        assessment = assess_health({IMAGE_ANALYSIS_SERVICE: service_stats(latency=latency)}, POLICY)
        assert assessment.score == score

    def test_recent_failures_need_minimum_samples(self):
        few = assess_health({IMAGE_ANALYSIS_SERVICE: service_stats(recent_rate=0.5, recent=4)}, POLICY)
        enough = assess_health({IMAGE_ANALYSIS_SERVICE: service_stats(recent_rate=0.5, recent=5)}, POLICY)

        assert few.score == 100
        assert enough.score == 80

    @pytest.mark.parametrize("recent", [5, 20])
    def test_score_never_rises_with_recent_failure_rate(self, recent):
        rates = [0.0, 0.05, 0.1, 0.11, 0.5, 1.0]

        scores = [
            assess_health({IMAGE_ANALYSIS_SERVICE: service_stats(recent_rate=rate, recent=recent)}, POLICY).score
            for rate in rates
        ]

        assert all(later <= earlier for earlier, later in zip(scores, scores[1:]))
        assert scores[0] == 100
        assert scores[-1] < scores[0]

    def test_dominant_error_penalty(self):
        errors = [{"error": "AI_SERVICE_ERROR: 502", "count": 3}]
        assessment = assess_health({IMAGE_ANALYSIS_SERVICE: service_stats(total=20, top_errors=errors)}, POLICY)

        assert assessment.score == 92
        assert assessment.issues == ["image-analysis has frequent errors: AI_SERVICE_ERROR: 502 (3 times)"]

    def test_failing_service_is_error_with_general_recommendations(self):
        # Arrange: every penalty on both services
        bad = service_stats(
            total=50,
            success_rate=0.5,
            latency=9000,
            recent_rate=0.5,
            recent=50,
            top_errors=[{"error": "timeout", "count": 25}],
        )

        # Act
        assessment = assess_health({IMAGE_ANALYSIS_SERVICE: bad, INGREDIENT_ZONING_SERVICE: bad}, POLICY)

        # Assert
        assert assessment.score == 0
        assert assessment.status == ERROR
        assert len(assessment.issues) == 8
        assert "Consider implementing circuit breaker pattern for AI services" in assessment.recommendations
        assert "Consider implementing request timeouts and retry logic" in assessment.recommendations

    @pytest.mark.parametrize("score,status", [
        (100, HEALTHY), (90, HEALTHY), (89, DEGRADED), (70, DEGRADED),
        (69, UNHEALTHY), (50, UNHEALTHY), (49, ERROR), (0, ERROR),
    ])
    def test_status_bands(self, score, status):
        assert status_for_score(score) == status
