"""
Unit tests for the admission controller and its counter stores.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from redis.exceptions import ConnectionError as RedisConnectionError

from src.core.exceptions import RateLimitExceededError
from src.engines.admission.limiter import (
    AdmissionController,
    RateLimitPolicy,
    TrafficClass,
)
from src.engines.admission.stores import (
    InMemoryCounterStore,
    RedisCounterStore,
    RateLimitEntry,
    StoreUnavailable,
)
from tests.helpers import FakeClock

VISION = TrafficClass.VISION_ANALYSIS
TEXT = TrafficClass.TEXT_CLASSIFICATION


def make_controller(clock, shared_store=None):
    return AdmissionController(
        policies={
            VISION: RateLimitPolicy(limit=10, window_seconds=60),
            TEXT: RateLimitPolicy(limit=20, window_seconds=60),
        },
        shared_store=shared_store,
        clock=clock,
    )


def unavailable_store():
    store = MagicMock()
    store.backend = "redis"
    store.increment = AsyncMock(return_value=StoreUnavailable(reason="ConnectionError: refused"))
    return store


def redis_client_with_script(script):
    redis_client = MagicMock()
    redis_client.register_script = MagicMock(return_value=script)
    return redis_client


class TestAdmissionController:

    @pytest.mark.asyncio
    async def test_eleventh_vision_call_is_rejected(self):
        clock = FakeClock()
        controller = make_controller(clock)

        results = [await controller.admit("1.2.3.4", VISION) for _ in range(11)]

        assert all(r.allowed for r in results[:10])
        assert [r.remaining for r in results[:3]] == [9, 8, 7]
        assert results[9].remaining == 0
        rejected = results[10]
        assert not rejected.allowed
        assert rejected.remaining == 0
        assert rejected.reset_at == clock.now() + 60

    @pytest.mark.asyncio
    async def test_window_expiry_starts_fresh_window(self):
        clock = FakeClock()
        controller = make_controller(clock)
        for _ in range(10):
            await controller.admit("1.2.3.4", VISION)

        clock.advance(60)
        result = await controller.admit("1.2.3.4", VISION)

        assert result.allowed
        assert result.remaining == 9
        assert result.reset_at == clock.now() + 60

    @pytest.mark.asyncio
    async def test_classes_and_identities_are_independent(self):
        controller = make_controller(FakeClock())
        for _ in range(10):
            await controller.admit("1.2.3.4", VISION)

        assert not (await controller.admit("1.2.3.4", VISION)).allowed
        assert (await controller.admit("1.2.3.4", TEXT)).allowed
        assert (await controller.admit("5.6.7.8", VISION)).allowed

    @pytest.mark.asyncio
    async def test_rejection_raises_with_retry_after(self):
        clock = FakeClock()
        controller = make_controller(clock)
        for _ in range(10):
            await controller.admit("1.2.3.4", VISION)
        clock.advance(15.2)

        result = await controller.admit("1.2.3.4", VISION)
        with pytest.raises(RateLimitExceededError) as exc_info:
            result.raise_for_rejection(clock.now())

        error = exc_info.value
        assert error.status_code == 429
        assert error.retry_after_seconds == 45
        headers = error.response_headers()
        assert headers["Retry-After"] == "45"
        assert headers["X-RateLimit-Remaining"] == "0"
        assert headers["X-RateLimit-Limit"] == "10"

    @pytest.mark.asyncio
    async def test_falls_back_to_memory_when_shared_store_unavailable(self):
        # Arrange
        clock = FakeClock()
        shared = unavailable_store()
        controller = make_controller(clock, shared_store=shared)

        # Act
        results = [await controller.admit("1.2.3.4", VISION) for _ in range(11)]

        # Assert: requests still served, limits still enforced locally
        assert shared.increment.await_count == 11
        assert controller.fallback_count == 11
        assert all(r.backend == "memory" for r in results)
        assert all(r.allowed for r in results[:10])
        assert not results[10].allowed

    @pytest.mark.asyncio
    async def test_shared_store_answer_is_used_when_available(self):
        clock = FakeClock()
        shared = MagicMock()
        shared.backend = "redis"
        shared.increment = AsyncMock(return_value=RateLimitEntry(count=4, window_reset_at=clock.now() + 30, allowed=True))
        controller = make_controller(clock, shared_store=shared)

        result = await controller.admit("1.2.3.4", VISION)

        assert result.backend == "redis"
        assert result.remaining == 6
        assert len(controller.local_store) == 0

    @pytest.mark.asyncio
    async def test_generic_admission_skips_shared_store(self):
        clock = FakeClock()
        shared = unavailable_store()
        controller = make_controller(clock, shared_store=shared)

        results = [await controller.admit_generic("1.2.3.4", limit=3, window_seconds=10, scope="upload") for _ in range(4)]

        shared.increment.assert_not_awaited()
        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[0].backend == "memory"

    @pytest.mark.asyncio
    async def test_cleanup_drops_expired_entries(self):
        clock = FakeClock()
        controller = make_controller(clock)
        await controller.admit("1.2.3.4", VISION)
        await controller.admit_generic("1.2.3.4", limit=3, window_seconds=10)

        assert await controller.cleanup() == 0
        clock.advance(61)
        assert await controller.cleanup() == 2

    def test_headers(self):
        controller_result = make_controller(FakeClock())._to_result(
            RateLimitEntry(count=3, window_reset_at=1_700_000_060.5, allowed=True), limit=10, backend="memory"
        )

        assert controller_result.headers() == {
            "X-RateLimit-Limit": "10",
            "X-RateLimit-Remaining": "7",
            "X-RateLimit-Reset": "1700000060500",
        }


class TestInMemoryCounterStore:

    @pytest.mark.asyncio
    async def test_rejection_does_not_increment(self):
        store = InMemoryCounterStore(FakeClock())
        for _ in range(5):
            entry = await store.increment("k", limit=2, window_seconds=60)

        assert not entry.allowed
        assert entry.count == 2


class TestRedisCounterStore:

    @pytest.mark.asyncio
    async def test_script_reply_maps_to_entry(self):
        clock = FakeClock()
        script = AsyncMock(return_value=[3, 45000, 1])
        store = RedisCounterStore(redis_client_with_script(script), clock=clock)

        entry = await store.increment("vision-analysis:1.2.3.4", limit=10, window_seconds=60)

        script.assert_awaited_once_with(keys=["ratelimit:vision-analysis:1.2.3.4"], args=[10, 60000])
        assert entry == RateLimitEntry(count=3, window_reset_at=clock.now() + 45, allowed=True)

    @pytest.mark.asyncio
    async def test_rejected_reply(self):
        script = AsyncMock(return_value=[10, 1000, 0])
        store = RedisCounterStore(redis_client_with_script(script), clock=FakeClock())

        entry = await store.increment("k", limit=10, window_seconds=60)

        assert not entry.allowed
        assert entry.count == 10

    @pytest.mark.asyncio
    async def test_connection_error_becomes_unavailable(self):
        script = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
        store = RedisCounterStore(redis_client_with_script(script), clock=FakeClock())

        outcome = await store.increment("k", limit=10, window_seconds=60)

        assert isinstance(outcome, StoreUnavailable)
        assert "Connection refused" in outcome.reason

    @pytest.mark.asyncio
    async def test_controller_falls_back_on_redis_outage(self):
        clock = FakeClock()
        script = AsyncMock(side_effect=RedisConnectionError("down"))
        controller = make_controller(clock, shared_store=RedisCounterStore(redis_client_with_script(script), clock=clock))

        result = await controller.admit("1.2.3.4", TEXT)

        assert result.allowed
        assert result.backend == "memory"
        assert controller.fallback_count == 1
