"""
Celery Tasks for Background Recovery

Used when RECOVERY_RUNNER=celery:
- scan_stuck_foods: one recovery tick, driven by celery beat
- retry_food_zoning: one manual attempt for a specific food

Each task runs its coroutine on a fresh event loop, so the Redis client and
the database pool are created and disposed inside that loop.
"""

import asyncio
import traceback
from typing import Any, Dict, Optional

import redis.asyncio as redis

from src.core.celery_app import celery_app
from src.core.config import settings
from src.core.exceptions import RateLimitExceededError, ServiceNotConfiguredError
from src.core.logging import get_logger, LogContext
from src.pipeline.container import build_services

logger = get_logger(__name__)


def _run(coro_factory):
    """Run `coro_factory(services)` on a new loop with freshly built services."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    async def runner():
        from src.core.database import engine

        redis_client = None
        if settings.RATE_LIMIT_REDIS_ENABLED:
            redis_client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        services = build_services(redis_client=redis_client)
        try:
            return await coro_factory(services)
        finally:
            await services.aclose()
            if redis_client is not None:
                await redis_client.aclose()
            await engine.dispose()

    try:
        return loop.run_until_complete(runner())
    finally:
        loop.close()


# =============================================================================
# Periodic scan
# =============================================================================

@celery_app.task(
    bind=True,
    name="src.pipeline.tasks.scan_stuck_foods",
    max_retries=0,
    acks_late=True
)
def scan_stuck_foods(self) -> Dict[str, Any]:
    """One recovery tick. Failed foods are rescheduled in the database, not by Celery."""
    try:
        logger.info("task_recovery_scan_started")

        async def tick(services):
            return await services.recovery.run_tick()

        report = _run(tick)
        if report is None:
            return {"skipped": True}

        result = {
            "scanned": report.scanned,
            "processed": report.processed,
            "retry_scheduled": report.retry_scheduled,
            "pending_review": report.pending_review,
            "deferred": report.deferred,
            "stopped_early": report.stopped_early,
        }
        logger.info("task_recovery_scan_completed", **result)
        return result

    except Exception as e:
        logger.error("task_recovery_scan_failed", error=str(e), traceback=traceback.format_exc())
        raise


# =============================================================================
# Manual retry
# =============================================================================

@celery_app.task(
    bind=True,
    name="src.pipeline.tasks.retry_food_zoning",
    max_retries=3,
    default_retry_delay=settings.RATE_LIMIT_WINDOW_SECONDS,
    acks_late=True
)
def retry_food_zoning(self, food_id: str) -> Optional[Dict[str, Any]]:
    """One zoning attempt for `food_id`, retried by Celery only when admission rejected it."""
    with LogContext(food_id=food_id, stage="recovery"):
        try:
            logger.info("task_retry_food_started")

            async def attempt(services):
                return await services.recovery.retry_food(food_id)

            result = _run(attempt)
            logger.info("task_retry_food_completed", outcome=result["outcome"])
            return {"foodId": result["foodId"], "outcome": result["outcome"]}

        except RateLimitExceededError as e:
            logger.warning("task_retry_food_rate_limited", retry_after=e.retry_after_seconds)
            raise self.retry(exc=e, countdown=e.retry_after_seconds)

        except ServiceNotConfiguredError:
            logger.error("task_retry_food_not_configured")
            raise

        except Exception as e:
            logger.error("task_retry_food_failed", error=str(e), traceback=traceback.format_exc())
            raise
