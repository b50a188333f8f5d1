"""
Background Recovery Engine

Revisits foods whose ingredient zoning did not finish: status `analyzing`, or
`processed` with unzoned ingredients left over. Each scan tick takes one
bounded batch, oldest first, and re-submits only the still-unzoned names.

Per food:
    retry_count >= max        -> pending_review, no call made
    zoning complete           -> processed
    failure or partial result -> retry_count += 1, next_eligible_at pushed out
                                 by the backoff policy, pending_review once
                                 retry_count reaches max

Hitting the admission limit is not a failure: the batch stops and the
remaining foods wait for the next tick untouched.
"""

import asyncio
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from typing import Any, Dict, List, Optional

from src.core.clock import Clock, SystemClock, to_datetime
from src.core.config import settings
from src.core.exceptions import (
    FoodNotFoundError,
    RateLimitExceededError,
    ServiceNotConfiguredError,
    ZoneGuardError,
)
from src.core.logging import get_logger, LogContext
from src.core.metrics import record_recovery_attempt
from src.engines.inference.service import InferenceService
from src.engines.recovery.backoff import BackoffPolicy
from src.modules.foods.models import Food, FoodStatus, normalize_name
from src.modules.foods.repository import FoodRepository

logger = get_logger(__name__)

RECOVERY_IDENTIFIER = "background-recovery"

# Outcomes
PROCESSED = "processed"
RETRY_SCHEDULED = "retry_scheduled"
PENDING_REVIEW = "pending_review"
DEFERRED = "deferred"
NOOP = "noop"


@dataclass
class ScanReport:
    started_at: float
    finished_at: Optional[float] = None
    scanned: int = 0
    processed: int = 0
    retry_scheduled: int = 0
    pending_review: int = 0
    deferred: int = 0
    stopped_early: bool = False
    food_outcomes: Dict[str, str] = field(default_factory=dict)

    def count(self, food_id: str, outcome: str):
        self.food_outcomes[food_id] = outcome
        if outcome == PROCESSED:
            self.processed += 1
        elif outcome == RETRY_SCHEDULED:
            self.retry_scheduled += 1
        elif outcome == PENDING_REVIEW:
            self.pending_review += 1
        elif outcome == DEFERRED:
            self.deferred += 1


class BackgroundRecoveryEngine:
    """Retries incomplete ingredient zoning with bounded exponential backoff."""

    def __init__(
        self,
        repository: FoodRepository,
        inference: InferenceService,
        clock: Optional[Clock] = None,
        backoff: Optional[BackoffPolicy] = None,
        max_retries: int = settings.MAX_RETRY_ATTEMPTS,
        batch_size: int = settings.BACKGROUND_BATCH_SIZE,
        stuck_threshold: timedelta = timedelta(hours=settings.STUCK_ENTRY_THRESHOLD_HOURS),
        identifier: str = RECOVERY_IDENTIFIER
    ):
        self.repository = repository
        self.inference = inference
        self.clock = clock or SystemClock()
        self.backoff = backoff or BackoffPolicy.from_settings()
        self.max_retries = max_retries
        self.batch_size = batch_size
        self.stuck_threshold = stuck_threshold
        self.identifier = identifier
        self.last_report: Optional[ScanReport] = None
        self.ticks = 0
        self._lock = asyncio.Lock()

    # =========================================================================
    # Scan tick
    # =========================================================================

    async def run_tick(self) -> Optional[ScanReport]:
        """Process one batch. Returns None when a tick is already running."""
        if self._lock.locked():
            logger.debug("recovery_tick_skipped", reason="tick already running")
            return None

        async with self._lock:
            report = ScanReport(started_at=self.clock.now())
            foods = await self.repository.list_eligible(to_datetime(report.started_at), self.batch_size)
            report.scanned = len(foods)

            for food in foods:
                outcome = await self._process(food, manual=False)
                report.count(food.id, outcome)
                if outcome == DEFERRED:
                    report.stopped_early = True
                    break

            report.finished_at = self.clock.now()
            self.last_report = report
            self.ticks += 1

        if report.scanned:
            logger.info(
                "recovery_tick_completed",
                scanned=report.scanned,
                processed=report.processed,
                retry_scheduled=report.retry_scheduled,
                pending_review=report.pending_review,
                deferred=report.deferred,
                stopped_early=report.stopped_early
            )
        await self._log_backlog()
        return report

    async def _log_backlog(self):
        counts = await self.repository.recovery_counts(
            to_datetime(self.clock.now()),
            self.stuck_threshold,
            self._high_retry_threshold
        )
        if counts.high_retry:
            logger.warning(
                "recovery_high_retry_entries",
                count=counts.high_retry,
                food_ids=counts.high_retry_ids
            )
        if counts.total_analyzing > self.batch_size * 3:
            logger.warning(
                "recovery_backlog_growing",
                analyzing=counts.total_analyzing,
                batch_size=self.batch_size
            )

    # =========================================================================
    # Manual retry
    # =========================================================================

    async def retry_food(self, food_id: str) -> Dict[str, Any]:
        """
        One attempt for a specific food, ignoring backoff.

        A pending_review food is re-queued for this attempt; a failure parks
        it again. Rate limiting and missing configuration are raised to the
        caller instead of being swallowed.
        """
        food = await self.repository.get(food_id)
        if food is None:
            raise FoodNotFoundError(food_id)

        outcome = await self._process(food, manual=True)
        stored = await self.repository.get(food_id)
        return {"foodId": food_id, "outcome": outcome, "food": stored.to_response_dict() if stored else None}

    # =========================================================================
    # Per-food attempt
    # =========================================================================

    async def _process(self, food: Food, manual: bool) -> str:
        with LogContext(food_id=food.id, stage="recovery"):
            if not manual and food.retry_count >= self.max_retries:
                await self._park(food, reason="retry limit reached")
                return PENDING_REVIEW

            names = food.unzoned_names()
            if not names:
                if food.status == FoodStatus.PROCESSED.value and not food.has_unzoned:
                    return NOOP
                food.status = FoodStatus.PROCESSED.value
                food.has_unzoned = False
                food.next_eligible_at = None
                await self.repository.save(food)
                record_recovery_attempt(PROCESSED)
                return PROCESSED

            now = self.clock.now()
            food.last_retry_at = to_datetime(now)
            logger.info(
                "recovery_attempt_started",
                attempt=food.retry_count + 1,
                unzoned=len(names),
                manual=manual
            )

            try:
                zoned = await self.inference.classify_ingredients(self.identifier, names)
            except (RateLimitExceededError, ServiceNotConfiguredError) as e:
                logger.info("recovery_attempt_deferred", reason=e.code)
                record_recovery_attempt(DEFERRED)
                if manual:
                    raise
                return DEFERRED
            except ZoneGuardError as e:
                return await self._record_failure(food, e.message)
            except Exception as e:
                logger.error("recovery_attempt_error", error=str(e), error_type=type(e).__name__)
                return await self._record_failure(food, f"{type(e).__name__}: {e}")

            food.apply_zones({normalize_name(item.name): item for item in zoned})
            if food.has_unzoned:
                return await self._record_failure(
                    food,
                    f"partial classification: {len(food.unzoned_names())} ingredient(s) still unzoned"
                )

            food.status = FoodStatus.PROCESSED.value
            food.next_eligible_at = None
            food.last_error = None
            await self.repository.save(food)
            record_recovery_attempt(PROCESSED)
            logger.info("recovery_attempt_succeeded", retry_count=food.retry_count)
            return PROCESSED

    async def _record_failure(self, food: Food, error: str) -> str:
        food.retry_count += 1
        food.last_error = error[:500]

        if food.retry_count >= self.max_retries:
            return await self._park(food, reason=error)

        delay = self.backoff.next_delay(food.retry_count)
        food.next_eligible_at = to_datetime(self.clock.now()) + delay
        if food.status == FoodStatus.PENDING_REVIEW.value:
            food.status = FoodStatus.ANALYZING.value
        await self.repository.save(food)
        record_recovery_attempt(RETRY_SCHEDULED)

        logger.warning(
            "recovery_attempt_failed",
            retry_count=food.retry_count,
            max_retries=self.max_retries,
            next_delay_ms=delay.total_seconds() * 1000,
            error=error
        )
        return RETRY_SCHEDULED

    async def _park(self, food: Food, reason: str) -> str:
        food.status = FoodStatus.PENDING_REVIEW.value
        food.next_eligible_at = None
        await self.repository.save(food)
        record_recovery_attempt(PENDING_REVIEW)
        logger.warning(
            "food_parked_for_review",
            retry_count=food.retry_count,
            reason=reason
        )
        return PENDING_REVIEW

    # =========================================================================
    # Monitoring
    # =========================================================================

    @property
    def _high_retry_threshold(self) -> int:
        return max(1, self.max_retries - 1)

    async def get_monitoring_info(self) -> Dict[str, Any]:
        now = self.clock.now()
        counts = await self.repository.recovery_counts(
            to_datetime(now),
            self.stuck_threshold,
            self._high_retry_threshold
        )
        last = asdict(self.last_report) if self.last_report else None
        if last:
            last.pop("food_outcomes", None)

        return {
            "totalAnalyzing": counts.total_analyzing,
            "stuck": counts.stuck,
            "highRetry": counts.high_retry,
            "pendingReview": counts.pending_review,
            "partial": counts.partial,
            "averageRetryCount": counts.average_retry_count,
            "oldestStuckId": counts.oldest_stuck_id,
            "oldestStuckCreatedAt": (
                counts.oldest_stuck_created_at.isoformat() if counts.oldest_stuck_created_at else None
            ),
            "backlogWarning": counts.total_analyzing > self.batch_size * 3,
            "ticks": self.ticks,
            "lastTick": last,
            "config": {
                "maxRetries": self.max_retries,
                "batchSize": self.batch_size,
                "baseDelayMs": self.backoff.base_delay_ms,
                "maxDelayMs": self.backoff.max_delay_ms,
                "multiplier": self.backoff.multiplier,
                "intervalSeconds": settings.BACKGROUND_PROCESS_INTERVAL_SECONDS,
                "stuckThresholdHours": self.stuck_threshold.total_seconds() / 3600,
            },
        }
