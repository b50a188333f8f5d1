"""
Service wiring

Builds the engines once per process from settings. The FastAPI lifespan and
the Celery tasks both go through build_services so they share the same
configuration; tests construct a ServiceContainer directly with fakes.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from src.core.clock import Clock, SystemClock
from src.core.config import settings
from src.core.logging import get_logger
from src.engines.admission.limiter import AdmissionController
from src.engines.admission.stores import InMemoryCounterStore, RedisCounterStore
from src.engines.imaging.compressor import CompressionOptions, ImageCompressor
from src.engines.imaging.validator import ImageIntegrityValidator
from src.engines.inference.client import OpenRouterClient
from src.engines.inference.service import InferenceService
from src.engines.monitoring.health import HealthPolicy
from src.engines.monitoring.monitor import AIPerformanceMonitor
from src.engines.recovery.backoff import BackoffPolicy
from src.engines.recovery.engine import BackgroundRecoveryEngine
from src.modules.foods.repository import FoodRepository, SQLFoodRepository
from src.pipeline.submission import MealSubmissionPipeline

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    clock: Clock
    repository: FoodRepository
    validator: ImageIntegrityValidator
    compressor: ImageCompressor
    admission: AdmissionController
    monitor: AIPerformanceMonitor
    health_policy: HealthPolicy
    client: OpenRouterClient
    inference: InferenceService
    pipeline: MealSubmissionPipeline
    recovery: BackgroundRecoveryEngine

    async def aclose(self):
        await self.client.aclose()


def build_services(
    redis_client=None,
    repository: Optional[FoodRepository] = None,
    client: Optional[OpenRouterClient] = None,
    clock: Optional[Clock] = None
) -> ServiceContainer:
    """Wire every engine from settings. Redis is used only when a client is given and enabled."""
    clock = clock or SystemClock()

    if repository is None:
        from src.core.database import async_session_maker
        repository = SQLFoodRepository(async_session_maker)

    shared_store = None
    if redis_client is not None and settings.RATE_LIMIT_REDIS_ENABLED:
        shared_store = RedisCounterStore(redis_client, clock)

    admission = AdmissionController(
        shared_store=shared_store,
        local_store=InMemoryCounterStore(clock),
        generic_store=InMemoryCounterStore(clock),
        clock=clock
    )
    monitor = AIPerformanceMonitor(clock=clock)
    client = client or OpenRouterClient()
    inference = InferenceService(client, admission, monitor, clock=clock)

    validator = ImageIntegrityValidator(max_size_bytes=settings.MAX_IMAGE_SIZE_BYTES)
    compressor = ImageCompressor(CompressionOptions.from_settings())

    recovery = BackgroundRecoveryEngine(
        repository=repository,
        inference=inference,
        clock=clock,
        backoff=BackoffPolicy.from_settings(),
        max_retries=settings.MAX_RETRY_ATTEMPTS,
        batch_size=settings.BACKGROUND_BATCH_SIZE,
        stuck_threshold=timedelta(hours=settings.STUCK_ENTRY_THRESHOLD_HOURS)
    )

    logger.info(
        "services_built",
        rate_limit_backend="redis" if shared_store else "memory",
        inference_configured=client.configured
    )

    return ServiceContainer(
        clock=clock,
        repository=repository,
        validator=validator,
        compressor=compressor,
        admission=admission,
        monitor=monitor,
        health_policy=HealthPolicy.from_settings(),
        client=client,
        inference=inference,
        pipeline=MealSubmissionPipeline(validator, compressor, inference, repository),
        recovery=recovery,
    )
