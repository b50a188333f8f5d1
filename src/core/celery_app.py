"""
Celery Application Configuration

Out-of-process runner for the recovery engine (RECOVERY_RUNNER=celery):
- Beat schedule for the periodic recovery scan
- A recovery queue so scans never sit behind other work
- Manual retries enqueued from the monitoring API
"""

from celery import Celery
from kombu import Queue

from src.core.config import settings

broker_url = settings.CELERY_BROKER_URL or settings.REDIS_URL
result_backend = settings.CELERY_RESULT_BACKEND or settings.REDIS_URL

celery_app = Celery(
    "zoneguard",
    broker=broker_url,
    backend=result_backend,
    include=[
        "src.pipeline.tasks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,
    # A tick handles one batch, each call bounded by INFERENCE_TIMEOUT_SECONDS
    task_time_limit=300,
    task_soft_time_limit=270,

    result_expires=3600,

    # One tick at a time per worker, ticks must not overlap
    worker_prefetch_multiplier=1,

    task_queues=(
        Queue("default", routing_key="default"),
        Queue("recovery", routing_key="recovery.#"),
    ),
    task_default_queue="default",
    task_routes={
        "src.pipeline.tasks.scan_stuck_foods": {"queue": "recovery"},
        "src.pipeline.tasks.retry_food_zoning": {"queue": "recovery"},
    },

    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.beat_schedule = {
    "scan-stuck-foods": {
        "task": "src.pipeline.tasks.scan_stuck_foods",
        "schedule": float(settings.BACKGROUND_PROCESS_INTERVAL_SECONDS),
        # A tick older than one interval is stale, the next one covers it
        "options": {"expires": float(settings.BACKGROUND_PROCESS_INTERVAL_SECONDS)},
    },
}
