"""
Monitoring Endpoints

GET  /api/v1/monitoring/ai-health                           - AI service health score
GET  /api/v1/monitoring/background-zoning                   - Recovery engine statistics
POST /api/v1/monitoring/background-zoning/{food_id}/retry   - Manual recovery attempt
"""

import platform
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from src.api.dependencies import get_food_repository, get_monitor, get_recovery, get_services
from src.core.config import settings
from src.core.exceptions import FoodNotFoundError
from src.core.logging import get_logger
from src.engines.monitoring.health import assess_health
from src.engines.monitoring.monitor import AIPerformanceMonitor
from src.engines.recovery.engine import BackgroundRecoveryEngine
from src.modules.foods.repository import FoodRepository
from src.pipeline.container import ServiceContainer

logger = get_logger(__name__)
router = APIRouter()

_PROCESS_STARTED_AT = time.time()

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.get("/ai-health")
async def ai_health(
    request: Request,
    monitor: AIPerformanceMonitor = Depends(get_monitor),
    services: ServiceContainer = Depends(get_services)
):
    """
    Health of the AI dependency.

    Returns the per-service summary plus an overall score (0-100), status
    (healthy, degraded, unhealthy, error), issues and recommendations.
    Responses are never cached.
    """
    summary = monitor.get_health_summary()
    assessment = assess_health(summary, services.health_policy)
    started_at = getattr(request.app.state, "started_at", _PROCESS_STARTED_AT)

    logger.debug("ai_health_checked", status=assessment.status, score=assessment.score)

    return JSONResponse(
        status_code=200,
        headers=NO_CACHE_HEADERS,
        content={
            "status": assessment.status,
            "services": summary,
            "system": {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime": round(time.time() - started_at, 1),
                "pythonVersion": platform.python_version(),
                "environment": settings.ENVIRONMENT,
            },
            "summary": {
                "healthScore": assessment.score,
                "issues": assessment.issues,
                "recommendations": assessment.recommendations,
            },
        }
    )


@router.get("/background-zoning")
async def background_zoning_status(
    recovery: BackgroundRecoveryEngine = Depends(get_recovery)
):
    """Counts of analyzing, stuck, high-retry, partial and pending_review foods."""
    info = await recovery.get_monitoring_info()
    info["runner"] = settings.RECOVERY_RUNNER
    return JSONResponse(status_code=200, headers=NO_CACHE_HEADERS, content=info)


@router.post("/background-zoning/{food_id}/retry")
async def retry_background_zoning(
    food_id: str,
    recovery: BackgroundRecoveryEngine = Depends(get_recovery),
    repository: FoodRepository = Depends(get_food_repository)
):
    """
    Run one recovery attempt for a food now, ignoring its backoff.

    With RECOVERY_RUNNER=celery the attempt is enqueued instead (202).
    """
    if settings.RECOVERY_RUNNER == "celery":
        if await repository.get(food_id) is None:
            raise FoodNotFoundError(food_id)

        from src.pipeline.tasks import retry_food_zoning
        task = retry_food_zoning.delay(food_id)
        logger.info("manual_retry_enqueued", food_id=food_id, task_id=task.id)
        return JSONResponse(status_code=202, content={"foodId": food_id, "taskId": task.id, "status": "queued"})

    result = await recovery.retry_food(food_id)
    logger.info("manual_retry_completed", food_id=food_id, outcome=result["outcome"])
    return result
