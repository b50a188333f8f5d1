"""
Metrics Endpoint

GET /api/v1/metrics - Prometheus metrics endpoint
"""

from fastapi import APIRouter, Response

from src.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.
    
    Exposes:
    - admission_decisions_total, rate_limit_store_fallbacks_total
    - inference_calls_total, inference_latency_seconds
    - image_validation_rejections_total, image_compression_ratio
    - recovery_attempts_total
    - http_requests_total, http_request_duration_seconds
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )

