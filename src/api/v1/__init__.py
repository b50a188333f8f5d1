"""
API v1 Router Module

All v1 endpoints are prefixed with /api/v1/

- /foods/analyze, /foods/{id}     - Meal photo analysis and food records
- /zone-ingredients               - Ingredient zoning
- /upload-validation              - Pre-upload integrity check
- /monitoring/*                   - AI health and background recovery
- /metrics                        - Prometheus
"""

from fastapi import APIRouter

from src.api.v1.foods import router as foods_router
from src.api.v1.zoning import router as zoning_router
from src.api.v1.upload_validation import router as upload_validation_router
from src.api.v1.monitoring import router as monitoring_router
from src.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(foods_router, prefix="/foods", tags=["foods"])
api_v1_router.include_router(zoning_router, tags=["zoning"])
api_v1_router.include_router(upload_validation_router, tags=["validation"])
api_v1_router.include_router(monitoring_router, prefix="/monitoring", tags=["monitoring"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
