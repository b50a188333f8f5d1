"""
Foods Endpoints

POST /api/v1/foods/analyze   - Meal photo(s) -> stored food with zoned ingredients
GET  /api/v1/foods/{food_id} - Current state of a food record
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.api.dependencies import get_client_identifier, get_food_repository, get_pipeline
from src.core.exceptions import FoodNotFoundError, RequestValidationFailed
from src.core.logging import get_logger
from src.engines.imaging.validator import ImageBlob
from src.modules.foods.repository import FoodRepository
from src.pipeline.submission import MealSubmissionPipeline

logger = get_logger(__name__)
router = APIRouter()


# =============================================================================
# Request Schemas
# =============================================================================

class AnalyzeRequest(BaseModel):
    """Meal photos as base64 data URLs. Send `image` or `images`."""
    image: Optional[str] = Field(None, description="Single image data URL")
    images: Optional[List[str]] = Field(None, description="Several photos of the same meal")
    filenames: Optional[List[str]] = Field(None, description="Original filenames, same order as images")
    name: Optional[str] = Field(None, max_length=200, description="Food name, defaults to the meal summary")

    def blobs(self) -> List[ImageBlob]:
        urls = list(self.images or [])
        if self.image:
            urls.insert(0, self.image)
        filenames = list(self.filenames or [])
        return [
            ImageBlob(data_url=url, filename=filenames[i] if i < len(filenames) else None)
            for i, url in enumerate(urls)
        ]


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/analyze")
async def analyze_food(
    request: AnalyzeRequest,
    identifier: str = Depends(get_client_identifier),
    pipeline: MealSubmissionPipeline = Depends(get_pipeline)
):
    """
    Analyze meal photos and create a food record.

    Errors:
    - 400: image validation codes, VALIDATION_ERROR
    - 429: RATE_LIMIT_EXCEEDED (vision calls are limited per client)
    - 503: AI_SERVICE_ERROR / SERVICE_NOT_CONFIGURED when the vision call fails

    Zoning failures after the food was stored come back as `warnings`.
    """
    blobs = request.blobs()
    if not blobs:
        raise RequestValidationFailed("No image provided. Send `image` or `images`.")

    logger.info("analyze_request_received", image_count=len(blobs), identifier=identifier)
    result = await pipeline.submit(identifier, blobs, name=request.name)
    return result.to_response_dict()


@router.get("/{food_id}")
async def get_food(
    food_id: str,
    repository: FoodRepository = Depends(get_food_repository)
):
    """Get a food record with its ingredients, status and retry bookkeeping."""
    food = await repository.get(food_id)
    if food is None:
        raise FoodNotFoundError(food_id)
    return food.to_response_dict()
