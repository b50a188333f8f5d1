"""
Ingredient Zoning Endpoint

POST /api/v1/zone-ingredients - Classify ingredient names into zones
"""

from typing import Any, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.api.dependencies import get_client_identifier, get_inference
from src.core.exceptions import RequestValidationFailed
from src.core.logging import get_logger
from src.engines.inference.service import InferenceService
from src.modules.foods.models import sanitize_names

logger = get_logger(__name__)
router = APIRouter()


class ZoneIngredientsRequest(BaseModel):
    ingredients: List[Any] = Field(..., min_length=1, description="Ingredient names")


@router.post("/zone-ingredients")
async def zone_ingredients(
    request: ZoneIngredientsRequest,
    identifier: str = Depends(get_client_identifier),
    inference: InferenceService = Depends(get_inference)
):
    """
    Classify ingredients as green, yellow or red.

    Names are trimmed, stripped of control characters, truncated to 100
    characters and capped at 50. Zones the model gets wrong come back as
    `unzoned`.
    """
    names = sanitize_names(request.ingredients)
    if not names:
        raise RequestValidationFailed("No valid ingredients provided after sanitization")

    logger.debug("zoning_request_received", ingredient_count=len(names), original_count=len(request.ingredients))

    zoned = await inference.classify_ingredients(identifier, names)
    return {
        "ingredients": [
            {
                "name": item.name,
                "zone": item.zone.value,
                "category": item.category,
                "group": item.group,
            }
            for item in zoned
        ]
    }
