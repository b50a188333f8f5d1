"""
Meal Submission Pipeline

validate -> compress (when over budget) -> vision call -> store food
-> synchronous zoning attempt

Only the vision call can fail the submission. A zoning failure or rejection
after the food was stored returns a soft success with warnings and leaves the
food for the recovery engine.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.core.config import settings
from src.core.exceptions import (
    RateLimitExceededError,
    RequestValidationFailed,
    ZoneGuardError,
)
from src.core.logging import get_logger, LogContext
from src.core.metrics import record_compression, record_validation_rejection
from src.engines.imaging.compressor import ImageCompressor
from src.engines.imaging.validator import ImageBlob, ImageIntegrityValidator, encode_data_url
from src.engines.inference.service import InferenceService
from src.modules.foods.models import Food, FoodStatus, normalize_name
from src.modules.foods.repository import FoodRepository

logger = get_logger(__name__)

MAX_FOOD_NAME_LENGTH = 120


@dataclass
class SubmissionResult:
    food: Food
    warnings: List[str] = field(default_factory=list)
    images: List[Dict[str, Any]] = field(default_factory=list)

    def to_response_dict(self) -> Dict[str, Any]:
        response = {
            "success": True,
            "food": self.food.to_response_dict(),
            "images": self.images,
        }
        if self.warnings:
            response["warnings"] = self.warnings
        return response


class MealSubmissionPipeline:
    """Turns uploaded meal photos into a stored, (ideally) zoned food record."""

    def __init__(
        self,
        validator: ImageIntegrityValidator,
        compressor: ImageCompressor,
        inference: InferenceService,
        repository: FoodRepository,
        budget_bytes: int = settings.INFERENCE_IMAGE_BUDGET_BYTES,
        max_images: int = settings.MAX_IMAGES_PER_REQUEST
    ):
        self.validator = validator
        self.compressor = compressor
        self.inference = inference
        self.repository = repository
        self.budget_bytes = budget_bytes
        self.max_images = max_images

    async def prepare_images(self, images: List[ImageBlob]) -> List[Dict[str, Any]]:
        """Validate and, where needed, compress every image. Raises on the first invalid one."""
        if not images:
            raise RequestValidationFailed("At least one image is required")
        if len(images) > self.max_images:
            raise RequestValidationFailed(f"Too many images. Maximum is {self.max_images}")

        prepared = []
        for index, blob in enumerate(images):
            result = self.validator.validate(blob)
            if not result.valid:
                record_validation_rejection(result.error.value)
                logger.warning("image_rejected", index=index, code=result.error.value, reason=result.message)
                result.raise_for_error()

            compressed = await self.compressor.compress_async(result.data, self.budget_bytes, result.mime_type)
            if not compressed.is_identity:
                record_compression(compressed.compression_ratio)
                data_url = encode_data_url(compressed.mime_type, compressed.data)
            else:
                data_url = blob.data_url

            prepared.append({
                "data_url": data_url,
                "originalSize": compressed.original_size,
                "compressedSize": compressed.compressed_size,
                "compressionRatio": compressed.compression_ratio,
                "quality": compressed.quality,
            })
        return prepared

    async def submit(self, identifier: str, images: List[ImageBlob], name: Optional[str] = None) -> SubmissionResult:
        prepared = await self.prepare_images(images)

        analysis = await self.inference.analyze_meal(identifier, [item["data_url"] for item in prepared])

        food = Food(
            identifier=identifier,
            name=(name or analysis.meal_summary)[:MAX_FOOD_NAME_LENGTH] or None,
            meal_summary=analysis.meal_summary,
            status=FoodStatus.ANALYZING.value,
        )
        food.set_ingredients(analysis.ingredients)
        food = await self.repository.add(food)

        result = SubmissionResult(
            food=food,
            images=[{k: v for k, v in item.items() if k != "data_url"} for item in prepared]
        )

        with LogContext(food_id=food.id, stage="submission"):
            logger.info("food_created", ingredient_count=len(analysis.ingredients))
            await self._zone(identifier, food, result)

        result.food = await self.repository.save(food)
        return result

    async def _zone(self, identifier: str, food: Food, result: SubmissionResult):
        names = food.unzoned_names()
        if not names:
            food.status = FoodStatus.PROCESSED.value
            return

        try:
            zoned = await self.inference.classify_ingredients(identifier, names)
        except RateLimitExceededError:
            result.warnings.append("Ingredient zoning is rate limited; zones will be filled in shortly.")
            logger.warning("sync_zoning_deferred", reason="rate_limited")
            return
        except ZoneGuardError as e:
            result.warnings.append("Ingredient zoning is temporarily unavailable; zones will be filled in shortly.")
            logger.warning("sync_zoning_failed", code=e.code, error=e.message)
            food.last_error = e.message[:500]
            return

        food.apply_zones({normalize_name(item.name): item for item in zoned})
        food.status = FoodStatus.PROCESSED.value
        if food.has_unzoned:
            result.warnings.append("Some ingredients could not be zoned yet and will be retried.")
            logger.warning("sync_zoning_partial", unzoned=len(food.unzoned_names()))
        else:
            logger.info("sync_zoning_completed", ingredient_count=len(names))
