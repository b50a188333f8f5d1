"""
Inference Service

Every external call goes through the same gate: admission first, then the
call itself wrapped by the performance monitor, then reply parsing. A parse
failure counts as a failed call for the monitor.
"""

from typing import List, Optional

from src.core.clock import Clock, SystemClock
from src.core.config import settings
from src.core.exceptions import ServiceNotConfiguredError
from src.core.logging import get_logger
from src.engines.admission.limiter import AdmissionController, TrafficClass
from src.engines.inference.client import OpenRouterClient
from src.engines.inference.parsing import MealAnalysis, parse_meal_analysis, parse_zoning
from src.engines.inference.prompts import image_analysis_messages, ingredient_zoning_messages
from src.engines.monitoring.monitor import (
    AIPerformanceMonitor,
    IMAGE_ANALYSIS_SERVICE,
    INGREDIENT_ZONING_SERVICE,
)
from src.modules.foods.models import Ingredient

logger = get_logger(__name__)


class InferenceService:
    """Admission-gated, monitored access to the vision and zoning models."""

    def __init__(
        self,
        client: OpenRouterClient,
        admission: AdmissionController,
        monitor: AIPerformanceMonitor,
        clock: Optional[Clock] = None,
        vision_model: Optional[str] = None,
        zoning_model: Optional[str] = None
    ):
        self.client = client
        self.admission = admission
        self.monitor = monitor
        self.clock = clock or SystemClock()
        self.vision_model = vision_model or settings.VISION_MODEL
        self.zoning_model = zoning_model or settings.ZONING_MODEL

    def _require_configured(self):
        if not self.client.configured:
            raise ServiceNotConfiguredError()

    async def analyze_meal(self, identifier: str, image_urls: List[str]) -> MealAnalysis:
        """Extract a meal summary and its ingredients from one or more photos."""
        self._require_configured()
        admission = await self.admission.admit(identifier, TrafficClass.VISION_ANALYSIS)
        admission.raise_for_rejection(now=self.clock.now())

        async with self.monitor.track(IMAGE_ANALYSIS_SERVICE, model=self.vision_model):
            reply = await self.client.complete(
                service=IMAGE_ANALYSIS_SERVICE,
                model=self.vision_model,
                messages=image_analysis_messages(image_urls),
                max_tokens=400,
                temperature=0.1
            )
            analysis = parse_meal_analysis(reply, IMAGE_ANALYSIS_SERVICE)

        logger.info(
            "meal_analyzed",
            image_count=len(image_urls),
            ingredient_count=len(analysis.ingredients)
        )
        return analysis

    async def classify_ingredients(self, identifier: str, names: List[str]) -> List[Ingredient]:
        """Zone each ingredient name. Returns an empty list for empty input without a call."""
        if not names:
            return []

        self._require_configured()
        admission = await self.admission.admit(identifier, TrafficClass.TEXT_CLASSIFICATION)
        admission.raise_for_rejection(now=self.clock.now())

        async with self.monitor.track(INGREDIENT_ZONING_SERVICE, model=self.zoning_model):
            reply = await self.client.complete(
                service=INGREDIENT_ZONING_SERVICE,
                model=self.zoning_model,
                messages=ingredient_zoning_messages(names),
                max_tokens=1024,
                temperature=0.1,
                response_format={"type": "json_object"}
            )
            zoned = parse_zoning(reply, INGREDIENT_ZONING_SERVICE)

        if not zoned:
            logger.warning("ai_zoning_empty", ingredient_count=len(names))
        return zoned
