"""
Model reply parsing

Replies are expected to be JSON, but vision models sometimes wrap them in a
```json fence. Field names are accepted in camelCase or snake_case.
"""

import json
import re
from typing import Any, List, Optional

from pydantic import BaseModel, Field, ValidationError, AliasChoices

from src.core.exceptions import InferenceResponseError
from src.core.logging import get_logger
from src.modules.foods.models import Ingredient, Zone, dedupe_ingredients

logger = get_logger(__name__)

_JSON_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


class _RawIngredient(BaseModel):
    name: Any = None
    organic: Any = Field(default=False, validation_alias=AliasChoices("isOrganic", "organic", "is_organic"))
    zone: Any = None
    category: Optional[str] = None
    group: Optional[str] = Field(default=None, validation_alias=AliasChoices("group", "foodGroup", "food_group"))


class _MealReply(BaseModel):
    meal_summary: str = Field(validation_alias=AliasChoices("mealSummary", "meal_summary"))
    ingredients: List[Any] = Field(default_factory=list)


class _ZoningReply(BaseModel):
    ingredients: List[Any] = Field(default_factory=list)


class MealAnalysis(BaseModel):
    meal_summary: str
    ingredients: List[Ingredient]


def load_json_reply(text: str, service: str) -> Any:
    """Parse a reply as JSON, falling back to the first fenced block."""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        pass

    match = _JSON_FENCE.search(text or "")
    if match:
        try:
            return json.loads(match.group(1))
        except ValueError:
            pass

    logger.error("ai_reply_not_json", service=service, reply_preview=(text or "")[:200])
    raise InferenceResponseError("AI response was not valid JSON", service=service)


def _raw_ingredients(items: List[Any]) -> List[_RawIngredient]:
    parsed = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            raw = _RawIngredient.model_validate(item)
        except ValidationError:
            continue
        if isinstance(raw.name, str) and raw.name.strip():
            parsed.append(raw)
    return parsed


def parse_meal_analysis(text: str, service: str = "image-analysis") -> MealAnalysis:
    """Vision reply -> summary plus normalized, deduplicated, unzoned ingredients."""
    data = load_json_reply(text, service)
    try:
        reply = _MealReply.model_validate(data)
    except ValidationError as e:
        logger.error("ai_reply_invalid", service=service, errors=e.errors(include_url=False))
        raise InferenceResponseError("AI response validation failed", service=service)

    ingredients = dedupe_ingredients(
        Ingredient(name=raw.name, organic=raw.organic is True, zone=Zone.UNZONED)
        for raw in _raw_ingredients(reply.ingredients)
    )
    return MealAnalysis(meal_summary=reply.meal_summary.strip(), ingredients=ingredients)


def parse_zoning(text: str, service: str = "ingredient-zoning") -> List[Ingredient]:
    """Zoning reply -> ingredients with lower-cased zones, unknown zones become unzoned."""
    data = load_json_reply(text, service)
    try:
        reply = _ZoningReply.model_validate(data)
    except ValidationError as e:
        logger.error("ai_reply_invalid", service=service, errors=e.errors(include_url=False))
        raise InferenceResponseError("AI response validation failed", service=service)

    return [
        Ingredient(
            name=raw.name.strip(),
            zone=Zone.normalize(raw.zone),
            organic=raw.organic is True,
            category=raw.category,
            group=raw.group,
        )
        for raw in _raw_ingredients(reply.ingredients)
    ]
