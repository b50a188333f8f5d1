"""
Food Record Model with Zoning Status Tracking

A food is created `analyzing` once the vision call extracted its ingredients.
Each ingredient starts `unzoned` until classification fills its zone. The
recovery engine revisits foods still holding unzoned ingredients, using the
persisted retry_count and next_eligible_at to pace itself.
"""

import re
import uuid
from enum import Enum
from datetime import datetime
from typing import Optional, Dict, Any, List, Iterable

from pydantic import BaseModel, Field as PydanticField
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, Column, JSON

from src.core.clock import utcnow


class Zone(str, Enum):
    """Traffic-light classification of an ingredient."""
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"
    UNZONED = "unzoned"   # Not classified yet

    @classmethod
    def normalize(cls, value: Any) -> "Zone":
        """Lower-cased zone, `unzoned` for anything unrecognised."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.UNZONED


class FoodStatus(str, Enum):
    """Food lifecycle states."""
    ANALYZING = "analyzing"             # Ingredients extracted, zoning incomplete
    PROCESSED = "processed"             # Zoning finished (or terminal fallback applied)
    PENDING_REVIEW = "pending_review"   # Retries exhausted, parked for a human


class Ingredient(BaseModel):
    """One ingredient of a meal."""
    name: str
    zone: Zone = Zone.UNZONED
    organic: bool = False
    category: Optional[str] = None
    group: Optional[str] = None


# =============================================================================
# Ingredient name handling
# =============================================================================

MAX_INGREDIENT_NAME_LENGTH = 100
MAX_INGREDIENTS_PER_REQUEST = 50

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def normalize_name(name: str) -> str:
    return name.strip().lower()


def sanitize_names(names: Iterable[Any]) -> List[str]:
    """
    Clean caller-supplied ingredient names.

    Drops non-strings and blanks, strips control characters, truncates to
    MAX_INGREDIENT_NAME_LENGTH and keeps at most MAX_INGREDIENTS_PER_REQUEST
    names. Order is kept, duplicates (case-insensitive) are dropped.
    """
    cleaned: List[str] = []
    seen = set()
    for raw in names:
        if not isinstance(raw, str):
            continue
        name = _CONTROL_CHARS.sub("", raw).strip()[:MAX_INGREDIENT_NAME_LENGTH].strip()
        if not name:
            continue
        key = name.lower()
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(name)
        if len(cleaned) >= MAX_INGREDIENTS_PER_REQUEST:
            break
    return cleaned


def dedupe_ingredients(ingredients: Iterable[Ingredient]) -> List[Ingredient]:
    """Normalize names and drop case-insensitive duplicates, first one wins."""
    result: List[Ingredient] = []
    seen = set()
    for ingredient in ingredients:
        name = normalize_name(ingredient.name)
        if not name or name in seen:
            continue
        seen.add(name)
        result.append(ingredient.model_copy(update={"name": name}))
    return result


# =============================================================================
# Food table
# =============================================================================

class Food(SQLModel, table=True):
    """
    Food record owned by the submission and recovery pipeline.

    Ingredients are stored as a JSON list of Ingredient dicts. `has_unzoned`
    mirrors whether any of them is still unzoned so the recovery scan can
    filter in SQL.
    """
    __tablename__ = "foods"

    # Primary Key
    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        primary_key=True
    )

    # Caller identity that submitted the photo (client IP in this service)
    identifier: Optional[str] = Field(default=None, index=True)

    name: Optional[str] = None
    meal_summary: Optional[str] = None
    ingredients: List[Dict[str, Any]] = Field(default=[], sa_column=Column(JSON))

    # Zoning status
    status: str = Field(default=FoodStatus.ANALYZING.value, index=True)
    has_unzoned: bool = Field(default=True, index=True)

    # Recovery bookkeeping
    retry_count: int = Field(default=0)
    last_retry_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    next_eligible_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=True, index=True)
    )
    last_error: Optional[str] = None

    # Timestamps, naive UTC like the migration columns
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, index=True)
    )
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))

    def get_ingredients(self) -> List[Ingredient]:
        return [Ingredient.model_validate(item) for item in (self.ingredients or [])]

    def set_ingredients(self, ingredients: List[Ingredient]):
        # Assign a new list so SQLAlchemy notices the JSON change
        self.ingredients = [item.model_dump(mode="json") for item in ingredients]
        self.has_unzoned = any(item.zone == Zone.UNZONED for item in ingredients)

    def unzoned_names(self) -> List[str]:
        return [item.name for item in self.get_ingredients() if item.zone == Zone.UNZONED]

    def apply_zones(self, zoned: Dict[str, Ingredient]) -> int:
        """
        Fill zones from classification output keyed by normalized name.

        Only unzoned ingredients are touched and an `unzoned` result never
        overwrites anything. Returns the number of ingredients that got a zone.
        """
        updated = 0
        ingredients = self.get_ingredients()
        for index, ingredient in enumerate(ingredients):
            if ingredient.zone != Zone.UNZONED:
                continue
            match = zoned.get(normalize_name(ingredient.name))
            if match is None or match.zone == Zone.UNZONED:
                continue
            ingredients[index] = ingredient.model_copy(update={
                "zone": match.zone,
                "category": match.category or ingredient.category,
                "group": match.group or ingredient.group,
            })
            updated += 1
        self.set_ingredients(ingredients)
        return updated

    def to_response_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        return {
            "id": self.id,
            "name": self.name,
            "mealSummary": self.meal_summary,
            "status": self.status,
            "ingredients": self.ingredients or [],
            "hasUnzoned": self.has_unzoned,
            "retryCount": self.retry_count,
            "lastRetryAt": self.last_retry_at.isoformat() if self.last_retry_at else None,
            "nextEligibleAt": self.next_eligible_at.isoformat() if self.next_eligible_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class RecoveryCounts(BaseModel):
    """Aggregates the recovery monitoring endpoint reports."""
    total_analyzing: int = 0
    stuck: int = 0
    high_retry: int = 0
    pending_review: int = 0
    partial: int = 0
    average_retry_count: float = 0.0
    oldest_stuck_id: Optional[str] = None
    oldest_stuck_created_at: Optional[datetime] = None
    # Food ids closest to exhaustion, for the per-tick log line
    high_retry_ids: List[str] = PydanticField(default_factory=list)
