"""
Food Repositories

The submission pipeline and the recovery engine only need a handful of
queries: create, fetch, save, the recovery scan batch and the monitoring
aggregates. SQLFoodRepository serves them from the async SQLModel engine;
InMemoryFoodRepository keeps the same contract in a dict.
"""

import copy
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.clock import utcnow
from src.modules.foods.models import Food, FoodStatus, RecoveryCounts


def _copy(food: Food) -> Food:
    return Food(**copy.deepcopy(food.model_dump()))


class FoodRepository(ABC):
    """Persistence contract for food records."""

    @abstractmethod
    async def add(self, food: Food) -> Food:
        ...

    @abstractmethod
    async def get(self, food_id: str) -> Optional[Food]:
        ...

    @abstractmethod
    async def save(self, food: Food) -> Food:
        ...

    @abstractmethod
    async def list_eligible(self, now: datetime, limit: int) -> List[Food]:
        """
        Foods the recovery scan should look at, oldest first.

        Eligible: status analyzing, or processed with an unzoned ingredient
        left, and next_eligible_at unset or already passed.
        """
        ...

    @abstractmethod
    async def recovery_counts(
        self,
        now: datetime,
        stuck_threshold: timedelta,
        high_retry_threshold: int
    ) -> RecoveryCounts:
        ...


# =============================================================================
# SQL Repository
# =============================================================================

class SQLFoodRepository(FoodRepository):
    """Repository backed by the async SQLModel engine, one session per call."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    async def add(self, food: Food) -> Food:
        async with self.session_factory() as session:
            session.add(food)
            await session.commit()
            await session.refresh(food)
            return food

    async def get(self, food_id: str) -> Optional[Food]:
        async with self.session_factory() as session:
            return await session.get(Food, food_id)

    async def save(self, food: Food) -> Food:
        food.updated_at = utcnow()
        async with self.session_factory() as session:
            merged = await session.merge(food)
            await session.commit()
            await session.refresh(merged)
            return merged

    async def list_eligible(self, now: datetime, limit: int) -> List[Food]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Food)
                .where(
                    or_(
                        Food.status == FoodStatus.ANALYZING.value,
                        and_(
                            Food.status == FoodStatus.PROCESSED.value,
                            Food.has_unzoned.is_(True)
                        )
                    ),
                    or_(
                        Food.next_eligible_at.is_(None),
                        Food.next_eligible_at <= now
                    )
                )
                .order_by(Food.created_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def recovery_counts(
        self,
        now: datetime,
        stuck_threshold: timedelta,
        high_retry_threshold: int
    ) -> RecoveryCounts:
        stuck_before = now - stuck_threshold
        analyzing = Food.status == FoodStatus.ANALYZING.value

        async with self.session_factory() as session:
            total_analyzing = await session.execute(
                select(func.count(Food.id)).where(analyzing)
            )
            stuck = await session.execute(
                select(func.count(Food.id)).where(analyzing, Food.created_at < stuck_before)
            )
            high_retry = await session.execute(
                select(Food.id)
                .where(analyzing, Food.retry_count >= high_retry_threshold)
                .order_by(Food.retry_count.desc())
            )
            pending_review = await session.execute(
                select(func.count(Food.id)).where(Food.status == FoodStatus.PENDING_REVIEW.value)
            )
            partial = await session.execute(
                select(func.count(Food.id)).where(
                    Food.status == FoodStatus.PROCESSED.value,
                    Food.has_unzoned.is_(True)
                )
            )
            avg_retry = await session.execute(
                select(func.avg(Food.retry_count)).where(analyzing)
            )
            oldest = await session.execute(
                select(Food.id, Food.created_at)
                .where(analyzing, Food.created_at < stuck_before)
                .order_by(Food.created_at.asc())
                .limit(1)
            )

            high_retry_ids = list(high_retry.scalars().all())
            oldest_row = oldest.first()

            return RecoveryCounts(
                total_analyzing=total_analyzing.scalar() or 0,
                stuck=stuck.scalar() or 0,
                high_retry=len(high_retry_ids),
                pending_review=pending_review.scalar() or 0,
                partial=partial.scalar() or 0,
                average_retry_count=round(float(avg_retry.scalar() or 0.0), 2),
                oldest_stuck_id=oldest_row[0] if oldest_row else None,
                oldest_stuck_created_at=oldest_row[1] if oldest_row else None,
                high_retry_ids=high_retry_ids[:10],
            )


# =============================================================================
# In-Memory Repository
# =============================================================================

class InMemoryFoodRepository(FoodRepository):
    """Dict-backed repository. Returns copies so callers cannot mutate stored rows."""

    def __init__(self):
        self._foods: Dict[str, Food] = {}

    async def add(self, food: Food) -> Food:
        self._foods[food.id] = _copy(food)
        return _copy(food)

    async def get(self, food_id: str) -> Optional[Food]:
        food = self._foods.get(food_id)
        return _copy(food) if food is not None else None

    async def save(self, food: Food) -> Food:
        food.updated_at = utcnow()
        self._foods[food.id] = _copy(food)
        return _copy(food)

    async def list_eligible(self, now: datetime, limit: int) -> List[Food]:
        eligible = [
            food for food in self._foods.values()
            if (
                food.status == FoodStatus.ANALYZING.value
                or (food.status == FoodStatus.PROCESSED.value and food.has_unzoned)
            )
            and (food.next_eligible_at is None or food.next_eligible_at <= now)
        ]
        eligible.sort(key=lambda food: food.created_at)
        return [_copy(food) for food in eligible[:limit]]

    async def recovery_counts(
        self,
        now: datetime,
        stuck_threshold: timedelta,
        high_retry_threshold: int
    ) -> RecoveryCounts:
        stuck_before = now - stuck_threshold
        analyzing = [f for f in self._foods.values() if f.status == FoodStatus.ANALYZING.value]
        stuck = sorted(
            (f for f in analyzing if f.created_at < stuck_before),
            key=lambda f: f.created_at
        )
        high_retry = sorted(
            (f for f in analyzing if f.retry_count >= high_retry_threshold),
            key=lambda f: f.retry_count,
            reverse=True
        )
        average = sum(f.retry_count for f in analyzing) / len(analyzing) if analyzing else 0.0

        return RecoveryCounts(
            total_analyzing=len(analyzing),
            stuck=len(stuck),
            high_retry=len(high_retry),
            pending_review=sum(
                1 for f in self._foods.values() if f.status == FoodStatus.PENDING_REVIEW.value
            ),
            partial=sum(
                1 for f in self._foods.values()
                if f.status == FoodStatus.PROCESSED.value and f.has_unzoned
            ),
            average_retry_count=round(average, 2),
            oldest_stuck_id=stuck[0].id if stuck else None,
            oldest_stuck_created_at=stuck[0].created_at if stuck else None,
            high_retry_ids=[f.id for f in high_retry][:10],
        )
