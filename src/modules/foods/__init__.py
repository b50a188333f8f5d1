"""
Foods Module

Food records and their ingredients, plus the repositories the submission
pipeline and the recovery engine read and write them through.
"""

from src.modules.foods.models import Food, FoodStatus, Ingredient, Zone
from src.modules.foods.repository import FoodRepository, SQLFoodRepository, InMemoryFoodRepository

__all__ = [
    "Food",
    "FoodStatus",
    "Ingredient",
    "Zone",
    "FoodRepository",
    "SQLFoodRepository",
    "InMemoryFoodRepository",
]
