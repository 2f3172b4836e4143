"""Repository classes for database access."""

from .meals import MealRepository

__all__ = ["MealRepository"]
