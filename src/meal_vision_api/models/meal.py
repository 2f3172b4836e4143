"""Pydantic models for persisted meals."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class MealDocument(BaseModel):
    """A saved meal: the analysis plus where its image lives."""

    id: str | None = Field(None, description="MongoDB document ID")
    user_id: str = Field(..., description="Owner of the meal")
    request_id: str = Field(..., description="Analysis request that produced it")
    image_url: str | None = Field(None, description="Stored image URL (/images/<id>)")
    meal_name: str = Field(..., description="User-supplied or derived meal name")
    analysis: dict[str, Any] = Field(..., description="NormalizedAnalysis in wire form")
    goal_score: float | None = Field(None, description="Overall goal score (0-10)")
    created_at: datetime | None = None
    updated_at: datetime | None = None
