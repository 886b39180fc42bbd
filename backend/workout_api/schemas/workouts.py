"""
Pydantic v2 schemas for the workout catalogue.

Separation:
  • WorkoutCreate / WorkoutUpdate — what an operator SENDS (no slug,
    no timestamps; the slug is derived from the name server-side).
  • WorkoutOut — what the API RETURNS. Also the cache representation:
    list/single results are stored as WorkoutOut.model_dump(mode="json").
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Difficulty = Literal["beginner", "intermediate", "advanced"]
Tier = Literal["free", "pro", "enterprise"]


# ── Request schemas ─────────────────────────────────────────
class WorkoutCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=200, examples=["Push-up Ladder"])
    description: str = Field(..., min_length=1)
    difficulty: Difficulty
    duration: int = Field(..., ge=1, description="Minutes.")
    muscle_groups: list[str] = Field(..., min_length=1, examples=[["chest", "triceps"]])
    equipment: list[str] = Field(default_factory=list)
    instructions: list[str] = Field(..., min_length=1)
    tier_access: Tier = "free"
    video_url: str | None = None
    image_url: str | None = None
    calories_burned: int | None = Field(default=None, ge=0)


class WorkoutUpdate(BaseModel):
    """Partial update — only fields that are set are written."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, min_length=1)
    difficulty: Difficulty | None = None
    duration: int | None = Field(default=None, ge=1)
    muscle_groups: list[str] | None = Field(default=None, min_length=1)
    equipment: list[str] | None = None
    instructions: list[str] | None = Field(default=None, min_length=1)
    tier_access: Tier | None = None
    video_url: str | None = None
    image_url: str | None = None
    calories_burned: int | None = Field(default=None, ge=0)


# ── Response schemas ────────────────────────────────────────
class WorkoutOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    slug: str
    description: str
    difficulty: str
    duration: int
    muscle_groups: list[str]
    equipment: list[str]
    instructions: list[str]
    video_url: str | None
    image_url: str | None
    calories_burned: int | None
    tier_access: str
    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


class Categories(BaseModel):
    muscleGroups: list[str]
    equipment: list[str]
    difficulties: list[str]
