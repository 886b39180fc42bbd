"""
Workout catalogue service.

Reads go through the cache (cache-aside via CacheService.get_or_set):
  • workouts:list:<hash_params(...)>       — 10 min
  • workouts:single:<id-or-slug>:<tier>    — 10 min
  • workouts:categories                    — 30 min

Writes invalidate synchronously: every list page, the categories entry,
and the single entries under both the workout's id and its slug.

Visibility: soft-deleted rows are never served, and a caller only sees
rows whose tier_access is at or below its own tier.
"""

from __future__ import annotations

import logging
import math
import re
import uuid
from typing import Any

from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workout_api.core.cache import (
    CACHE_TTL_CATEGORIES,
    CACHE_TTL_WORKOUT_LIST,
    CACHE_TTL_WORKOUT_SINGLE,
    CacheService,
)
from workout_api.core.constants import DIFFICULTY_LEVELS, TIER_HIERARCHY, allowed_tiers
from workout_api.models.workout import Workout
from workout_api.schemas.workouts import WorkoutCreate, WorkoutOut, WorkoutUpdate

logger = logging.getLogger(__name__)

CATEGORIES_KEY = CacheService.generate_key("workouts", "categories")


class WorkoutNotFound(Exception):
    """No workout with that id."""


def slugify(text: str) -> str:
    """"Push-Up  Ladder!" → "push-up-ladder"."""
    slug = re.sub(r"[^\w\s-]", "", text.lower().strip())
    slug = re.sub(r"[\s_-]+", "-", slug)
    return slug.strip("-")


def _json_list_contains(column: Any, value: str) -> Any:
    """Membership test on a JSON string array, portable across dialects."""
    return cast(column, String).contains(f'"{value}"', autoescape=True)


def _serialize(workout: Workout) -> dict[str, Any]:
    return WorkoutOut.model_validate(workout).model_dump(mode="json")


class WorkoutService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache

    # ── Reads ───────────────────────────────────────────────
    async def list_workouts(
        self,
        *,
        tier: str,
        page: int = 1,
        limit: int = 20,
        difficulty: str | None = None,
        muscle_group: str | None = None,
        equipment: str | None = None,
        min_duration: int | None = None,
        max_duration: int | None = None,
        search: str | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """
        One page of visible workouts, newest first.

        Returns ({"data": [...], "pagination": {...}}, was_cached).
        """
        params = {
            "tier": tier,
            "page": page,
            "limit": limit,
            "difficulty": difficulty,
            "muscle_group": muscle_group,
            "equipment": equipment,
            "min_duration": min_duration,
            "max_duration": max_duration,
            "search": search,
        }
        cache_key = CacheService.generate_key("workouts", "list", CacheService.hash_params(params))

        async def load() -> dict[str, Any]:
            filters = [
                Workout.is_deleted.is_(False),
                Workout.tier_access.in_(allowed_tiers(tier)),
            ]
            if difficulty:
                filters.append(Workout.difficulty == difficulty)
            if muscle_group:
                filters.append(_json_list_contains(Workout.muscle_groups, muscle_group))
            if equipment:
                filters.append(_json_list_contains(Workout.equipment, equipment))
            if min_duration is not None:
                filters.append(Workout.duration >= min_duration)
            if max_duration is not None:
                filters.append(Workout.duration <= max_duration)
            if search:
                filters.append(or_(
                    Workout.name.icontains(search, autoescape=True),
                    Workout.description.icontains(search, autoescape=True),
                ))

            async with self._session_factory() as session:
                total = await session.scalar(
                    select(func.count()).select_from(Workout).where(*filters)
                ) or 0
                rows = await session.scalars(
                    select(Workout)
                    .where(*filters)
                    .order_by(Workout.created_at.desc(), Workout.id)
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
                data = [_serialize(w) for w in rows.all()]

            return {
                "data": data,
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": total,
                    "totalPages": math.ceil(total / limit) if limit else 0,
                },
            }

        return await self._cache.get_or_set(cache_key, load, CACHE_TTL_WORKOUT_LIST)

    async def get_workout(self, id_or_slug: str, tier: str) -> dict[str, Any] | None:
        """By UUID or slug. None when missing, deleted, or above the caller's tier."""
        cache_key = CacheService.generate_key("workouts", "single", id_or_slug, tier)

        async def load() -> dict[str, Any] | None:
            async with self._session_factory() as session:
                workout = None
                try:
                    workout_id = uuid.UUID(id_or_slug)
                except ValueError:
                    pass
                else:
                    workout = await session.scalar(
                        select(Workout).where(
                            Workout.id == workout_id, Workout.is_deleted.is_(False)
                        )
                    )
                if workout is None:
                    workout = await session.scalar(
                        select(Workout).where(
                            Workout.slug == id_or_slug, Workout.is_deleted.is_(False)
                        )
                    )

            if workout is None:
                return None
            if TIER_HIERARCHY.get(workout.tier_access, 0) > TIER_HIERARCHY.get(tier, 0):
                return None
            return _serialize(workout)

        workout, _ = await self._cache.get_or_set(cache_key, load, CACHE_TTL_WORKOUT_SINGLE)
        return workout

    async def get_categories(self) -> dict[str, list[str]]:
        """Distinct muscle groups and equipment (sorted) plus difficulties in use."""

        async def load() -> dict[str, list[str]]:
            stmt = select(
                Workout.muscle_groups, Workout.equipment, Workout.difficulty,
            ).where(Workout.is_deleted.is_(False))
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()

            # JSON arrays: flattened here rather than with a dialect-specific unnest.
            muscle_groups: set[str] = set()
            equipment: set[str] = set()
            difficulties: set[str] = set()
            for row in rows:
                muscle_groups.update(row.muscle_groups or [])
                equipment.update(row.equipment or [])
                difficulties.add(row.difficulty)

            return {
                "muscleGroups": sorted(muscle_groups),
                "equipment": sorted(equipment),
                "difficulties": [d for d in DIFFICULTY_LEVELS if d in difficulties],
            }

        categories, _ = await self._cache.get_or_set(CATEGORIES_KEY, load, CACHE_TTL_CATEGORIES)
        return categories

    # ── Writes ──────────────────────────────────────────────
    async def create_workout(
        self,
        payload: WorkoutCreate,
        created_by: uuid.UUID | None = None,
    ) -> dict[str, Any]:
        async with self._session_factory() as session:
            workout = Workout(
                **payload.model_dump(),
                slug=await self._unique_slug(session, payload.name),
                created_by=created_by,
            )
            session.add(workout)
            await session.commit()
            created = _serialize(workout)

        logger.info("Created workout %s", created["slug"])
        await self._invalidate_lists()
        return created

    async def update_workout(self, workout_id: uuid.UUID, payload: WorkoutUpdate) -> dict[str, Any]:
        changes = payload.model_dump(exclude_unset=True)
        async with self._session_factory() as session:
            workout = await session.get(Workout, workout_id)
            if workout is None:
                raise WorkoutNotFound(str(workout_id))

            old_slug = workout.slug
            if changes.get("name"):
                changes["slug"] = await self._unique_slug(session, changes["name"], workout_id)
            for field, value in changes.items():
                setattr(workout, field, value)
            await session.commit()
            await session.refresh(workout)
            updated = _serialize(workout)

        await self._invalidate_single(workout_id, old_slug, updated["slug"])
        await self._invalidate_lists()
        return updated

    async def soft_delete(self, workout_id: uuid.UUID) -> None:
        await self._set_deleted(workout_id, True)

    async def restore(self, workout_id: uuid.UUID) -> None:
        await self._set_deleted(workout_id, False)

    async def _set_deleted(self, workout_id: uuid.UUID, deleted: bool) -> None:
        async with self._session_factory() as session:
            workout = await session.get(Workout, workout_id)
            if workout is None:
                raise WorkoutNotFound(str(workout_id))
            workout.is_deleted = deleted
            slug = workout.slug
            await session.commit()

        logger.info("Workout %s %s", slug, "deleted" if deleted else "restored")
        await self._invalidate_single(workout_id, slug)
        await self._invalidate_lists()

    @staticmethod
    async def _unique_slug(
        session: AsyncSession,
        name: str,
        exclude_id: uuid.UUID | None = None,
    ) -> str:
        """slugify(name), suffixed -1, -2, … until no other row uses it."""
        base = slugify(name) or "workout"
        slug, counter = base, 1
        while True:
            stmt = select(Workout.id).where(Workout.slug == slug)
            if exclude_id is not None:
                stmt = stmt.where(Workout.id != exclude_id)
            if await session.scalar(stmt.limit(1)) is None:
                return slug
            slug = f"{base}-{counter}"
            counter += 1

    # ── Cache invalidation ──────────────────────────────────
    async def _invalidate_lists(self) -> None:
        await self._cache.delete_pattern("workouts:list:*")
        await self._cache.delete(CATEGORIES_KEY)

    async def _invalidate_single(self, workout_id: uuid.UUID, *slugs: str) -> None:
        for identifier in {str(workout_id), *slugs}:
            await self._cache.delete_pattern(f"workouts:single:{identifier}:*")
