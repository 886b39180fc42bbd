"""
Workout catalogue router — the metered, API-key protected surface.

Every endpoint depends on require_api_access, so admission (key
validation + rate limits) runs before any handler code.

Endpoints:
  GET /api/v1/workouts               — filtered, paginated list
  GET /api/v1/workouts/{id_or_slug}  — one workout by UUID or slug
  GET /api/v1/categories             — filter vocabularies
"""

from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Query, Request

from workout_api.auth.dependencies import Access, get_workout_service
from workout_api.core.errors import ApiError, ErrorCode
from workout_api.schemas.envelope import success_envelope
from workout_api.services.workouts import WorkoutService

router = APIRouter(tags=["Workouts"])

Workouts = Annotated[WorkoutService, Depends(get_workout_service)]


@router.get(
    "/workouts",
    summary="List workouts",
    description=(
        "Workouts visible to the caller's tier, newest first. "
        "Filters combine with AND; search matches name or description."
    ),
)
async def list_workouts(
    request: Request,
    access: Access,
    workouts: Workouts,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    difficulty: Literal["beginner", "intermediate", "advanced"] | None = None,
    muscle_group: Annotated[str | None, Query(max_length=50)] = None,
    equipment: Annotated[str | None, Query(max_length=50)] = None,
    min_duration: Annotated[int | None, Query(ge=0)] = None,
    max_duration: Annotated[int | None, Query(ge=1, le=300)] = None,
    search: Annotated[str | None, Query(max_length=100)] = None,
) -> dict[str, Any]:
    result, _ = await workouts.list_workouts(
        tier=access.tier,
        page=page,
        limit=limit,
        difficulty=difficulty,
        muscle_group=muscle_group,
        equipment=equipment,
        min_duration=min_duration,
        max_duration=max_duration,
        search=search,
    )
    return success_envelope(request, result["data"], result["pagination"])


@router.get(
    "/workouts/{id_or_slug}",
    summary="Get one workout",
    description="Lookup by UUID first, then by slug. 404 when hidden by tier.",
)
async def get_workout(
    request: Request,
    id_or_slug: str,
    access: Access,
    workouts: Workouts,
) -> dict[str, Any]:
    workout = await workouts.get_workout(id_or_slug, access.tier)
    if workout is None:
        raise ApiError(ErrorCode.NOT_FOUND, "Workout not found")
    return success_envelope(request, workout)


@router.get(
    "/categories",
    summary="Filter vocabularies",
    description="Distinct muscle groups, equipment and difficulty levels in the catalogue.",
)
async def get_categories(
    request: Request,
    access: Access,
    workouts: Workouts,
) -> dict[str, Any]:
    return success_envelope(request, await workouts.get_categories())
