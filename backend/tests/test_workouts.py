"""Tests for the workout catalogue: filtering, tier gating, slugs and cache invalidation."""

import uuid

import pytest
import pytest_asyncio

from conftest import bearer
from workout_api.models.subscription import Subscription
from workout_api.schemas.workouts import WorkoutCreate, WorkoutUpdate
from workout_api.services.workouts import CATEGORIES_KEY, WorkoutNotFound, slugify


def _payload(name: str, **overrides) -> WorkoutCreate:
    fields = {
        "name": name,
        "description": f"{name} for the whole body",
        "difficulty": "beginner",
        "duration": 20,
        "muscle_groups": ["chest", "triceps"],
        "equipment": [],
        "instructions": ["Warm up", "Work", "Cool down"],
    }
    fields.update(overrides)
    return WorkoutCreate(**fields)


@pytest_asyncio.fixture
async def catalogue(workouts):
    """Four visible workouts across tiers plus one soft-deleted."""
    created = {
        "pushups": await workouts.create_workout(_payload("Push-up Ladder")),
        "rows": await workouts.create_workout(_payload(
            "Dumbbell Rows",
            difficulty="intermediate",
            duration=35,
            muscle_groups=["back", "biceps"],
            equipment=["dumbbell"],
        )),
        "sprints": await workouts.create_workout(_payload(
            "Hill Sprints",
            difficulty="advanced",
            duration=15,
            muscle_groups=["legs"],
            tier_access="pro",
        )),
        "clean": await workouts.create_workout(_payload(
            "Olympic Clean",
            difficulty="advanced",
            duration=60,
            muscle_groups=["legs", "back"],
            equipment=["barbell"],
            tier_access="enterprise",
        )),
        "gone": await workouts.create_workout(_payload("Retired Burpees")),
    }
    await workouts.soft_delete(uuid.UUID(created["gone"]["id"]))
    return created


def _names(result):
    return {w["name"] for w in result["data"]}


class TestSlugify:
    @pytest.mark.parametrize(
        "name, slug",
        [
            ("Push-up Ladder", "push-up-ladder"),
            ("  Core   Blast!! ", "core-blast"),
            ("5x5 Strength_Block", "5x5-strength-block"),
        ],
    )
    def test_slugify(self, name, slug):
        assert slugify(name) == slug


class TestListWorkouts:
    async def test_free_tier_sees_free_only(self, workouts, catalogue):
        result, cached = await workouts.list_workouts(tier="free")

        assert cached is False
        assert _names(result) == {"Push-up Ladder", "Dumbbell Rows"}
        assert result["pagination"] == {"page": 1, "limit": 20, "total": 2, "totalPages": 1}

    async def test_tier_hierarchy(self, workouts, catalogue):
        pro, _ = await workouts.list_workouts(tier="pro")
        enterprise, _ = await workouts.list_workouts(tier="enterprise")

        assert "Hill Sprints" in _names(pro)
        assert "Olympic Clean" not in _names(pro)
        assert _names(enterprise) == {
            "Push-up Ladder", "Dumbbell Rows", "Hill Sprints", "Olympic Clean",
        }

    async def test_soft_deleted_never_listed(self, workouts, catalogue):
        result, _ = await workouts.list_workouts(tier="enterprise")
        assert "Retired Burpees" not in _names(result)

    async def test_filters_combine(self, workouts, catalogue):
        result, _ = await workouts.list_workouts(
            tier="enterprise", difficulty="advanced", muscle_group="back",
        )
        assert _names(result) == {"Olympic Clean"}

    async def test_equipment_filter(self, workouts, catalogue):
        result, _ = await workouts.list_workouts(tier="enterprise", equipment="dumbbell")
        assert _names(result) == {"Dumbbell Rows"}

    async def test_duration_range(self, workouts, catalogue):
        result, _ = await workouts.list_workouts(
            tier="enterprise", min_duration=16, max_duration=40,
        )
        assert _names(result) == {"Push-up Ladder", "Dumbbell Rows"}

    async def test_search_matches_name_case_insensitively(self, workouts, catalogue):
        result, _ = await workouts.list_workouts(tier="free", search="LADDER")
        assert _names(result) == {"Push-up Ladder"}

    async def test_search_wildcards_are_literal(self, workouts, catalogue):
        result, _ = await workouts.list_workouts(tier="free", search="%")
        assert result["data"] == []

    async def test_pagination(self, workouts, catalogue):
        first, _ = await workouts.list_workouts(tier="enterprise", page=1, limit=3)
        second, _ = await workouts.list_workouts(tier="enterprise", page=2, limit=3)

        assert len(first["data"]) == 3
        assert len(second["data"]) == 1
        assert first["pagination"]["totalPages"] == 2
        assert not _names(first) & _names(second)

    async def test_second_call_is_cached(self, workouts, catalogue):
        await workouts.list_workouts(tier="free", difficulty="beginner")
        result, cached = await workouts.list_workouts(difficulty="beginner", tier="free")

        assert cached is True
        assert _names(result) == {"Push-up Ladder"}


class TestGetWorkout:
    async def test_by_id_and_slug(self, workouts, catalogue):
        by_id = await workouts.get_workout(catalogue["rows"]["id"], "free")
        by_slug = await workouts.get_workout("dumbbell-rows", "free")

        assert by_id == by_slug
        assert by_id["equipment"] == ["dumbbell"]

    async def test_above_tier_is_hidden(self, workouts, catalogue):
        assert await workouts.get_workout("hill-sprints", "free") is None
        assert (await workouts.get_workout("hill-sprints", "pro"))["name"] == "Hill Sprints"

    async def test_soft_deleted_is_hidden(self, workouts, catalogue):
        assert await workouts.get_workout(catalogue["gone"]["id"], "enterprise") is None

    async def test_missing(self, workouts, catalogue):
        assert await workouts.get_workout(str(uuid.uuid4()), "enterprise") is None


class TestCategories:
    async def test_distinct_sorted_values(self, workouts, catalogue):
        categories = await workouts.get_categories()

        assert categories == {
            "muscleGroups": ["back", "biceps", "chest", "legs", "triceps"],
            "equipment": ["barbell", "dumbbell"],
            "difficulties": ["beginner", "intermediate", "advanced"],
        }


class TestWrites:
    async def test_duplicate_names_get_suffixed_slugs(self, workouts):
        first = await workouts.create_workout(_payload("Core Blast"))
        second = await workouts.create_workout(_payload("Core Blast"))
        third = await workouts.create_workout(_payload("Core Blast!"))

        assert [first["slug"], second["slug"], third["slug"]] == [
            "core-blast", "core-blast-1", "core-blast-2",
        ]

    async def test_create_invalidates_lists_and_categories(self, workouts, catalogue, cache):
        await workouts.list_workouts(tier="free")
        await workouts.get_categories()

        await workouts.create_workout(_payload("Plank Hold", muscle_groups=["core"]))

        assert await cache.get(CATEGORIES_KEY) is None
        result, cached = await workouts.list_workouts(tier="free")
        assert cached is False
        assert "Plank Hold" in _names(result)

    async def test_update_renames_and_invalidates_old_slug(self, workouts, catalogue):
        workout_id = uuid.UUID(catalogue["pushups"]["id"])
        assert await workouts.get_workout("push-up-ladder", "free") is not None

        updated = await workouts.update_workout(
            workout_id, WorkoutUpdate(name="Push-up Pyramid", duration=25),
        )

        assert updated["slug"] == "push-up-pyramid"
        assert updated["duration"] == 25
        assert await workouts.get_workout("push-up-ladder", "free") is None
        assert (await workouts.get_workout("push-up-pyramid", "free"))["duration"] == 25

    async def test_soft_delete_drops_cached_single(self, workouts, catalogue):
        workout_id = uuid.UUID(catalogue["rows"]["id"])
        assert await workouts.get_workout("dumbbell-rows", "free") is not None

        await workouts.soft_delete(workout_id)

        assert await workouts.get_workout("dumbbell-rows", "free") is None

    async def test_restore(self, workouts, catalogue):
        await workouts.restore(uuid.UUID(catalogue["gone"]["id"]))

        result, _ = await workouts.list_workouts(tier="free")
        assert "Retired Burpees" in _names(result)

    async def test_unknown_id_raises(self, workouts):
        with pytest.raises(WorkoutNotFound):
            await workouts.soft_delete(uuid.uuid4())
        with pytest.raises(WorkoutNotFound):
            await workouts.update_workout(uuid.uuid4(), WorkoutUpdate(duration=10))


class TestWorkoutRoutes:
    async def test_list(self, client, auth_headers, catalogue):
        response = await client.get(
            "/api/v1/workouts", params={"equipment": "dumbbell"}, headers=auth_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert [w["slug"] for w in body["data"]] == ["dumbbell-rows"]
        assert body["pagination"]["total"] == 1

    async def test_detail_by_slug(self, client, auth_headers, catalogue):
        response = await client.get("/api/v1/workouts/push-up-ladder", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["id"] == catalogue["pushups"]["id"]

    async def test_detail_above_tier_is_404(self, client, auth_headers, catalogue):
        response = await client.get("/api/v1/workouts/hill-sprints", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Workout not found"

    async def test_bad_difficulty_is_validation_error(self, client, auth_headers):
        response = await client.get(
            "/api/v1/workouts", params={"difficulty": "extreme"}, headers=auth_headers,
        )
        assert response.status_code == 400

    async def test_categories(self, client, auth_headers, catalogue):
        response = await client.get("/api/v1/categories", headers=auth_headers)

        assert response.status_code == 200
        assert "barbell" in response.json()["data"]["equipment"]

    async def test_pro_key_sees_pro_workouts(
        self, client, catalogue, session_factory, api_keys, subscriptions, user,
    ):
        subscription, _ = await subscriptions.create_free_subscription(user.id)
        async with session_factory() as session:
            row = await session.get(Subscription, subscription.id)
            row.tier = "pro"
            await session.commit()
        issued = await api_keys.generate_key(user.id, subscription.id, "pro key")

        response = await client.get("/api/v1/workouts/hill-sprints", headers=bearer(issued.raw_key))

        assert response.status_code == 200
