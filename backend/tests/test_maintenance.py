"""Retention cleanup tests."""

import datetime
import uuid

from sqlalchemy import func, select

from workout_api.core.database import utcnow
from workout_api.models.api_usage import ApiUsage
from workout_api.models.rate_limit import RateLimitWindow
from workout_api.services.maintenance import purge_expired_records


async def _seed(session_factory, key_id, now):
    async with session_factory() as session:
        for days in (0, 1, 3):
            session.add(RateLimitWindow(
                api_key_id=key_id,
                limit_type="per_minute",
                window_start=now - datetime.timedelta(days=days),
                request_count=1,
            ))
        for days in (0, 89, 91):
            session.add(ApiUsage(
                api_key_id=key_id,
                endpoint="/api/v1/workouts",
                method="GET",
                status_code=200,
                response_time_ms=5,
                request_id=f"req_{uuid.uuid4().hex[:8]}",
                created_at=now - datetime.timedelta(days=days),
            ))
        await session.commit()


async def _count(session_factory, model):
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


class TestPurgeExpiredRecords:
    async def test_removes_only_expired_rows(self, session_factory, free_key):
        now = utcnow()
        await _seed(session_factory, free_key.id, now)

        async with session_factory() as session:
            removed = await purge_expired_records(session, now=now)

        assert removed == {"rate_limits": 1, "api_usage": 1}
        assert await _count(session_factory, RateLimitWindow) == 2
        assert await _count(session_factory, ApiUsage) == 2

    async def test_idempotent(self, session_factory, free_key):
        now = utcnow()
        await _seed(session_factory, free_key.id, now)

        async with session_factory() as session:
            await purge_expired_records(session, now=now)
        async with session_factory() as session:
            removed = await purge_expired_records(session, now=now)

        assert removed == {"rate_limits": 0, "api_usage": 0}
