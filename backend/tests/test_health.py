"""Health probe tests."""

from httpx import ASGITransport, AsyncClient

from workout_api.main import create_app


class _UnreachableSessionFactory:
    def __call__(self):
        raise ConnectionRefusedError("database is down")


async def _get_health(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        return await ac.get("/health")


class TestHealth:
    async def test_healthy(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"] == {"database": "pass", "cache": "pass"}
        assert body["version"] == "v1"

    async def test_cache_down_is_degraded(self, session_factory, broken_redis):
        response = await _get_health(create_app(session_factory=session_factory, redis=broken_redis))

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["checks"]["cache"] == "fail"

    async def test_database_down_is_unhealthy(self, fake_redis):
        app = create_app(session_factory=_UnreachableSessionFactory(), redis=fake_redis)

        response = await _get_health(app)

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    async def test_not_metered(self, client):
        response = await client.get("/health")
        assert "X-RateLimit-Limit" not in response.headers
