"""
Health probe.

GET /health
  • database — SELECT 1 through the session factory; failure → 503
  • cache    — Redis PING; failure only degrades (the API keeps serving)
"""

import logging
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from workout_api.core.config import settings
from workout_api.core.database import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])


@router.get("/health", summary="Readiness probe")
async def health_check(request: Request) -> JSONResponse:
    checks: dict[str, str] = {}

    try:
        async with request.app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "pass"
    except Exception:
        logger.exception("Health check: database unreachable")
        checks["database"] = "fail"

    checks["cache"] = "pass" if await request.app.state.cache.ping() else "fail"

    if checks["database"] == "fail":
        overall, code = "unhealthy", status.HTTP_503_SERVICE_UNAVAILABLE
    elif checks["cache"] == "fail":
        overall, code = "degraded", status.HTTP_200_OK
    else:
        overall, code = "healthy", status.HTTP_200_OK

    body: dict[str, Any] = {
        "status": overall,
        "timestamp": utcnow().isoformat(),
        "version": settings.API_VERSION,
        "checks": checks,
    }
    return JSONResponse(status_code=code, content=body)
