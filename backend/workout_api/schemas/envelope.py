"""
Success envelope shared by every /api/v1 response:

    {"data": ..., "pagination"?: {...},
     "meta": {"requestId", "timestamp", "version"}}

The failure envelope lives in workout_api.core.errors.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request

from workout_api.core.config import settings
from workout_api.core.database import utcnow
from workout_api.core.errors import request_id_for


def success_envelope(
    request: Request,
    data: Any,
    pagination: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"data": data}
    if pagination is not None:
        body["pagination"] = pagination
    body["meta"] = {
        "requestId": request_id_for(request),
        "timestamp": utcnow().isoformat(),
        "version": settings.API_VERSION,
    }
    return body
