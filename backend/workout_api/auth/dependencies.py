"""
FastAPI dependencies for API-key protected routes.

Flow (require_api_access):
  1. Read the Authorization header
  2. Run the admission pipeline: missing key → validate → rate limit
  3. Rejection → ApiError (rendered as the error envelope, with
     rate-limit headers on 429)
  4. Admission → request.state carries key_id / user_id / tier so the
     usage middleware can log the request; returns the Admission

Security:
  • Raw keys are NEVER logged
  • The same INVALID_API_KEY code covers unknown, malformed and wrong keys

Services are built once in create_app() and read from app.state.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Request

from workout_api.core.errors import ApiError
from workout_api.services.api_keys import ApiKeyService
from workout_api.services.pipeline import Admission, Rejection, RequestPipeline
from workout_api.services.subscriptions import SubscriptionService
from workout_api.services.usage_logger import UsageLogger
from workout_api.services.workouts import WorkoutService


# ── Service accessors ───────────────────────────────────────
def get_pipeline(request: Request) -> RequestPipeline:
    return request.app.state.pipeline


def get_api_key_service(request: Request) -> ApiKeyService:
    return request.app.state.api_keys


def get_workout_service(request: Request) -> WorkoutService:
    return request.app.state.workouts


def get_subscription_service(request: Request) -> SubscriptionService:
    return request.app.state.subscriptions


def get_usage_logger(request: Request) -> UsageLogger:
    return request.app.state.usage_logger


# ── Admission ───────────────────────────────────────────────
async def require_api_access(
    request: Request,
    pipeline: Annotated[RequestPipeline, Depends(get_pipeline)],
    authorization: Annotated[str | None, Header(alias="Authorization")] = None,
) -> Admission:
    """
    FastAPI dependency — resolves the bearer key to an Admission.

    Usage in routers:
        Access = Annotated[Admission, Depends(require_api_access)]
    """
    outcome = await pipeline.admit(authorization)

    if isinstance(outcome, Rejection):
        raise ApiError(
            outcome.code,
            outcome.message,
            details=outcome.details,
            headers=outcome.headers,
        )

    request.state.key_id = outcome.key_id
    request.state.user_id = outcome.user_id
    request.state.tier = outcome.tier
    request.state.rate_limit_headers = outcome.headers
    return outcome


Access = Annotated[Admission, Depends(require_api_access)]
