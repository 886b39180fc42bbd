"""
Request admission pipeline for every protected endpoint.

Order: MISSING KEY → VALIDATE → RATE LIMIT. The first failing stage
decides the outcome; later stages never run.

admit() returns a discriminated result instead of raising, so the HTTP
layer owns the translation into status codes and envelopes.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from workout_api.core.errors import DEFAULT_MESSAGES, ERROR_STATUS, ErrorCode
from workout_api.services.api_keys import ApiKeyService, KeyFailure, KeyInvalid, KeyValid
from workout_api.services.rate_limiter import RateLimitAllowed, RateLimitDenied, RateLimiter

logger = logging.getLogger(__name__)

_BEARER = "bearer"

_FAILURE_CODES: dict[KeyFailure, str] = {
    KeyFailure.MALFORMED: ErrorCode.INVALID_API_KEY,
    KeyFailure.NOT_FOUND: ErrorCode.INVALID_API_KEY,
    KeyFailure.INVALID: ErrorCode.INVALID_API_KEY,
    KeyFailure.EXPIRED: ErrorCode.EXPIRED_API_KEY,
    KeyFailure.SUBSCRIPTION_INACTIVE: ErrorCode.SUBSCRIPTION_INACTIVE,
}


@dataclass(frozen=True, slots=True)
class Admission:
    """An admitted request: who is calling and the quota headers to echo."""

    key_id: uuid.UUID
    user_id: uuid.UUID
    tier: str
    rate_limit: RateLimitAllowed

    @property
    def headers(self) -> dict[str, str]:
        return self.rate_limit.headers()


@dataclass(frozen=True, slots=True)
class Rejection:
    code: str
    status_code: int
    message: str
    details: Any = None
    headers: dict[str, str] = field(default_factory=dict)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Token from "Bearer <token>", or None when absent or empty."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != _BEARER:
        return None
    return token.strip() or None


def _reject(code: str, **kwargs: Any) -> Rejection:
    return Rejection(
        code=code,
        status_code=ERROR_STATUS[code],
        message=kwargs.pop("message", None) or DEFAULT_MESSAGES[code],
        **kwargs,
    )


class RequestPipeline:
    def __init__(self, api_keys: ApiKeyService, rate_limiter: RateLimiter) -> None:
        self._api_keys = api_keys
        self._rate_limiter = rate_limiter

    async def admit(self, authorization: str | None) -> Admission | Rejection:
        raw_key = extract_bearer_token(authorization)
        if raw_key is None:
            return _reject(ErrorCode.MISSING_API_KEY)

        validation = await self._api_keys.validate(raw_key)
        if isinstance(validation, KeyInvalid):
            logger.info("Rejected API key: %s", validation.reason.value)
            return _reject(_FAILURE_CODES[validation.reason])

        return await self._apply_rate_limit(validation)

    async def _apply_rate_limit(self, key: KeyValid) -> Admission | Rejection:
        decision = await self._rate_limiter.check(key.key_id, key.tier)
        if isinstance(decision, RateLimitDenied):
            period = "minute" if decision.limit_type == "per_minute" else "month"
            return _reject(
                ErrorCode.RATE_LIMIT_EXCEEDED,
                message=(
                    f"Rate limit exceeded. You can make {decision.limit} "
                    f"requests per {period}"
                ),
                details={
                    "limit": decision.limit,
                    "limitType": decision.limit_type,
                    "resetAt": decision.headers()["X-RateLimit-Reset"],
                },
                headers=decision.headers(),
            )

        return Admission(
            key_id=key.key_id,
            user_id=key.user_id,
            tier=key.tier,
            rate_limit=decision,
        )
