"""
Self-service API key management.

Authenticated with an API key through the same admission pipeline as the
catalogue, so these calls are metered too. A caller can only see and
change keys owned by the user behind the presenting key.

Endpoints:
  GET    /api/v1/keys                   — list the user's keys (prefix only)
  POST   /api/v1/keys                   — issue a key (bounded by tier)
  POST   /api/v1/keys/{key_id}/regenerate — rotate with a grace window
  DELETE /api/v1/keys/{key_id}          — revoke
"""

import logging
import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Request, status

from workout_api.auth.dependencies import (
    Access,
    get_api_key_service,
    get_subscription_service,
)
from workout_api.core.constants import TIER_FREE, TIER_LIMITS
from workout_api.core.errors import ApiError, ErrorCode
from workout_api.schemas.envelope import success_envelope
from workout_api.schemas.keys import ApiKeyCreate, ApiKeyCreated, ApiKeyOut
from workout_api.services.api_keys import (
    ApiKeyAlreadyRotated,
    ApiKeyLimitReached,
    ApiKeyNotFound,
    ApiKeyService,
    IssuedKey,
)
from workout_api.services.subscriptions import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/keys", tags=["API Keys"])

Keys = Annotated[ApiKeyService, Depends(get_api_key_service)]
Subscriptions = Annotated[SubscriptionService, Depends(get_subscription_service)]


def _created(issued: IssuedKey) -> dict[str, Any]:
    return ApiKeyCreated(
        id=issued.id,
        name=issued.name,
        key_prefix=issued.prefix,
        api_key=issued.raw_key,
        created_at=issued.created_at,
    ).model_dump(mode="json")


@router.get("", summary="List API keys")
async def list_keys(request: Request, access: Access, keys: Keys) -> dict[str, Any]:
    rows = await keys.list_keys(access.user_id)
    return success_envelope(
        request,
        [ApiKeyOut.model_validate(row).model_dump(mode="json") for row in rows],
    )


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create an API key")
async def create_key(
    request: Request,
    access: Access,
    keys: Keys,
    subscriptions: Subscriptions,
    payload: Annotated[ApiKeyCreate | None, Body()] = None,
) -> dict[str, Any]:
    payload = payload or ApiKeyCreate()
    subscription = await subscriptions.get_user_subscription(access.user_id)
    if subscription is None:
        raise ApiError(ErrorCode.SUBSCRIPTION_INACTIVE)

    limits = TIER_LIMITS.get(access.tier, TIER_LIMITS[TIER_FREE])
    try:
        issued = await keys.generate_key(
            access.user_id, subscription.id, payload.name, max_keys=limits.max_api_keys,
        )
    except ApiKeyLimitReached as exc:
        raise ApiError(ErrorCode.FORBIDDEN, str(exc)) from exc

    return success_envelope(request, _created(issued))


@router.post("/{key_id}/regenerate", summary="Rotate an API key")
async def regenerate_key(
    request: Request,
    key_id: uuid.UUID,
    access: Access,
    keys: Keys,
) -> dict[str, Any]:
    limits = TIER_LIMITS.get(access.tier, TIER_LIMITS[TIER_FREE])
    try:
        issued = await keys.regenerate_key(
            key_id, access.user_id, max_keys=limits.max_api_keys,
        )
    except ApiKeyNotFound as exc:
        raise ApiError(ErrorCode.NOT_FOUND, "API key not found") from exc
    except ApiKeyAlreadyRotated as exc:
        raise ApiError(
            ErrorCode.VALIDATION_ERROR, "API key has already been rotated"
        ) from exc
    except ApiKeyLimitReached as exc:
        raise ApiError(ErrorCode.FORBIDDEN, str(exc)) from exc
    return success_envelope(request, _created(issued))


@router.delete("/{key_id}", summary="Revoke an API key")
async def revoke_key(
    request: Request,
    key_id: uuid.UUID,
    access: Access,
    keys: Keys,
) -> dict[str, Any]:
    try:
        await keys.revoke_key(key_id, access.user_id)
    except ApiKeyNotFound as exc:
        raise ApiError(ErrorCode.NOT_FOUND, "API key not found") from exc
    return success_envelope(request, {"id": str(key_id), "revoked": True})
