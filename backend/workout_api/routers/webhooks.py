"""
Payment provider webhooks.

POST /webhooks/razorpay
  1. Read the RAW body (signature covers the exact bytes).
  2. Verify X-Razorpay-Signature (HMAC-SHA256, constant-time compare).
  3. Parse JSON and dispatch to SubscriptionService.

Not API-key protected and not metered: authenticity comes from the
signature alone.
"""

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Request

from workout_api.auth.dependencies import get_subscription_service
from workout_api.auth.signatures import verify_webhook_signature
from workout_api.core.config import settings
from workout_api.core.errors import ApiError, ErrorCode
from workout_api.services.subscriptions import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhooks"])


@router.post("/razorpay", summary="Razorpay subscription events")
async def razorpay_webhook(
    request: Request,
    subscriptions: Annotated[SubscriptionService, Depends(get_subscription_service)],
    signature: Annotated[str | None, Header(alias="X-Razorpay-Signature")] = None,
    event_id: Annotated[str | None, Header(alias="X-Razorpay-Event-Id")] = None,
) -> dict[str, Any]:
    body = await request.body()

    if not signature:
        logger.warning("Razorpay webhook without signature")
        raise ApiError(ErrorCode.VALIDATION_ERROR, "Missing webhook signature")

    if not settings.RAZORPAY_WEBHOOK_SECRET:
        logger.error("RAZORPAY_WEBHOOK_SECRET is not configured")
        raise ApiError(ErrorCode.INTERNAL_ERROR, "Webhook secret is not configured")

    if not verify_webhook_signature(body, signature, settings.RAZORPAY_WEBHOOK_SECRET):
        logger.warning("Invalid Razorpay webhook signature")
        raise ApiError(ErrorCode.VALIDATION_ERROR, "Invalid webhook signature")

    try:
        event = json.loads(body)
    except ValueError as exc:
        raise ApiError(ErrorCode.VALIDATION_ERROR, "Webhook body is not valid JSON") from exc
    if not isinstance(event, dict):
        raise ApiError(ErrorCode.VALIDATION_ERROR, "Webhook body must be a JSON object")

    logger.info("Received Razorpay webhook %s (event id %s)", event.get("event"), event_id)
    handled = await subscriptions.handle_event(event)
    return {"status": "success", "handled": handled}
