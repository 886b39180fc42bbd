"""Tests for Razorpay webhook verification and the subscription lifecycle."""

import json
import uuid

import pytest
from sqlalchemy import select

from conftest import bearer
from workout_api.auth.signatures import compute_signature, verify_webhook_signature
from workout_api.core.config import settings
from workout_api.models.api_key import APIKey
from workout_api.models.subscription import Subscription
from workout_api.services.subscriptions import map_provider_status, tier_for_plan

WEBHOOK_URL = "/webhooks/razorpay"


def _subscription_event(event, provider_id, user_id=None, **entity):
    body = {"id": provider_id, "status": "active", **entity}
    if user_id is not None:
        body["notes"] = {"userId": str(user_id)}
    return {"event": event, "payload": {"subscription": {"entity": body}}}


def _payment_failed(provider_id):
    return {
        "event": "payment.failed",
        "payload": {"payment": {"entity": {"id": "pay_1", "subscription_id": provider_id}}},
    }


async def _post(client, event, secret=None, signature=None):
    body = json.dumps(event).encode()
    headers = {"Content-Type": "application/json"}
    if signature is None:
        signature = compute_signature(body, secret or settings.RAZORPAY_WEBHOOK_SECRET)
    if signature:
        headers["X-Razorpay-Signature"] = signature
    return await client.post(WEBHOOK_URL, content=body, headers=headers)


async def _subscriptions_of(session_factory, user_id):
    async with session_factory() as session:
        rows = await session.scalars(
            select(Subscription).where(Subscription.user_id == user_id)
        )
        return {row.provider_subscription_id: row for row in rows.all()}


async def _keys_of(session_factory, user_id):
    async with session_factory() as session:
        rows = await session.scalars(select(APIKey).where(APIKey.user_id == user_id))
        return list(rows.all())


class TestSignatures:
    def test_round_trip(self):
        body = b'{"event":"subscription.activated"}'
        assert verify_webhook_signature(body, compute_signature(body, "s3cret"), "s3cret")

    def test_tampered_body(self):
        signature = compute_signature(b'{"a":1}', "s3cret")
        assert not verify_webhook_signature(b'{"a":2}', signature, "s3cret")

    def test_empty_inputs(self):
        assert not verify_webhook_signature(b"{}", "", "s3cret")
        assert not verify_webhook_signature(b"{}", "abc", "")


class TestMappings:
    @pytest.mark.parametrize(
        "provider_status, local",
        [
            ("active", "active"),
            ("authenticated", "incomplete"),
            ("halted", "past_due"),
            ("cancelled", "canceled"),
            ("something-new", "incomplete"),
            (None, "incomplete"),
        ],
    )
    def test_status(self, provider_status, local):
        assert map_provider_status(provider_status) == local

    def test_plan_to_tier(self):
        assert tier_for_plan("plan_pro_test") == "pro"
        assert tier_for_plan("plan_enterprise_test") == "enterprise"
        assert tier_for_plan("plan_unknown") == "free"
        assert tier_for_plan(None) == "free"


class TestWebhookEndpoint:
    async def test_missing_signature(self, client):
        response = await _post(client, {"event": "x"}, signature="")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_invalid_signature(self, client):
        response = await _post(client, {"event": "x"}, signature="0" * 64)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid webhook signature"

    async def test_secret_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "RAZORPAY_WEBHOOK_SECRET", "")

        response = await _post(client, {"event": "x"}, signature="abc")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"

    async def test_body_must_be_json(self, client):
        body = b"not json"
        response = await client.post(
            WEBHOOK_URL,
            content=body,
            headers={"X-Razorpay-Signature": compute_signature(body, settings.RAZORPAY_WEBHOOK_SECRET)},
        )
        assert response.status_code == 400

    async def test_unknown_event_is_acknowledged(self, client):
        response = await _post(client, {"event": "invoice.paid"})

        assert response.status_code == 200
        assert response.json() == {"status": "success", "handled": False}

    async def test_webhooks_are_not_metered(self, client):
        response = await _post(client, {"event": "invoice.paid"})

        assert "X-RateLimit-Limit" not in response.headers


class TestSubscriptionLifecycle:
    async def test_activation_for_new_customer_creates_default_key(
        self, client, session_factory, user,
    ):
        event = _subscription_event(
            "subscription.activated", "sub_new", user.id,
            plan_id="plan_pro_test", customer_id="cust_1",
            current_start=1_790_000_000, current_end=1_792_592_000,
        )

        response = await _post(client, event)

        assert response.json() == {"status": "success", "handled": True}
        subscription = (await _subscriptions_of(session_factory, user.id))["sub_new"]
        assert (subscription.tier, subscription.status) == ("pro", "active")
        assert subscription.provider_customer_id == "cust_1"
        assert subscription.current_period_end is not None

        keys = await _keys_of(session_factory, user.id)
        assert len(keys) == 1
        assert keys[0].subscription_id == subscription.id

    async def test_upgrade_retires_free_plan_and_keeps_keys(
        self, client, session_factory, user, free_key,
    ):
        assert (await client.get("/api/v1/workouts", headers=bearer(free_key.raw_key))).headers[
            "X-RateLimit-Limit"
        ] == "10"

        event = _subscription_event(
            "subscription.activated", "sub_pro", user.id, plan_id="plan_pro_test",
        )
        await _post(client, event)

        subscriptions = await _subscriptions_of(session_factory, user.id)
        assert subscriptions[None].status == "canceled"
        assert subscriptions["sub_pro"].status == "active"

        keys = await _keys_of(session_factory, user.id)
        assert [k.id for k in keys] == [free_key.id]
        assert keys[0].subscription_id == subscriptions["sub_pro"].id

        response = await client.get("/api/v1/workouts", headers=bearer(free_key.raw_key))
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "100"

    async def test_activation_without_user_note_is_ignored(self, client, session_factory, user):
        await _post(client, _subscription_event("subscription.activated", "sub_orphan"))

        assert await _subscriptions_of(session_factory, user.id) == {}

    async def test_activation_without_subscription_id_touches_nothing(
        self, client, session_factory, subscriptions, user,
    ):
        free, _ = await subscriptions.create_free_subscription(user.id)
        event = _subscription_event(
            "subscription.activated", None, uuid.uuid4(), plan_id="plan_pro_test",
        )
        del event["payload"]["subscription"]["entity"]["id"]

        response = await _post(client, event)

        assert response.status_code == 200
        rows = await _subscriptions_of(session_factory, user.id)
        assert list(rows) == [None]
        assert (rows[None].id, rows[None].tier, rows[None].status) == (free.id, "free", "active")

    async def test_repeated_activation_is_idempotent(self, client, session_factory, user):
        event = _subscription_event(
            "subscription.activated", "sub_twice", user.id, plan_id="plan_enterprise_test",
        )
        await _post(client, event)
        await _post(client, event)

        assert list(await _subscriptions_of(session_factory, user.id)) == ["sub_twice"]
        assert len(await _keys_of(session_factory, user.id)) == 1

    async def test_cancel_deactivates_keys(self, client, session_factory, user):
        await _post(client, _subscription_event("subscription.activated", "sub_c", user.id))
        assert len(await _keys_of(session_factory, user.id)) == 1

        await _post(client, _subscription_event("subscription.cancelled", "sub_c", status="cancelled"))

        assert (await _subscriptions_of(session_factory, user.id))["sub_c"].status == "canceled"
        [key] = await _keys_of(session_factory, user.id)
        assert key.is_active is False

    async def test_payment_failed_then_charged(self, client, session_factory, user, free_key):
        await _post(client, _subscription_event("subscription.activated", "sub_p", user.id))
        response = await client.get("/api/v1/workouts", headers=bearer(free_key.raw_key))
        assert response.status_code == 200

        await _post(client, _payment_failed("sub_p"))

        assert (await _subscriptions_of(session_factory, user.id))["sub_p"].status == "past_due"
        response = await client.get("/api/v1/workouts", headers=bearer(free_key.raw_key))
        assert response.status_code == 402

        await _post(client, _subscription_event("subscription.charged", "sub_p"))

        subscription = (await _subscriptions_of(session_factory, user.id))["sub_p"]
        assert subscription.status == "active"
        assert subscription.current_period_end is not None
        response = await client.get("/api/v1/workouts", headers=bearer(free_key.raw_key))
        assert response.status_code == 200

    async def test_pause_and_resume(self, client, session_factory, user):
        await _post(client, _subscription_event("subscription.activated", "sub_r", user.id))

        await _post(client, _subscription_event("subscription.paused", "sub_r"))
        assert (await _subscriptions_of(session_factory, user.id))["sub_r"].status == "past_due"

        await _post(client, _subscription_event("subscription.resumed", "sub_r"))
        assert (await _subscriptions_of(session_factory, user.id))["sub_r"].status == "active"

    async def test_event_for_unknown_subscription(self, client):
        response = await _post(client, _payment_failed("sub_" + uuid.uuid4().hex))

        assert response.status_code == 200
        assert response.json()["handled"] is True


class TestFreeSignup:
    async def test_create_free_subscription(self, subscriptions, api_keys, user):
        subscription, issued = await subscriptions.create_free_subscription(user.id)

        assert (subscription.tier, subscription.status) == ("free", "active")
        validation = await api_keys.validate(issued.raw_key)
        assert validation.tier == "free"
        assert (await subscriptions.get_user_subscription(user.id)).id == subscription.id
