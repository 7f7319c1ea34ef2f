"""
Integration Tests for Webhooks (Stripe)

Verifies:
- Signature verification failure (400)
- Successful event processing
- Idempotency (prevent double processing)
- Out-of-order and unknown deliveries
"""

import pytest

from app.domain.entitlements import PaymentStatus, SubscriptionStatus
from app.domain.interfaces import WebhookEvent
from app.infrastructure.exceptions import WebhookSignatureError

from conftest import CLIENT_ID


async def start_purchase(engine):
    return await engine.purchase_subscription(CLIENT_ID, "plan-weekly-3")


def post_webhook(client, signature="t=1,v1=valid"):
    return client.post(
        "/api/webhooks/stripe",
        content=b'{"id": "evt"}',
        headers={"stripe-signature": signature},
    )


class TestStripeWebhooks:

    @pytest.fixture
    def deliver(self, client, gateway):
        """Send an event through the route as if Stripe had signed it."""
        def _deliver(event_id, event_type, intent_id="pi_1", **extra):
            gateway.parse_webhook_event.return_value = WebhookEvent(
                event_id=event_id,
                event_type=event_type,
                intent_id=intent_id,
                **extra,
            )
            return post_webhook(client)
        return _deliver

    def test_webhook_missing_signature(self, client):
        """Webhook without signature header should fail 400."""
        response = client.post("/api/webhooks/stripe", json={"id": "evt_123"})
        assert response.status_code == 400
        assert "Missing Stripe signature" in response.json()["detail"]

    def test_webhook_invalid_signature(self, client, gateway):
        """Webhook with invalid signature should fail 400."""
        gateway.parse_webhook_event.side_effect = WebhookSignatureError("Invalid signature: bad")

        response = post_webhook(client, signature="invalid_sig")

        assert response.status_code == 400
        assert "Invalid signature" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_webhook_success_activates_subscription(self, deliver, store, engine):
        pending_subscription = await start_purchase(engine)
        response = deliver("evt_ok", "payment_intent.succeeded")

        assert response.status_code == 200
        assert response.json()["status"] == "processed"
        assert response.json()["payment_status"] == "succeeded"

        subscription = await store.get_subscription(pending_subscription.subscription.id)
        assert subscription.status == SubscriptionStatus.ACTIVE
        payment = await store.get_payment_by_intent("pi_1")
        assert [e.event_id for e in payment.gateway_events] == ["evt_ok"]

    @pytest.mark.asyncio
    async def test_webhook_idempotency(self, deliver, store, engine):
        """Same event delivered twice is applied once."""
        pending_subscription = await start_purchase(engine)
        deliver("evt_dup", "payment_intent.succeeded")
        response = deliver("evt_dup", "payment_intent.succeeded")

        assert response.status_code == 200
        assert response.json()["status"] == "already_processed"
        subscription = await store.get_subscription(pending_subscription.subscription.id)
        assert subscription.version == 1

    @pytest.mark.asyncio
    async def test_failure_after_success_is_a_no_op(self, deliver, store, engine):
        """A late payment_failed cannot undo a succeeded payment."""
        pending_subscription = await start_purchase(engine)
        deliver("evt_ok", "payment_intent.succeeded")
        response = deliver("evt_late", "payment_intent.payment_failed", failure_reason="Card declined")

        assert response.json()["status"] == "already_processed"
        assert response.json()["payment_status"] == "succeeded"
        payment = await store.get_payment_by_intent("pi_1")
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.failure_reason is None

    @pytest.mark.asyncio
    async def test_payment_failed_cancels_pending_subscription(self, deliver, store, engine):
        pending_subscription = await start_purchase(engine)
        response = deliver("evt_fail", "payment_intent.payment_failed", failure_reason="Card declined")

        assert response.json()["payment_status"] == "failed"
        subscription = await store.get_subscription(pending_subscription.subscription.id)
        assert subscription.status == SubscriptionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_charge_refunded(self, deliver, store, engine):
        pending_subscription = await start_purchase(engine)
        deliver("evt_ok", "payment_intent.succeeded")
        response = deliver("evt_refund", "charge.refunded", amount_refunded=4900)

        assert response.json()["payment_status"] == "refunded"
        payment = await store.get_payment_by_intent("pi_1")
        assert payment.refunded_amount == 4900
        # Entitlements already granted stay in place
        subscription = await store.get_subscription(pending_subscription.subscription.id)
        assert subscription.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_intent_is_acknowledged(self, deliver, store):
        response = deliver("evt_stranger", "payment_intent.succeeded", intent_id="pi_unknown")

        assert response.status_code == 200
        assert response.json()["status"] == "unknown_target"
        assert await store.is_webhook_event_processed("evt_stranger")

    def test_unhandled_event_type_is_ignored(self, deliver):
        response = deliver("evt_other", "customer.created", intent_id=None)

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
