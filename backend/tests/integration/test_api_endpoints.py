"""
Integration tests for the entitlement API endpoints.

Tests the full request/response cycle against the in-memory store.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import get_current_client_id
from app.domain.interfaces import GatewayIntentStatus, IntentStatusReport

from conftest import BRAND_A, CLIENT_ID


@pytest.fixture
def authed_client(app, client):
    """Test client whose requests are authenticated as CLIENT_ID."""
    app.dependency_overrides[get_current_client_id] = lambda: CLIENT_ID
    return client


def buy_credits(client, plan_id="credits-10"):
    purchase = client.post("/api/payments/credits", json={"credit_plan_id": plan_id})
    assert purchase.status_code == 201
    intent_id = purchase.json()["payment"]["external_intent_id"]
    confirm = client.post("/api/payments/confirm", json={"payment_intent_id": intent_id})
    assert confirm.status_code == 200
    return intent_id


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, client: TestClient):
        """Root endpoint should return welcome message."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "message" in data

    def test_health_endpoint(self, client: TestClient):
        """Health endpoint should return healthy status."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"


class TestAuthentication:

    def test_purchase_requires_token(self, client: TestClient):
        response = client.post("/api/payments/subscriptions", json={"plan_id": "plan-weekly-3"})
        assert response.status_code == 401

    def test_credits_require_token(self, client: TestClient):
        response = client.get("/api/credits")
        assert response.status_code == 401


class TestPaymentEndpoints:

    def test_subscription_purchase_and_confirm(self, authed_client: TestClient):
        response = authed_client.post("/api/payments/subscriptions", json={"plan_id": "plan-weekly-3"})

        assert response.status_code == 201
        data = response.json()
        assert data["payment"]["status"] == "pending"
        assert data["subscription"]["status"] == "pending"
        assert data["client_secret"] == "pi_1_secret"

        confirm = authed_client.post("/api/payments/confirm", json={"payment_intent_id": "pi_1"})
        assert confirm.status_code == 200
        assert confirm.json()["success"] is True
        assert confirm.json()["subscription"]["status"] == "active"

    def test_duplicate_subscription_is_conflict(self, authed_client: TestClient):
        authed_client.post("/api/payments/subscriptions", json={"plan_id": "plan-weekly-3"})

        response = authed_client.post("/api/payments/subscriptions", json={"plan_id": "plan-weekly-3"})

        assert response.status_code == 409
        assert response.json()["code"] == "SUBSCRIPTION_001"

    def test_unknown_plan_is_not_found(self, authed_client: TestClient):
        response = authed_client.post("/api/payments/subscriptions", json={"plan_id": "nope"})

        assert response.status_code == 404
        assert response.json()["error"] == "PlanNotFoundError"

    def test_confirm_unknown_intent_is_not_found(self, authed_client: TestClient):
        response = authed_client.post("/api/payments/confirm", json={"payment_intent_id": "pi_404"})
        assert response.status_code == 404

    def test_confirm_requires_intent_id(self, authed_client: TestClient):
        response = authed_client.post("/api/payments/confirm", json={})
        assert response.status_code == 422

    def test_unconfigured_brand_is_rejected(self, authed_client: TestClient):
        response = authed_client.post("/api/payments/subscriptions", json={"plan_id": "plan-unconfigured"})

        assert response.status_code == 400
        assert response.json()["code"] == "STRIPE_001"

    def test_declined_payment_reports_failure(self, authed_client: TestClient, gateway):
        authed_client.post("/api/payments/subscriptions", json={"plan_id": "plan-weekly-3"})
        gateway.get_intent_status.return_value = IntentStatusReport(
            GatewayIntentStatus.FAILED, failure_reason="Insufficient funds"
        )

        response = authed_client.post("/api/payments/confirm", json={"payment_intent_id": "pi_1"})

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["payment"]["status"] == "failed"
        assert response.json()["subscription"]["status"] == "cancelled"


class TestSubscriptionEndpoints:

    def _active_subscription(self, client):
        purchase = client.post("/api/payments/subscriptions", json={"plan_id": "plan-weekly-3"})
        client.post("/api/payments/confirm", json={"payment_intent_id": "pi_1"})
        return purchase.json()["subscription"]["id"]

    def test_eligibility_without_subscription(self, authed_client: TestClient):
        response = authed_client.get("/api/subscriptions/eligibility", params={"brand_id": BRAND_A})

        assert response.status_code == 200
        assert response.json()["eligible"] is False
        assert response.json()["reasons"] == ["No active subscription found with this brand"]

    def test_bookings_count_against_frequency(self, authed_client: TestClient):
        subscription_id = self._active_subscription(authed_client)

        for _ in range(3):
            booked = authed_client.post(
                f"/api/subscriptions/{subscription_id}/bookings", json={"class_id": "yoga"}
            )
            assert booked.status_code == 200

        eligibility = authed_client.get(
            "/api/subscriptions/eligibility", params={"brand_id": BRAND_A, "class_id": "yoga"}
        )
        assert eligibility.json()["eligible"] is False
        assert eligibility.json()["remaining_frequency"] == 0

        refused = authed_client.post(
            f"/api/subscriptions/{subscription_id}/bookings", json={"class_id": "yoga"}
        )
        assert refused.status_code == 400
        assert refused.json()["details"]["reasons"] == ["Frequency limit reached for current period"]

    def test_cancel_subscription(self, authed_client: TestClient):
        subscription_id = self._active_subscription(authed_client)

        response = authed_client.post(
            f"/api/subscriptions/{subscription_id}/cancel", json={"reason": "Moving away"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancellation_reason"] == "Moving away"


class TestCreditEndpoints:

    def test_balance_and_deduction(self, authed_client: TestClient):
        buy_credits(authed_client)

        balance = authed_client.get(f"/api/credits/{BRAND_A}")
        assert balance.status_code == 200
        assert balance.json()["available_credits"] == 10

        deducted = authed_client.post(
            "/api/credits/deduct", json={"brand_id": BRAND_A, "amount": 2, "booking_id": "b-1"}
        )
        assert deducted.status_code == 200
        assert deducted.json()["remaining_credits"] == 8

        refunded = authed_client.post(
            "/api/credits/refund", json={"brand_id": BRAND_A, "amount": 1, "booking_id": "b-1"}
        )
        assert refunded.json()["available_credits"] == 9

        history = authed_client.get(f"/api/credits/{BRAND_A}/transactions", params={"limit": 2})
        assert history.json()["total"] == 3
        assert len(history.json()["transactions"]) == 2

    def test_insufficient_credits(self, authed_client: TestClient):
        buy_credits(authed_client, "credits-5")

        response = authed_client.post("/api/credits/deduct", json={"brand_id": BRAND_A, "amount": 6})

        assert response.status_code == 400
        assert response.json()["code"] == "CREDIT_002"
        assert response.json()["details"] == {"requested": 6, "available": 5}

    def test_deduct_validates_amount(self, authed_client: TestClient):
        response = authed_client.post("/api/credits/deduct", json={"brand_id": BRAND_A, "amount": 0})
        assert response.status_code == 422

    def test_unknown_balance_is_not_found(self, authed_client: TestClient):
        response = authed_client.get("/api/credits/brand-b")
        assert response.status_code == 404

    def test_list_and_expiring(self, authed_client: TestClient):
        buy_credits(authed_client)

        balances = authed_client.get("/api/credits")
        assert [b["brand_id"] for b in balances.json()] == [BRAND_A]

        # 30-day package is outside the default warning window
        assert authed_client.get("/api/credits/expiring").json() == []
        expiring = authed_client.get("/api/credits/expiring", params={"days": 30})
        assert len(expiring.json()) == 1

    def test_class_eligibility(self, authed_client: TestClient):
        buy_credits(authed_client, "credits-yoga")

        yoga = authed_client.get(f"/api/credits/{BRAND_A}/eligibility", params={"class_id": "yoga"})
        spin = authed_client.get(f"/api/credits/{BRAND_A}/eligibility", params={"class_id": "spin"})

        assert yoga.json()["eligible"] is True
        assert spin.json()["eligible"] is False
        assert spin.json()["available_credits"] == 0


class TestPaymentHistoryEndpoints:

    def test_history_lists_own_payments(self, authed_client: TestClient, clock):
        buy_credits(authed_client)
        clock.advance(minutes=1)
        authed_client.post("/api/payments/subscriptions", json={"plan_id": "plan-weekly-3"})

        response = authed_client.get("/api/payments/history", params={"limit": 1})

        assert response.status_code == 200
        data = response.json()
        assert [p["external_intent_id"] for p in data["payments"]] == ["pi_2"]
        assert data["has_more"] is True

        rest = authed_client.get("/api/payments/history", params={"limit": 1, "offset": 1})
        assert [p["external_intent_id"] for p in rest.json()["payments"]] == ["pi_1"]
        assert rest.json()["has_more"] is False

    def test_get_payment_by_id(self, authed_client: TestClient):
        purchase = authed_client.post("/api/payments/subscriptions", json={"plan_id": "plan-weekly-3"})
        payment_id = purchase.json()["payment"]["id"]

        response = authed_client.get(f"/api/payments/{payment_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"

    def test_unknown_payment_is_not_found(self, authed_client: TestClient):
        response = authed_client.get("/api/payments/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "PaymentNotFoundError"


class TestSubscriptionReadEndpoints:

    def test_list_and_get_subscription(self, authed_client: TestClient):
        purchase = authed_client.post("/api/payments/subscriptions", json={"plan_id": "plan-weekly-3"})
        subscription_id = purchase.json()["subscription"]["id"]
        authed_client.post("/api/payments/confirm", json={"payment_intent_id": "pi_1"})

        listed = authed_client.get("/api/subscriptions")
        assert listed.status_code == 200
        assert [s["subscription"]["id"] for s in listed.json()] == [subscription_id]
        assert authed_client.get("/api/subscriptions", params={"status": "cancelled"}).json() == []

        detail = authed_client.get(f"/api/subscriptions/{subscription_id}")
        assert detail.status_code == 200
        assert detail.json()["remaining_frequency"] == 3
        assert detail.json()["is_valid_for_booking"] is True

    def test_stats_after_a_booking(self, authed_client: TestClient):
        purchase = authed_client.post("/api/payments/subscriptions", json={"plan_id": "plan-weekly-3"})
        subscription_id = purchase.json()["subscription"]["id"]
        authed_client.post("/api/payments/confirm", json={"payment_intent_id": "pi_1"})
        authed_client.post(f"/api/subscriptions/{subscription_id}/bookings", json={"class_id": "yoga"})

        stats = authed_client.get(f"/api/subscriptions/{subscription_id}/stats")

        assert stats.status_code == 200
        assert stats.json()["current_period_bookings"] == 1
        assert stats.json()["remaining_frequency"] == 2
        assert stats.json()["utilization_rate"] == 33.33

    def test_unknown_subscription_is_not_found(self, authed_client: TestClient):
        response = authed_client.get("/api/subscriptions/missing")
        assert response.status_code == 404


class TestUnhandledErrors:

    def test_unexpected_failure_returns_generic_body(self, app, engine, monkeypatch):
        app.dependency_overrides[get_current_client_id] = lambda: CLIENT_ID
        monkeypatch.setattr(
            engine, "list_credit_balances", AsyncMock(side_effect=RuntimeError("pool exhausted"))
        )
        client = TestClient(app, raise_server_exceptions=False)

        response = client.get("/api/credits")

        assert response.status_code == 500
        assert response.json() == {
            "error": "InternalServerError",
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "details": {},
        }
        assert "pool exhausted" not in response.text
