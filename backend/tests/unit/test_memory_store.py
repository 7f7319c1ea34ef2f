"""
Unit tests for the in-process entitlement store.

The same contract the SQL store honours: detached copies, versioned
updates and uniqueness on insert.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.domain import subscription_entitlement as entitlement
from app.domain.entitlements import (
    Payment,
    PaymentStatus,
    PaymentType,
    SubscriptionPlan,
    SubscriptionStatus,
)
from app.infrastructure.db.memory_store import InMemoryEntitlementStore
from app.infrastructure.exceptions import (
    DuplicateError,
    DuplicateSubscriptionError,
    StaleWriteError,
)


NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)

PLAN = SubscriptionPlan(id="plan-1", brand_id="brand-a", name="Plan", price=4900)


def make_payment(intent_id="pi_1", **overrides):
    values = dict(
        client_id="client-1",
        brand_id="brand-a",
        type=PaymentType.SUBSCRIPTION,
        amount=4900,
        external_intent_id=intent_id,
    )
    values.update(overrides)
    return Payment(**values)


@pytest.fixture
def store():
    return InMemoryEntitlementStore()


class TestPayments:

    @pytest.mark.asyncio
    async def test_reads_return_detached_copies(self, store):
        stored = await store.insert_payment(make_payment())
        stored.status = PaymentStatus.SUCCEEDED

        reloaded = await store.get_payment(stored.id)
        assert reloaded.status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_intent_id_is_unique(self, store):
        await store.insert_payment(make_payment("pi_dup"))

        with pytest.raises(DuplicateError):
            await store.insert_payment(make_payment("pi_dup"))

    @pytest.mark.asyncio
    async def test_update_is_compare_and_swap(self, store):
        stored = await store.insert_payment(make_payment())
        first = stored.model_copy(deep=True)
        second = stored.model_copy(deep=True)

        first.status = PaymentStatus.SUCCEEDED
        updated = await store.update_payment(first, expected_version=0)
        assert updated.version == 1

        second.status = PaymentStatus.FAILED
        with pytest.raises(StaleWriteError):
            await store.update_payment(second, expected_version=0)

        assert (await store.get_payment_by_intent("pi_1")).status == PaymentStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_list_payments_pages_newest_first(self, store):
        for i in range(3):
            await store.insert_payment(
                make_payment(f"pi_{i}", created_at=NOW + timedelta(minutes=i))
            )
        await store.insert_payment(make_payment("pi_other", client_id="client-2", brand_id="brand-b"))

        page = await store.list_payments(client_id="client-1", limit=2, offset=1)
        assert [p.external_intent_id for p in page] == ["pi_1", "pi_0"]

        at_brand_b = await store.list_payments(brand_id="brand-b")
        assert [p.external_intent_id for p in at_brand_b] == ["pi_other"]


class TestSubscriptions:

    @pytest.mark.asyncio
    async def test_one_open_subscription_per_client_and_brand(self, store):
        first = entitlement.new_pending_subscription("client-1", PLAN, "pi_1", NOW)
        await store.insert_purchase(make_payment("pi_1"), first)

        second = entitlement.new_pending_subscription("client-1", PLAN, "pi_2", NOW)
        with pytest.raises(DuplicateSubscriptionError):
            await store.insert_purchase(make_payment("pi_2"), second)

        # The payment of the rejected purchase is not kept either
        assert await store.get_payment_by_intent("pi_2") is None

    @pytest.mark.asyncio
    async def test_cancelled_subscription_frees_the_slot(self, store):
        first = entitlement.new_pending_subscription("client-1", PLAN, "pi_1", NOW)
        _, stored = await store.insert_purchase(make_payment("pi_1"), first)
        entitlement.cancel(stored, "changed my mind", NOW)
        await store.update_subscription(stored, expected_version=0)

        second = entitlement.new_pending_subscription("client-1", PLAN, "pi_2", NOW + timedelta(minutes=1))
        await store.insert_purchase(make_payment("pi_2"), second)

        found = await store.find_subscription("client-1", "brand-a", [SubscriptionStatus.PENDING])
        assert found.id == second.id

    @pytest.mark.asyncio
    async def test_list_client_subscriptions_filters(self, store):
        first = entitlement.new_pending_subscription("client-1", PLAN, "pi_1", NOW)
        _, stored = await store.insert_purchase(make_payment("pi_1"), first)
        entitlement.cancel(stored, None, NOW)
        await store.update_subscription(stored, expected_version=0)
        second = entitlement.new_pending_subscription("client-1", PLAN, "pi_2", NOW + timedelta(minutes=1))
        await store.insert_purchase(make_payment("pi_2"), second)

        listed = await store.list_client_subscriptions("client-1")
        assert [s.id for s in listed] == [second.id, first.id]

        cancelled = await store.list_client_subscriptions("client-1", [SubscriptionStatus.CANCELLED])
        assert [s.id for s in cancelled] == [first.id]
        assert await store.list_client_subscriptions("client-1", brand_id="brand-b") == []
        assert await store.list_client_subscriptions("client-2") == []


class TestCreditBalances:

    @pytest.mark.asyncio
    async def test_get_or_create_returns_the_same_balance(self, store):
        first = await store.get_or_create_credit_balance("client-1", "brand-a")
        second = await store.get_or_create_credit_balance("client-1", "brand-a")

        assert first.id == second.id
        assert await store.get_credit_balance("client-1", "brand-b") is None

    @pytest.mark.asyncio
    async def test_stale_balance_write_is_rejected(self, store):
        balance = await store.get_or_create_credit_balance("client-1", "brand-a")
        balance.available_credits = 5
        await store.update_credit_balance(balance, expected_version=0)

        with pytest.raises(StaleWriteError):
            await store.update_credit_balance(balance, expected_version=0)


class TestWebhookEvents:

    @pytest.mark.asyncio
    async def test_mark_processed_once(self, store):
        assert await store.is_webhook_event_processed("evt_1") is False
        assert await store.mark_webhook_event_processed("evt_1", "payment_intent.succeeded") is True
        assert await store.mark_webhook_event_processed("evt_1", "payment_intent.succeeded") is False
        assert await store.is_webhook_event_processed("evt_1") is True
