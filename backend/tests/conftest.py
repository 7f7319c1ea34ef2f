"""
Test configuration and fixtures for the Entitlement Engine.

Provides shared fixtures for unit and integration tests: an in-memory
store seeded with a small catalog, a mocked payment gateway and a clock
tests can move forward.
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import MagicMock, AsyncMock

from fastapi.testclient import TestClient

from app.domain.entitlements import (
    Brand,
    Client,
    CreditPlan,
    FrequencyLimit,
    FrequencyPeriod,
    RecordStatus,
    SubscriptionPlan,
)
from app.domain.interfaces import (
    AccountStatus,
    GatewayIntentStatus,
    IntentHandle,
    IntentStatusReport,
)
from app.infrastructure.db.memory_store import InMemoryEntitlementStore
from app.services.engine import EntitlementEngine


# Wednesday
START = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)

CLIENT_ID = "client-1"
OTHER_CLIENT_ID = "client-2"
INACTIVE_CLIENT_ID = "client-inactive"
BRAND_A = "brand-a"
BRAND_B = "brand-b"
BRAND_UNCONFIGURED = "brand-unconfigured"


class FrozenClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


# =============================================================================
# Engine Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def store():
    """In-memory store seeded with clients, brands and plans."""
    store = InMemoryEntitlementStore()

    store.add_client(Client(id=CLIENT_ID, email="ana@example.com"))
    store.add_client(Client(id=OTHER_CLIENT_ID, email="ben@example.com"))
    store.add_client(Client(id=INACTIVE_CLIENT_ID, status=RecordStatus.INACTIVE))

    store.add_brand(Brand(
        id=BRAND_A, name="Flow Studio",
        gateway_account_id="acct_a", gateway_onboarding_complete=True,
    ))
    store.add_brand(Brand(
        id=BRAND_B, name="Spin City",
        gateway_account_id="acct_b", gateway_onboarding_complete=True,
    ))
    store.add_brand(Brand(id=BRAND_UNCONFIGURED, name="New Studio"))

    store.add_subscription_plan(SubscriptionPlan(
        id="plan-weekly-3",
        brand_id=BRAND_A,
        name="3 classes a week",
        price=4900,
        included_class_ids=["yoga", "pilates"],
        frequency_limit=FrequencyLimit(count=3, period=FrequencyPeriod.WEEK, reset_day=1),
    ))
    store.add_subscription_plan(SubscriptionPlan(
        id="plan-unlimited-b",
        brand_id=BRAND_B,
        name="Unlimited",
        price=9900,
    ))
    store.add_subscription_plan(SubscriptionPlan(
        id="plan-retired",
        brand_id=BRAND_A,
        name="Legacy",
        price=2900,
        status=RecordStatus.INACTIVE,
    ))
    store.add_subscription_plan(SubscriptionPlan(
        id="plan-unconfigured",
        brand_id=BRAND_UNCONFIGURED,
        name="Intro",
        price=1900,
    ))

    store.add_credit_plan(CreditPlan(
        id="credits-10",
        brand_id=BRAND_A,
        name="10 Pack",
        price=12000,
        credit_amount=10,
        validity_period_days=30,
    ))
    store.add_credit_plan(CreditPlan(
        id="credits-5",
        brand_id=BRAND_A,
        name="5 Pack",
        price=6500,
        credit_amount=4,
        bonus_credits=1,
        validity_period_days=60,
    ))
    store.add_credit_plan(CreditPlan(
        id="credits-yoga",
        brand_id=BRAND_A,
        name="Yoga Only",
        price=5000,
        credit_amount=5,
        validity_period_days=30,
        included_class_ids=["yoga"],
    ))
    return store


@pytest.fixture
def gateway():
    """Mocked PaymentGatewayClient; every intent gets a fresh id."""
    counter = itertools.count(1)

    async def create_intent(**kwargs):
        number = next(counter)
        return IntentHandle(intent_id=f"pi_{number}", client_secret=f"pi_{number}_secret")

    mock = MagicMock()
    mock.create_intent = AsyncMock(side_effect=create_intent)
    mock.get_account_status = AsyncMock(
        return_value=AccountStatus(charges_enabled=True, onboarding_complete=True)
    )
    mock.get_intent_status = AsyncMock(
        return_value=IntentStatusReport(GatewayIntentStatus.SUCCEEDED)
    )
    mock.parse_webhook_event = MagicMock()
    return mock


@pytest.fixture
def engine(store, gateway, clock):
    return EntitlementEngine(store, gateway, clock)


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app(engine):
    """FastAPI application wired to the test engine."""
    from app.main import app
    from app.api.dependencies import get_engine

    app.dependency_overrides[get_engine] = lambda: engine
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Get synchronous test client."""
    return TestClient(app)
