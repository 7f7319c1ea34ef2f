"""
In-process Entitlement Store

Dictionary-backed implementation of the EntitlementStore port for local
development and tests. Same contract as the SQL store: detached copies on
read, compare-and-swap on update, uniqueness checked on insert.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from app.domain.entitlements import (
    Brand,
    Client,
    CreditBalance,
    CreditPlan,
    Payment,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    utcnow,
)
from app.infrastructure.exceptions import (
    DuplicateError,
    DuplicateSubscriptionError,
    StaleWriteError,
)

logger = logging.getLogger(__name__)

OPEN_SUBSCRIPTION_STATUSES = (SubscriptionStatus.PENDING, SubscriptionStatus.ACTIVE)


class InMemoryEntitlementStore:
    """
    EntitlementStore kept in process memory.

    A single asyncio.Lock serializes every read-modify-write inside the
    store; callers still see interleavings between their own awaits, which
    is what the engine's optimistic retries are written against.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._clients: Dict[str, Client] = {}
        self._brands: Dict[str, Brand] = {}
        self._subscription_plans: Dict[str, SubscriptionPlan] = {}
        self._credit_plans: Dict[str, CreditPlan] = {}
        self._payments: Dict[str, Payment] = {}
        self._payments_by_intent: Dict[str, str] = {}
        self._subscriptions: Dict[str, Subscription] = {}
        self._balances: Dict[str, CreditBalance] = {}
        self._balances_by_pair: Dict[Tuple[str, str], str] = {}
        self._webhook_events: Set[str] = set()

    # =========================================================================
    # Catalog seeding
    # =========================================================================

    def add_client(self, client: Client) -> None:
        self._clients[client.id] = client.model_copy(deep=True)

    def add_brand(self, brand: Brand) -> None:
        self._brands[brand.id] = brand.model_copy(deep=True)

    def add_subscription_plan(self, plan: SubscriptionPlan) -> None:
        self._subscription_plans[plan.id] = plan.model_copy(deep=True)

    def add_credit_plan(self, plan: CreditPlan) -> None:
        self._credit_plans[plan.id] = plan.model_copy(deep=True)

    # =========================================================================
    # Catalog
    # =========================================================================

    @staticmethod
    def _copy(entity):
        return entity.model_copy(deep=True) if entity is not None else None

    async def get_client(self, client_id: str) -> Optional[Client]:
        return self._copy(self._clients.get(client_id))

    async def get_brand(self, brand_id: str) -> Optional[Brand]:
        return self._copy(self._brands.get(brand_id))

    async def get_subscription_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        return self._copy(self._subscription_plans.get(plan_id))

    async def get_credit_plan(self, plan_id: str) -> Optional[CreditPlan]:
        return self._copy(self._credit_plans.get(plan_id))

    async def get_credit_plans(self, plan_ids: Iterable[str]) -> Dict[str, CreditPlan]:
        return {
            plan_id: self._copy(self._credit_plans[plan_id])
            for plan_id in set(plan_ids)
            if plan_id in self._credit_plans
        }

    # =========================================================================
    # Payments
    # =========================================================================

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        async with self._lock:
            return self._copy(self._payments.get(payment_id))

    async def get_payment_by_intent(self, intent_id: str) -> Optional[Payment]:
        async with self._lock:
            payment_id = self._payments_by_intent.get(intent_id)
            return self._copy(self._payments.get(payment_id)) if payment_id else None

    async def list_payments(
        self,
        client_id: Optional[str] = None,
        brand_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Payment]:
        async with self._lock:
            matches = [
                p for p in self._payments.values()
                if (client_id is None or p.client_id == client_id)
                and (brand_id is None or p.brand_id == brand_id)
            ]
            matches.sort(key=lambda p: p.created_at, reverse=True)
            return [self._copy(p) for p in matches[offset:offset + limit]]

    def _insert_payment_locked(self, payment: Payment) -> Payment:
        if payment.external_intent_id in self._payments_by_intent:
            raise DuplicateError(
                "Payment already tracked for this intent",
                operation="insert",
                table="payments",
            )
        stored = payment.model_copy(deep=True, update={"version": 0})
        self._payments[stored.id] = stored
        self._payments_by_intent[stored.external_intent_id] = stored.id
        return self._copy(stored)

    async def insert_payment(self, payment: Payment) -> Payment:
        async with self._lock:
            return self._insert_payment_locked(payment)

    async def insert_purchase(
        self, payment: Payment, subscription: Subscription
    ) -> Tuple[Payment, Subscription]:
        async with self._lock:
            existing = self._find_subscription_locked(
                subscription.client_id, subscription.brand_id, OPEN_SUBSCRIPTION_STATUSES
            )
            if existing:
                raise DuplicateSubscriptionError(
                    "You already have an active subscription with this brand",
                    {"subscription_id": existing.id, "status": existing.status.value},
                )
            stored_payment = self._insert_payment_locked(payment)
            stored_subscription = subscription.model_copy(deep=True, update={"version": 0})
            self._subscriptions[stored_subscription.id] = stored_subscription
            return stored_payment, self._copy(stored_subscription)

    async def update_payment(self, payment: Payment, expected_version: int) -> Payment:
        async with self._lock:
            current = self._payments.get(payment.id)
            if current is None or current.version != expected_version:
                raise StaleWriteError("Payment", payment.id, expected_version)
            stored = payment.model_copy(deep=True, update={"version": expected_version + 1})
            self._payments[stored.id] = stored
            return self._copy(stored)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        async with self._lock:
            return self._copy(self._subscriptions.get(subscription_id))

    def _find_subscription_locked(
        self,
        client_id: str,
        brand_id: str,
        statuses: Iterable[SubscriptionStatus],
    ) -> Optional[Subscription]:
        wanted = set(statuses)
        matches = [
            sub for sub in self._subscriptions.values()
            if sub.client_id == client_id and sub.brand_id == brand_id and sub.status in wanted
        ]
        if not matches:
            return None
        return max(matches, key=lambda sub: sub.created_at)

    async def find_subscription(
        self,
        client_id: str,
        brand_id: str,
        statuses: Iterable[SubscriptionStatus],
    ) -> Optional[Subscription]:
        async with self._lock:
            return self._copy(self._find_subscription_locked(client_id, brand_id, statuses))

    async def list_subscriptions(self, statuses: Iterable[SubscriptionStatus]) -> List[Subscription]:
        wanted = set(statuses)
        async with self._lock:
            return [self._copy(sub) for sub in self._subscriptions.values() if sub.status in wanted]

    async def list_client_subscriptions(
        self,
        client_id: str,
        statuses: Optional[Iterable[SubscriptionStatus]] = None,
        brand_id: Optional[str] = None,
    ) -> List[Subscription]:
        wanted = set(statuses) if statuses is not None else None
        async with self._lock:
            matches = [
                sub for sub in self._subscriptions.values()
                if sub.client_id == client_id
                and (wanted is None or sub.status in wanted)
                and (brand_id is None or sub.brand_id == brand_id)
            ]
            matches.sort(key=lambda sub: sub.created_at, reverse=True)
            return [self._copy(sub) for sub in matches]

    async def update_subscription(
        self, subscription: Subscription, expected_version: int
    ) -> Subscription:
        async with self._lock:
            current = self._subscriptions.get(subscription.id)
            if current is None or current.version != expected_version:
                raise StaleWriteError("Subscription", subscription.id, expected_version)
            stored = subscription.model_copy(deep=True, update={"version": expected_version + 1})
            self._subscriptions[stored.id] = stored
            return self._copy(stored)

    # =========================================================================
    # Credit Balances
    # =========================================================================

    async def get_credit_balance(self, client_id: str, brand_id: str) -> Optional[CreditBalance]:
        async with self._lock:
            balance_id = self._balances_by_pair.get((client_id, brand_id))
            return self._copy(self._balances.get(balance_id)) if balance_id else None

    async def get_or_create_credit_balance(self, client_id: str, brand_id: str) -> CreditBalance:
        async with self._lock:
            balance_id = self._balances_by_pair.get((client_id, brand_id))
            if balance_id is None:
                now = utcnow()
                balance = CreditBalance(
                    client_id=client_id,
                    brand_id=brand_id,
                    last_activity_date=now,
                    created_at=now,
                    updated_at=now,
                )
                self._balances[balance.id] = balance
                self._balances_by_pair[(client_id, brand_id)] = balance.id
                balance_id = balance.id
                logger.info(f"Opened credit balance {balance.id} for client {client_id} brand {brand_id}")
            return self._copy(self._balances[balance_id])

    async def list_credit_balances(self, client_id: Optional[str] = None) -> List[CreditBalance]:
        async with self._lock:
            balances = [
                b for b in self._balances.values()
                if client_id is None or b.client_id == client_id
            ]
            balances.sort(key=lambda b: b.last_activity_date, reverse=True)
            return [self._copy(b) for b in balances]

    async def update_credit_balance(
        self, balance: CreditBalance, expected_version: int
    ) -> CreditBalance:
        async with self._lock:
            current = self._balances.get(balance.id)
            if current is None or current.version != expected_version:
                raise StaleWriteError("CreditBalance", balance.id, expected_version)
            stored = balance.model_copy(deep=True, update={"version": expected_version + 1})
            self._balances[stored.id] = stored
            return self._copy(stored)

    # =========================================================================
    # Webhook Idempotency
    # =========================================================================

    async def is_webhook_event_processed(self, event_id: str) -> bool:
        async with self._lock:
            return event_id in self._webhook_events

    async def mark_webhook_event_processed(self, event_id: str, event_type: str) -> bool:
        async with self._lock:
            if event_id in self._webhook_events:
                return False
            self._webhook_events.add(event_id)
            return True
