"""
SQL Entitlement Store

PostgreSQL implementation of the EntitlementStore port. Each call runs in
its own session from get_session_context(); insert_purchase writes the
payment and its subscription in one transaction.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError as SAIntegrityError

from app.domain.entitlements import (
    Brand,
    Client,
    CreditBalance,
    CreditPlan,
    Payment,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from app.infrastructure.db.database import get_session_context
from app.infrastructure.db.repositories.catalog_repository import CatalogRepository
from app.infrastructure.db.repositories.credit_balance_repository import CreditBalanceRepository
from app.infrastructure.db.repositories.payment_repository import PaymentRepository
from app.infrastructure.db.repositories.subscription_repository import SubscriptionRepository
from app.infrastructure.exceptions import (
    DatabaseError,
    DuplicateError,
    DuplicateSubscriptionError,
)


logger = logging.getLogger(__name__)

OPEN_SUBSCRIPTION_STATUSES = (SubscriptionStatus.PENDING, SubscriptionStatus.ACTIVE)


class SqlEntitlementStore:
    """
    EntitlementStore backed by SQLModel tables.

    Uniqueness (intent id, open subscription per pair, balance per pair) is
    enforced by database constraints; version checks by conditional UPDATEs.
    """

    # =========================================================================
    # Catalog
    # =========================================================================

    async def get_client(self, client_id: str) -> Optional[Client]:
        async with get_session_context() as session:
            return await CatalogRepository(session).get_client(client_id)

    async def get_brand(self, brand_id: str) -> Optional[Brand]:
        async with get_session_context() as session:
            return await CatalogRepository(session).get_brand(brand_id)

    async def get_subscription_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        async with get_session_context() as session:
            return await CatalogRepository(session).get_subscription_plan(plan_id)

    async def get_credit_plan(self, plan_id: str) -> Optional[CreditPlan]:
        async with get_session_context() as session:
            return await CatalogRepository(session).get_credit_plan(plan_id)

    async def get_credit_plans(self, plan_ids: Iterable[str]) -> Dict[str, CreditPlan]:
        async with get_session_context() as session:
            return await CatalogRepository(session).get_credit_plans(plan_ids)

    # =========================================================================
    # Payments
    # =========================================================================

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        async with get_session_context() as session:
            return await PaymentRepository(session).get_by_id(payment_id)

    async def get_payment_by_intent(self, intent_id: str) -> Optional[Payment]:
        async with get_session_context() as session:
            return await PaymentRepository(session).get_by_intent_id(intent_id)

    async def list_payments(
        self,
        client_id: Optional[str] = None,
        brand_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Payment]:
        async with get_session_context() as session:
            return await PaymentRepository(session).list_recent(client_id, brand_id, limit, offset)

    async def insert_payment(self, payment: Payment) -> Payment:
        try:
            async with get_session_context() as session:
                return await PaymentRepository(session).add(payment)
        except SAIntegrityError as e:
            logger.warning(f"Payment for intent {payment.external_intent_id} already exists")
            raise DuplicateError(
                "Payment already tracked for this intent",
                operation="insert",
                table="payments",
                original_error=e,
            )

    async def insert_purchase(
        self, payment: Payment, subscription: Subscription
    ) -> Tuple[Payment, Subscription]:
        try:
            async with get_session_context() as session:
                subscriptions = SubscriptionRepository(session)
                existing = await subscriptions.find_for_client_brand(
                    subscription.client_id, subscription.brand_id, OPEN_SUBSCRIPTION_STATUSES
                )
                if existing:
                    raise DuplicateSubscriptionError(
                        "You already have an active subscription with this brand",
                        {"subscription_id": existing.id, "status": existing.status.value},
                    )
                stored_subscription = await subscriptions.add(subscription)
                stored_payment = await PaymentRepository(session).add(payment)
                return stored_payment, stored_subscription
        except SAIntegrityError as e:
            # Lost the race on the partial unique index or the intent id
            logger.warning(
                f"Concurrent purchase for client {subscription.client_id} "
                f"brand {subscription.brand_id} rejected: {e.orig}"
            )
            raise DuplicateSubscriptionError(
                "You already have an active subscription with this brand",
                {"client_id": subscription.client_id, "brand_id": subscription.brand_id},
            )

    async def update_payment(self, payment: Payment, expected_version: int) -> Payment:
        async with get_session_context() as session:
            return await PaymentRepository(session).compare_and_swap(payment, expected_version)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        async with get_session_context() as session:
            return await SubscriptionRepository(session).get_by_id(subscription_id)

    async def find_subscription(
        self,
        client_id: str,
        brand_id: str,
        statuses: Iterable[SubscriptionStatus],
    ) -> Optional[Subscription]:
        async with get_session_context() as session:
            return await SubscriptionRepository(session).find_for_client_brand(
                client_id, brand_id, statuses
            )

    async def list_subscriptions(self, statuses: Iterable[SubscriptionStatus]) -> List[Subscription]:
        async with get_session_context() as session:
            return await SubscriptionRepository(session).list_by_status(statuses)

    async def list_client_subscriptions(
        self,
        client_id: str,
        statuses: Optional[Iterable[SubscriptionStatus]] = None,
        brand_id: Optional[str] = None,
    ) -> List[Subscription]:
        async with get_session_context() as session:
            return await SubscriptionRepository(session).list_for_client(client_id, statuses, brand_id)

    async def update_subscription(
        self, subscription: Subscription, expected_version: int
    ) -> Subscription:
        try:
            async with get_session_context() as session:
                return await SubscriptionRepository(session).compare_and_swap(
                    subscription, expected_version
                )
        except SAIntegrityError as e:
            raise DatabaseError(
                "Subscription update violated a constraint",
                operation="update",
                table="subscriptions",
                original_error=e,
            )

    # =========================================================================
    # Credit Balances
    # =========================================================================

    async def get_credit_balance(self, client_id: str, brand_id: str) -> Optional[CreditBalance]:
        async with get_session_context() as session:
            return await CreditBalanceRepository(session).get_for_client_brand(client_id, brand_id)

    async def get_or_create_credit_balance(self, client_id: str, brand_id: str) -> CreditBalance:
        async with get_session_context() as session:
            balances = CreditBalanceRepository(session)
            existing = await balances.get_for_client_brand(client_id, brand_id)
            if existing:
                return existing
            await balances.insert_if_absent(client_id, brand_id)
            created = await balances.get_for_client_brand(client_id, brand_id)
            logger.info(f"Opened credit balance {created.id} for client {client_id} brand {brand_id}")
            return created

    async def list_credit_balances(self, client_id: Optional[str] = None) -> List[CreditBalance]:
        async with get_session_context() as session:
            return await CreditBalanceRepository(session).list_for_client(client_id)

    async def update_credit_balance(
        self, balance: CreditBalance, expected_version: int
    ) -> CreditBalance:
        async with get_session_context() as session:
            return await CreditBalanceRepository(session).compare_and_swap(balance, expected_version)

    # =========================================================================
    # Webhook Idempotency
    # =========================================================================

    async def is_webhook_event_processed(self, event_id: str) -> bool:
        """Check if a webhook event has already been processed (DB query)."""
        async with get_session_context() as session:
            result = await session.execute(
                text("SELECT 1 FROM processed_webhook_events WHERE event_id = :eid"),
                {"eid": event_id},
            )
            return result.scalar_one_or_none() is not None

    async def mark_webhook_event_processed(self, event_id: str, event_type: str) -> bool:
        """Record a processed webhook event in the database."""
        async with get_session_context() as session:
            result = await session.execute(
                text(
                    "INSERT INTO processed_webhook_events (event_id, event_type) "
                    "VALUES (:eid, :etype) ON CONFLICT (event_id) DO NOTHING"
                ),
                {"eid": event_id, "etype": event_type},
            )
            return result.rowcount == 1


# =============================================================================
# Singleton Instance
# =============================================================================

_entitlement_store_instance: Optional[SqlEntitlementStore] = None


def get_entitlement_store() -> SqlEntitlementStore:
    """Get or create SQL entitlement store singleton."""
    global _entitlement_store_instance

    if _entitlement_store_instance is None:
        _entitlement_store_instance = SqlEntitlementStore()

    return _entitlement_store_instance
