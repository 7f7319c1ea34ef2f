"""
Entitlement Engine

Facade over the payment, subscription and credit services. The API layer,
the webhook route and the maintenance script talk to this class only.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from app.config.settings import settings
from app.domain.entitlements import Payment, Subscription, SubscriptionStatus, utcnow
from app.domain.interfaces import EntitlementStore, PaymentGatewayClient, WebhookEvent
from app.domain.schemas import (
    BookingEligibility,
    ConfirmationResult,
    CreditBalanceSummary,
    CreditDeductionResult,
    CreditEligibility,
    CreditRefundResult,
    MaintenanceReport,
    PaymentHistory,
    PurchaseResult,
    SubscriptionDetail,
    SubscriptionStats,
    TransactionHistory,
    WebhookResult,
)
from app.infrastructure.exceptions import PaymentNotFoundError
from app.services.credit_service import CreditService
from app.services.payment_service import PaymentLifecycleManager
from app.services.subscription_service import SubscriptionService
from app.services.webhook_reconciler import WebhookReconciler


logger = logging.getLogger(__name__)


class EntitlementEngine:
    """
    Entry point for every entitlement operation.

    Args:
        store: EntitlementStore implementation
        gateway: PaymentGatewayClient implementation
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        store: EntitlementStore,
        gateway: PaymentGatewayClient,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.gateway = gateway
        self.credits = CreditService(store, clock)
        self.subscriptions = SubscriptionService(store, clock)
        self.payments = PaymentLifecycleManager(
            store, gateway, self.subscriptions, self.credits, clock
        )
        self.webhooks = WebhookReconciler(store, self.payments)

    # =========================================================================
    # Payments
    # =========================================================================

    async def purchase_subscription(
        self, client_id: str, plan_id: str, payment_method_id: Optional[str] = None
    ) -> PurchaseResult:
        return await self.payments.create_for_subscription(client_id, plan_id, payment_method_id)

    async def purchase_credits(
        self, client_id: str, credit_plan_id: str, payment_method_id: Optional[str] = None
    ) -> PurchaseResult:
        return await self.payments.create_for_credits(client_id, credit_plan_id, payment_method_id)

    async def confirm_payment(self, payment_intent_id: str, client_id: str) -> ConfirmationResult:
        return await self.payments.confirm(payment_intent_id, client_id)

    async def record_refund(
        self,
        payment_intent_id: str,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> ConfirmationResult:
        """Record a refund issued outside the webhook flow (e.g. by an operator)."""
        payment = await self.payments.get_payment_by_intent(payment_intent_id)
        if payment is None:
            raise PaymentNotFoundError("Payment not found", {"payment_intent_id": payment_intent_id})
        return await self.payments.record_refund(payment, amount, reason)

    async def handle_webhook(self, payload: bytes, signature: str) -> WebhookResult:
        """Verify a raw gateway delivery and apply it."""
        event = self.gateway.parse_webhook_event(payload, signature)
        logger.info(f"Processing webhook event: {event.event_type} ({event.event_id})")
        return await self.handle_webhook_event(event)

    async def handle_webhook_event(self, event: WebhookEvent) -> WebhookResult:
        return await self.webhooks.handle_event(event)

    async def get_payment(self, payment_id: str, client_id: str) -> Payment:
        return await self.payments.get_payment(payment_id, client_id)

    async def get_payment_by_intent(self, payment_intent_id: str) -> Optional[Payment]:
        return await self.payments.get_payment_by_intent(payment_intent_id)

    async def get_client_payment_history(
        self,
        client_id: str,
        limit: int = 20,
        offset: int = 0,
        brand_id: Optional[str] = None,
    ) -> PaymentHistory:
        return await self.payments.get_client_payment_history(client_id, limit, offset, brand_id)

    async def get_brand_payment_history(
        self, brand_id: str, limit: int = 20, offset: int = 0
    ) -> PaymentHistory:
        return await self.payments.get_brand_payment_history(brand_id, limit, offset)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def cancel_subscription(
        self, subscription_id: str, client_id: str, reason: Optional[str] = None
    ) -> Subscription:
        return await self.subscriptions.cancel_subscription(subscription_id, client_id, reason)

    async def check_booking_eligibility(
        self, client_id: str, brand_id: str, class_id: Optional[str] = None
    ) -> BookingEligibility:
        return await self.subscriptions.check_booking_eligibility(client_id, brand_id, class_id)

    async def record_subscription_booking(
        self, subscription_id: str, client_id: str, class_id: Optional[str] = None
    ) -> Subscription:
        return await self.subscriptions.record_subscription_booking(
            subscription_id, client_id, class_id
        )

    async def list_client_subscriptions(
        self,
        client_id: str,
        status: Optional[SubscriptionStatus] = None,
        brand_id: Optional[str] = None,
    ) -> List[SubscriptionDetail]:
        return await self.subscriptions.list_client_subscriptions(client_id, status, brand_id)

    async def get_subscription(self, subscription_id: str, client_id: str) -> SubscriptionDetail:
        return await self.subscriptions.get_subscription(subscription_id, client_id)

    async def get_subscription_stats(
        self, subscription_id: str, client_id: Optional[str] = None
    ) -> SubscriptionStats:
        return await self.subscriptions.get_subscription_stats(subscription_id, client_id)

    # =========================================================================
    # Credits
    # =========================================================================

    async def get_credit_balance(self, client_id: str, brand_id: str) -> CreditBalanceSummary:
        return await self.credits.get_credit_balance(client_id, brand_id)

    async def list_credit_balances(self, client_id: str) -> List[CreditBalanceSummary]:
        return await self.credits.list_client_balances(client_id)

    async def get_expiring_credits(
        self, client_id: str, days: Optional[int] = None
    ) -> List[CreditBalanceSummary]:
        return await self.credits.get_expiring_credits(client_id, days)

    async def deduct_credits_for_booking(
        self,
        client_id: str,
        brand_id: str,
        amount: int = 1,
        booking_id: Optional[str] = None,
        class_id: Optional[str] = None,
    ) -> CreditDeductionResult:
        return await self.credits.deduct_credits(client_id, brand_id, amount, booking_id, class_id)

    async def refund_credits_for_booking(
        self,
        client_id: str,
        brand_id: str,
        amount: int,
        booking_id: Optional[str] = None,
    ) -> CreditRefundResult:
        return await self.credits.refund_credits(client_id, brand_id, amount, booking_id)

    async def get_transaction_history(
        self, client_id: str, brand_id: str, limit: int = 20, offset: int = 0
    ) -> TransactionHistory:
        return await self.credits.get_transaction_history(client_id, brand_id, limit, offset)

    async def validate_credit_eligibility(
        self, client_id: str, brand_id: str, class_id: str, amount: int = 1
    ) -> CreditEligibility:
        return await self.credits.validate_credit_eligibility(client_id, brand_id, class_id, amount)

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def run_maintenance(self) -> MaintenanceReport:
        """Expire lapsed credits and subscriptions, then reset due frequencies."""
        balances_cleaned, credits_expired = await self.credits.cleanup_all_expired()
        subscriptions_expired = await self.subscriptions.expire_ended_subscriptions()
        frequencies_reset = await self.subscriptions.reset_due_frequencies()

        report = MaintenanceReport(
            balances_cleaned=balances_cleaned,
            credits_expired=credits_expired,
            subscriptions_expired=subscriptions_expired,
            frequencies_reset=frequencies_reset,
        )
        logger.info(f"Maintenance run complete: {report.model_dump()}")
        return report


# =============================================================================
# Singleton
# =============================================================================

_engine_instance: Optional[EntitlementEngine] = None


def get_entitlement_engine() -> EntitlementEngine:
    """
    Get or create the engine singleton.

    Uses the Postgres store when DATABASE_URL is configured, otherwise an
    in-process store (development only).
    """
    global _engine_instance
    if _engine_instance is None:
        from app.infrastructure.payments import get_stripe_gateway

        if settings.database_url:
            from app.infrastructure.db.repositories import get_entitlement_store
            store = get_entitlement_store()
        else:
            from app.infrastructure.db.memory_store import InMemoryEntitlementStore
            logger.warning("DATABASE_URL not set; using in-memory entitlement store")
            store = InMemoryEntitlementStore()

        _engine_instance = EntitlementEngine(store, get_stripe_gateway())
    return _engine_instance
