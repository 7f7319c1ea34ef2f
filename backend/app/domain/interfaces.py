"""
Entitlement Engine Interfaces

Ports consumed by the engine: the payment gateway and the entitlement
store. Services depend on these protocols only; Stripe and SQL adapters
live under app.infrastructure.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

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


# =============================================================================
# Gateway data
# =============================================================================

class GatewayIntentStatus(Enum):
    """Gateway intent states, normalized across providers."""
    PENDING = "pending"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass
class IntentHandle:
    """A freshly created payment intent."""
    intent_id: str
    client_secret: Optional[str] = None


@dataclass
class IntentStatusReport:
    status: GatewayIntentStatus
    failure_reason: Optional[str] = None


@dataclass
class AccountStatus:
    """Capability of a brand's connected gateway account."""
    charges_enabled: bool
    onboarding_complete: bool
    action_url: Optional[str] = None


@dataclass
class WebhookEvent:
    """
    Verified gateway notification.

    event_type keeps the gateway's own name (e.g. payment_intent.succeeded);
    intent_id is None for events that do not concern a payment intent.
    """
    event_id: str
    event_type: str
    intent_id: Optional[str] = None
    failure_reason: Optional[str] = None
    amount_refunded: Optional[int] = None


# =============================================================================
# Ports
# =============================================================================

@runtime_checkable
class PaymentGatewayClient(Protocol):
    """
    Payment gateway port.

    Implementations bound every call with a timeout and raise
    ExternalGatewayError / GatewayTimeoutError on failure. Intent creation
    must honour the idempotency key.
    """

    async def create_intent(
        self,
        amount: int,
        currency: str,
        destination_account_id: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
        payment_method_id: Optional[str] = None,
    ) -> IntentHandle:
        ...

    async def get_intent_status(self, intent_id: str) -> IntentStatusReport:
        ...

    async def get_account_status(self, connected_account_id: str) -> AccountStatus:
        ...

    def parse_webhook_event(self, payload: bytes, signature: str) -> WebhookEvent:
        """Verify the signature and normalize the event; raises WebhookSignatureError."""
        ...


@runtime_checkable
class EntitlementStore(Protocol):
    """
    Entitlement storage port.

    Reads return detached copies. Every update_* call is a compare-and-swap:
    it succeeds only when the stored version equals expected_version,
    persists the entity with version expected_version + 1 and returns the
    stored copy; otherwise it raises StaleWriteError.
    """

    # Catalog (read-only)
    async def get_client(self, client_id: str) -> Optional[Client]: ...

    async def get_brand(self, brand_id: str) -> Optional[Brand]: ...

    async def get_subscription_plan(self, plan_id: str) -> Optional[SubscriptionPlan]: ...

    async def get_credit_plan(self, plan_id: str) -> Optional[CreditPlan]: ...

    async def get_credit_plans(self, plan_ids: Iterable[str]) -> Dict[str, CreditPlan]: ...

    # Payments
    async def get_payment(self, payment_id: str) -> Optional[Payment]: ...

    async def get_payment_by_intent(self, intent_id: str) -> Optional[Payment]: ...

    async def list_payments(
        self,
        client_id: Optional[str] = None,
        brand_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Payment]:
        """Payments matching the filters, newest first."""
        ...

    async def insert_payment(self, payment: Payment) -> Payment:
        """Raises DuplicateError when the intent id is already tracked."""
        ...

    async def insert_purchase(
        self, payment: Payment, subscription: Subscription
    ) -> Tuple[Payment, Subscription]:
        """
        Persist a pending payment with its provisional subscription atomically.

        Raises DuplicateSubscriptionError when the client already holds an
        open (pending or active) subscription with the brand.
        """
        ...

    async def update_payment(self, payment: Payment, expected_version: int) -> Payment: ...

    # Subscriptions
    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]: ...

    async def find_subscription(
        self,
        client_id: str,
        brand_id: str,
        statuses: Iterable[SubscriptionStatus],
    ) -> Optional[Subscription]: ...

    async def list_subscriptions(self, statuses: Iterable[SubscriptionStatus]) -> List[Subscription]: ...

    async def list_client_subscriptions(
        self,
        client_id: str,
        statuses: Optional[Iterable[SubscriptionStatus]] = None,
        brand_id: Optional[str] = None,
    ) -> List[Subscription]:
        """A client's subscriptions, newest first."""
        ...

    async def update_subscription(
        self, subscription: Subscription, expected_version: int
    ) -> Subscription: ...

    # Credit balances
    async def get_credit_balance(self, client_id: str, brand_id: str) -> Optional[CreditBalance]: ...

    async def get_or_create_credit_balance(self, client_id: str, brand_id: str) -> CreditBalance: ...

    async def list_credit_balances(self, client_id: Optional[str] = None) -> List[CreditBalance]: ...

    async def update_credit_balance(
        self, balance: CreditBalance, expected_version: int
    ) -> CreditBalance: ...

    # Webhook idempotency
    async def is_webhook_event_processed(self, event_id: str) -> bool: ...

    async def mark_webhook_event_processed(self, event_id: str, event_type: str) -> bool:
        """Returns False when the event id was already recorded."""
        ...
