"""
Payment Lifecycle Manager

Creates gateway payment intents together with their provisional
entitlements, and drives each Payment through its state machine.

Terminal transitions are claimed with a compare-and-swap on the payment's
version. Confirm calls and webhook deliveries race freely; exactly one of
them performs a transition and the others observe AlreadyProcessedError,
which is turned into a no-op result here.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from app.domain import subscription_entitlement as entitlement
from app.domain.entitlements import (
    Brand,
    Client,
    Payment,
    PaymentStatus,
    PaymentType,
    RecordStatus,
    SubscriptionStatus,
    new_id,
    utcnow,
)
from app.domain.interfaces import (
    EntitlementStore,
    GatewayIntentStatus,
    PaymentGatewayClient,
    WebhookEvent,
)
from app.domain.payment_state import SUCCESS_STATUSES, assert_transition, can_transition, is_terminal
from app.domain.schemas import ConfirmationResult, PaymentHistory, PurchaseResult
from app.infrastructure.exceptions import (
    AlreadyProcessedError,
    BrandNotFoundError,
    ClientNotFoundError,
    DuplicateSubscriptionError,
    GatewayCapabilityError,
    GatewayNotEnabledError,
    InactiveClientError,
    InactivePlanError,
    PaymentNotFoundError,
    PlanNotFoundError,
)
from app.services.concurrency import retry_on_conflict
from app.services.credit_service import CreditService
from app.services.subscription_service import SubscriptionService


logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASON = "Payment failed"
CANCELED_REASON = "Payment canceled"
OPEN_SUBSCRIPTION_STATUSES = (SubscriptionStatus.PENDING, SubscriptionStatus.ACTIVE)


class PaymentLifecycleManager:
    """
    Payment creation, confirmation and finalization.

    Args:
        store: EntitlementStore implementation
        gateway: PaymentGatewayClient implementation
        subscriptions: Applies subscription side effects
        credits: Applies credit side effects
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        store: EntitlementStore,
        gateway: PaymentGatewayClient,
        subscriptions: SubscriptionService,
        credits: CreditService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._gateway = gateway
        self._subscriptions = subscriptions
        self._credits = credits
        self._clock = clock

    # =========================================================================
    # Purchase validation
    # =========================================================================

    async def _require_active_client(self, client_id: str) -> Client:
        client = await self._store.get_client(client_id)
        if client is None:
            raise ClientNotFoundError("Client not found", {"client_id": client_id})
        if not client.is_active:
            raise InactiveClientError("Client account is not active", {"client_id": client_id})
        return client

    async def _require_payable_brand(self, brand_id: str) -> Brand:
        """Brand must have finished gateway onboarding and be able to take charges."""
        brand = await self._store.get_brand(brand_id)
        if brand is None:
            raise BrandNotFoundError("Brand not found", {"brand_id": brand_id})
        if not brand.is_gateway_configured:
            raise GatewayNotEnabledError(
                "Brand has not completed payment setup",
                {"brand_id": brand_id},
            )

        account = await self._gateway.get_account_status(brand.gateway_account_id)
        if not account.charges_enabled:
            raise GatewayCapabilityError(
                "Brand cannot process payments at this time",
                {"brand_id": brand_id, "action_url": account.action_url},
            )
        return brand

    # =========================================================================
    # Purchases
    # =========================================================================

    async def create_for_subscription(
        self,
        client_id: str,
        plan_id: str,
        payment_method_id: Optional[str] = None,
    ) -> PurchaseResult:
        """
        Start a subscription purchase.

        Nothing is persisted until the gateway has returned an intent; the
        payment and its pending subscription are then written atomically.
        """
        await self._require_active_client(client_id)

        plan = await self._store.get_subscription_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError("Subscription plan not found", {"plan_id": plan_id})
        if plan.status != RecordStatus.ACTIVE:
            raise InactivePlanError("Subscription plan is not active", {"plan_id": plan_id})

        brand = await self._require_payable_brand(plan.brand_id)

        existing = await self._store.find_subscription(
            client_id, brand.id, list(OPEN_SUBSCRIPTION_STATUSES)
        )
        if existing:
            raise DuplicateSubscriptionError(
                "You already have an active subscription with this brand",
                {"subscription_id": existing.id, "status": existing.status.value},
            )

        now = self._clock()
        subscription = entitlement.new_pending_subscription(client_id, plan, payment_intent_id="", now=now)
        handle = await self._gateway.create_intent(
            amount=plan.price,
            currency=plan.currency,
            destination_account_id=brand.gateway_account_id,
            metadata={
                "type": PaymentType.SUBSCRIPTION.value,
                "client_id": client_id,
                "brand_id": brand.id,
                "subscription_plan_id": plan.id,
                "subscription_id": subscription.id,
            },
            idempotency_key=f"subscription-{subscription.id}",
            payment_method_id=payment_method_id,
        )
        subscription.payment_intent_id = handle.intent_id

        payment = Payment(
            client_id=client_id,
            brand_id=brand.id,
            type=PaymentType.SUBSCRIPTION,
            amount=plan.price,
            currency=plan.currency,
            external_intent_id=handle.intent_id,
            related_entitlement_id=subscription.id,
            plan_id=plan.id,
            payment_method_id=payment_method_id,
            metadata={"subscription_plan_id": plan.id, "client_id": client_id, "brand_id": brand.id},
            created_at=now,
            updated_at=now,
        )

        try:
            payment, subscription = await self._store.insert_purchase(payment, subscription)
        except DuplicateSubscriptionError:
            logger.warning(
                f"Intent {handle.intent_id} left untracked: client {client_id} "
                f"opened another subscription with brand {brand.id} concurrently"
            )
            raise

        logger.info(
            f"Created subscription purchase {payment.id} (intent {handle.intent_id}) "
            f"for client {client_id}, plan {plan.id}"
        )
        return PurchaseResult(
            payment=payment,
            client_secret=handle.client_secret,
            subscription=subscription,
        )

    async def create_for_credits(
        self,
        client_id: str,
        credit_plan_id: str,
        payment_method_id: Optional[str] = None,
    ) -> PurchaseResult:
        """Start a credit purchase. The balance is credited only on success."""
        await self._require_active_client(client_id)

        plan = await self._store.get_credit_plan(credit_plan_id)
        if plan is None:
            raise PlanNotFoundError("Credit plan not found", {"plan_id": credit_plan_id})
        if plan.status != RecordStatus.ACTIVE:
            raise InactivePlanError("Credit plan is not active", {"plan_id": credit_plan_id})

        brand = await self._require_payable_brand(plan.brand_id)

        now = self._clock()
        purchase_reference = new_id()
        handle = await self._gateway.create_intent(
            amount=plan.price,
            currency=plan.currency,
            destination_account_id=brand.gateway_account_id,
            metadata={
                "type": PaymentType.CREDIT_PURCHASE.value,
                "client_id": client_id,
                "brand_id": brand.id,
                "credit_plan_id": plan.id,
                "payment_id": purchase_reference,
            },
            idempotency_key=f"credits-{purchase_reference}",
            payment_method_id=payment_method_id,
        )

        balance = await self._store.get_or_create_credit_balance(client_id, brand.id)
        payment = await self._store.insert_payment(
            Payment(
                id=purchase_reference,
                client_id=client_id,
                brand_id=brand.id,
                type=PaymentType.CREDIT_PURCHASE,
                amount=plan.price,
                currency=plan.currency,
                external_intent_id=handle.intent_id,
                related_entitlement_id=balance.id,
                plan_id=plan.id,
                payment_method_id=payment_method_id,
                metadata={"credit_plan_id": plan.id, "client_id": client_id, "brand_id": brand.id},
                created_at=now,
                updated_at=now,
            )
        )

        logger.info(
            f"Created credit purchase {payment.id} (intent {handle.intent_id}) "
            f"for client {client_id}, plan {plan.id}"
        )
        return PurchaseResult(
            payment=payment,
            client_secret=handle.client_secret,
            credit_balance_id=balance.id,
        )

    # =========================================================================
    # State transitions
    # =========================================================================

    async def _transition(
        self,
        payment_id: str,
        target: PaymentStatus,
        mutate: Optional[Callable[[Payment, datetime], None]] = None,
        event: Optional[WebhookEvent] = None,
    ) -> Payment:
        """
        Move a payment to target with a versioned write.

        Raises:
            AlreadyProcessedError: The payment already left the states that
                lead to target (another caller won)
            InvalidPaymentTransitionError: target is unreachable from a
                non-terminal state
        """

        async def attempt() -> Payment:
            current = await self._store.get_payment(payment_id)
            if current is None:
                raise PaymentNotFoundError("Payment not found", {"payment_id": payment_id})
            if current.status == target or (
                is_terminal(current.status) and not can_transition(current.status, target)
            ):
                raise AlreadyProcessedError(current)
            assert_transition(current.status, target)

            now = self._clock()
            expected_version = current.version
            current.status = target
            current.updated_at = now
            if mutate:
                mutate(current, now)
            if event:
                current.add_gateway_event(event.event_id, event.event_type)
            return await self._store.update_payment(current, expected_version)

        stored = await retry_on_conflict(attempt, f"payment -> {target.value}")
        logger.info(f"Payment {stored.id} ({stored.external_intent_id}) is now {stored.status.value}")
        return stored

    async def _fulfil(self, payment: Payment) -> ConfirmationResult:
        """Apply the entitlement side effect of a succeeded payment (idempotent)."""
        subscription = None
        if payment.type == PaymentType.SUBSCRIPTION:
            subscription = await self._subscriptions.activate_for_payment(payment)
        elif payment.type == PaymentType.CREDIT_PURCHASE:
            await self._credits.add_package_for_payment(payment)
        return ConfirmationResult(success=True, payment=payment, subscription=subscription)

    async def _revoke_pending(self, payment: Payment) -> ConfirmationResult:
        subscription = await self._subscriptions.cancel_for_failed_payment(payment)
        return ConfirmationResult(
            success=False,
            payment=payment,
            subscription=subscription,
            message=payment.failure_reason,
        )

    async def finalize_success(
        self, payment: Payment, event: Optional[WebhookEvent] = None
    ) -> ConfirmationResult:
        def mark(current: Payment, now: datetime) -> None:
            current.processed_at = now
            current.failure_reason = None

        try:
            stored = await self._transition(payment.id, PaymentStatus.SUCCEEDED, mark, event)
        except AlreadyProcessedError as e:
            return await self._already_processed(e.payment)
        return await self._fulfil(stored)

    async def finalize_failure(
        self,
        payment: Payment,
        status: PaymentStatus = PaymentStatus.FAILED,
        reason: Optional[str] = None,
        event: Optional[WebhookEvent] = None,
    ) -> ConfirmationResult:
        def mark(current: Payment, now: datetime) -> None:
            current.processed_at = now
            current.failure_reason = reason or DEFAULT_FAILURE_REASON

        try:
            stored = await self._transition(payment.id, status, mark, event)
        except AlreadyProcessedError as e:
            return await self._already_processed(e.payment)
        return await self._revoke_pending(stored)

    async def mark_processing(self, payment: Payment) -> ConfirmationResult:
        try:
            stored = await self._transition(payment.id, PaymentStatus.PROCESSING)
        except AlreadyProcessedError as e:
            if e.payment.status == PaymentStatus.PROCESSING:
                stored = e.payment
            else:
                return await self._already_processed(e.payment)
        return ConfirmationResult(
            success=False,
            payment=stored,
            requires_action=True,
            message="Payment requires additional action",
        )

    async def record_refund(
        self,
        payment: Payment,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
        event: Optional[WebhookEvent] = None,
    ) -> ConfirmationResult:
        """succeeded -> refunded. Entitlements already granted are left in place."""

        def mark(current: Payment, now: datetime) -> None:
            current.refunded_amount = min(amount or current.amount, current.amount)
            current.refund_reason = reason
            current.refunded_at = now

        try:
            stored = await self._transition(payment.id, PaymentStatus.REFUNDED, mark, event)
        except AlreadyProcessedError as e:
            logger.info(f"Refund for payment {e.payment.id} already recorded")
            return ConfirmationResult(
                success=e.payment.status in SUCCESS_STATUSES,
                payment=e.payment,
                already_processed=True,
            )
        return ConfirmationResult(success=True, payment=stored)

    async def _already_processed(self, payment: Payment) -> ConfirmationResult:
        """
        Result for a caller that lost the race.

        Side effects are re-applied idempotently so a finalizer that crashed
        after claiming the transition is completed by the next caller.
        """
        logger.info(
            f"Payment {payment.id} already processed (status={payment.status.value}); no-op"
        )
        if payment.status == PaymentStatus.SUCCEEDED:
            result = await self._fulfil(payment)
        elif payment.status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            result = await self._revoke_pending(payment)
        else:
            result = ConfirmationResult(success=payment.status in SUCCESS_STATUSES, payment=payment)
        result.already_processed = True
        result.message = "Payment already processed"
        return result

    # =========================================================================
    # Confirmation
    # =========================================================================

    async def confirm(self, payment_intent_id: str, client_id: str) -> ConfirmationResult:
        """
        Reconcile a payment with the gateway's view of its intent.

        A gateway timeout propagates and leaves the payment unchanged, to be
        resolved by a retry or the webhook.
        """
        payment = await self._store.get_payment_by_intent(payment_intent_id)
        if payment is None or payment.client_id != client_id:
            raise PaymentNotFoundError(
                "Payment not found",
                {"payment_intent_id": payment_intent_id},
            )

        if is_terminal(payment.status):
            return await self._already_processed(payment)

        report = await self._gateway.get_intent_status(payment_intent_id)

        if report.status == GatewayIntentStatus.SUCCEEDED:
            return await self.finalize_success(payment)
        if report.status == GatewayIntentStatus.REQUIRES_ACTION:
            return await self.mark_processing(payment)
        if report.status == GatewayIntentStatus.FAILED:
            return await self.finalize_failure(
                payment, PaymentStatus.FAILED, report.failure_reason or DEFAULT_FAILURE_REASON
            )
        if report.status == GatewayIntentStatus.CANCELED:
            return await self.finalize_failure(
                payment, PaymentStatus.CANCELLED, report.failure_reason or CANCELED_REASON
            )

        return ConfirmationResult(
            success=False,
            payment=payment,
            message="Payment is still processing",
        )

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_payment(self, payment_id: str, client_id: str) -> Payment:
        """A client's own payment; another client's payment is reported as missing."""
        payment = await self._store.get_payment(payment_id)
        if payment is None or payment.client_id != client_id:
            raise PaymentNotFoundError("Payment not found", {"payment_id": payment_id})
        return payment

    async def get_payment_by_intent(self, payment_intent_id: str) -> Optional[Payment]:
        return await self._store.get_payment_by_intent(payment_intent_id)

    async def _history(
        self,
        limit: int,
        offset: int,
        client_id: Optional[str] = None,
        brand_id: Optional[str] = None,
    ) -> PaymentHistory:
        page = await self._store.list_payments(client_id, brand_id, limit + 1, offset)
        return PaymentHistory(
            payments=page[:limit],
            limit=limit,
            offset=offset,
            has_more=len(page) > limit,
        )

    async def get_client_payment_history(
        self,
        client_id: str,
        limit: int = 20,
        offset: int = 0,
        brand_id: Optional[str] = None,
    ) -> PaymentHistory:
        return await self._history(limit, offset, client_id=client_id, brand_id=brand_id)

    async def get_brand_payment_history(
        self, brand_id: str, limit: int = 20, offset: int = 0
    ) -> PaymentHistory:
        """Every client's payments to one brand."""
        return await self._history(limit, offset, brand_id=brand_id)
