"""
Stripe Payment Gateway

Infrastructure adapter implementing the PaymentGatewayClient port with
Stripe Connect: payment intents are created on the platform account and
transferred to the brand's connected account.

- Every call is bounded by GATEWAY_TIMEOUT_SECONDS
- Reads retry transient failures with exponential backoff
- Intent creation is never retried here and always carries an idempotency key
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import stripe
from stripe import StripeError

from app.config.settings import get_settings
from app.domain.interfaces import (
    AccountStatus,
    GatewayIntentStatus,
    IntentHandle,
    IntentStatusReport,
    WebhookEvent,
)
from app.infrastructure.exceptions import (
    ExternalGatewayError,
    GatewayTimeoutError,
    WebhookSignatureError,
)


logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASON = "Payment failed"

_TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


def map_intent_status(intent: Any) -> IntentStatusReport:
    """Translate a Stripe PaymentIntent into a normalized status report."""
    status = intent.get("status")
    last_error = intent.get("last_payment_error") or {}
    failure_message = last_error.get("message") if last_error else None

    if status == "succeeded":
        return IntentStatusReport(GatewayIntentStatus.SUCCEEDED)
    if status == "requires_action":
        return IntentStatusReport(GatewayIntentStatus.REQUIRES_ACTION)
    if status in ("processing", "requires_capture"):
        return IntentStatusReport(GatewayIntentStatus.PROCESSING)
    if status == "canceled":
        return IntentStatusReport(
            GatewayIntentStatus.CANCELED,
            failure_reason=intent.get("cancellation_reason") or "Payment canceled",
        )
    if status == "requires_payment_method" and last_error:
        # Stripe sends a failed attempt back to requires_payment_method
        return IntentStatusReport(
            GatewayIntentStatus.FAILED,
            failure_reason=failure_message or DEFAULT_FAILURE_REASON,
        )
    return IntentStatusReport(GatewayIntentStatus.PENDING)


class StripeGateway:
    """
    Stripe Connect payment gateway.

    Stateless apart from configuration; safe to share across requests.
    """

    def __init__(self):
        """Initialize Stripe with API key from settings."""
        settings = get_settings()
        self._api_key = settings.stripe_secret_key
        self._webhook_secret = settings.stripe_webhook_secret
        self._timeout = settings.gateway_timeout_seconds
        self._max_retries = settings.gateway_max_retries
        self._base_delay = settings.retry_base_delay
        self._max_delay = settings.retry_max_delay

        if self._api_key:
            stripe.api_key = self._api_key
        stripe.api_version = settings.stripe_api_version

    # =========================================================================
    # Call Bounds
    # =========================================================================

    async def _call(self, operation: Callable, operation_name: str, *args, **kwargs):
        """Run a blocking Stripe call in a thread, bounded by the gateway timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(operation, *args, **kwargs),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"{operation_name} timed out after {self._timeout}s")
            raise GatewayTimeoutError(
                f"Payment gateway timed out during {operation_name}",
                operation=operation_name,
                original_error=e,
            )

    async def _retry_with_backoff(self, operation: Callable, operation_name: str, *args, **kwargs):
        """Execute a read with exponential backoff on transient failures."""
        last_exception: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                return await self._call(operation, operation_name, *args, **kwargs)
            except (GatewayTimeoutError, *_TRANSIENT_ERRORS) as e:
                last_exception = e
                delay = min(self._base_delay * (2 ** attempt), self._max_delay)
                logger.warning(
                    f"{operation_name} transient error. Attempt {attempt + 1}/{self._max_retries}. "
                    f"Retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        if isinstance(last_exception, GatewayTimeoutError):
            raise last_exception
        raise ExternalGatewayError(
            f"Payment gateway unavailable during {operation_name}",
            operation=operation_name,
            original_error=last_exception,
        )

    # =========================================================================
    # Payment Intents
    # =========================================================================

    async def create_intent(
        self,
        amount: int,
        currency: str,
        destination_account_id: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
        payment_method_id: Optional[str] = None,
    ) -> IntentHandle:
        """
        Create a PaymentIntent that settles to the brand's connected account.

        Args:
            amount: Amount in minor currency units
            currency: ISO currency code
            destination_account_id: Brand's Stripe Connect account
            metadata: Stored on the intent for reconciliation
            idempotency_key: Makes a repeated create return the same intent
            payment_method_id: Optional saved payment method

        Returns:
            IntentHandle with the intent id and client secret
        """
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "metadata": metadata,
            "transfer_data": {"destination": destination_account_id},
            "confirmation_method": "manual",
            "confirm": False,
        }
        if payment_method_id:
            params["payment_method"] = payment_method_id
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            intent = await self._call(stripe.PaymentIntent.create, "create_intent", **params)
        except StripeError as e:
            logger.error(f"Failed to create payment intent: {e}")
            raise ExternalGatewayError(
                f"Failed to create payment: {e.user_message or 'gateway error'}",
                operation="create_intent",
                original_error=e,
            )

        logger.info(
            f"Created payment intent {intent.id} for {amount} {currency} "
            f"to account {destination_account_id}"
        )
        return IntentHandle(intent_id=intent.id, client_secret=intent.get("client_secret"))

    async def get_intent_status(self, intent_id: str) -> IntentStatusReport:
        try:
            intent = await self._retry_with_backoff(
                stripe.PaymentIntent.retrieve, "get_intent_status", intent_id
            )
        except StripeError as e:
            logger.error(f"Failed to retrieve payment intent {intent_id}: {e}")
            raise ExternalGatewayError(
                "Failed to retrieve payment status",
                operation="get_intent_status",
                original_error=e,
            )
        return map_intent_status(intent)

    # =========================================================================
    # Connected Accounts
    # =========================================================================

    async def get_account_status(self, connected_account_id: str) -> AccountStatus:
        """Whether the brand's connected account can accept charges."""
        try:
            account = await self._retry_with_backoff(
                stripe.Account.retrieve, "get_account_status", connected_account_id
            )
        except StripeError as e:
            logger.error(f"Failed to retrieve account {connected_account_id}: {e}")
            raise ExternalGatewayError(
                "Failed to verify brand payment capability",
                operation="get_account_status",
                original_error=e,
            )

        charges_enabled = bool(account.get("charges_enabled"))
        details_submitted = bool(account.get("details_submitted"))
        return AccountStatus(
            charges_enabled=charges_enabled and details_submitted,
            onboarding_complete=charges_enabled and details_submitted,
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def parse_webhook_event(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify webhook signature and normalize the event.

        Raises:
            WebhookSignatureError if the payload or signature is invalid
        """
        if not self._webhook_secret:
            raise WebhookSignatureError("Webhook secret is not configured")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}", original_error=e)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid signature: {e}", original_error=e)

        return event_from_stripe(event)


def event_from_stripe(event: Any) -> WebhookEvent:
    """Normalize a Stripe event (or its dict form) into a WebhookEvent."""
    event_type = event.get("type")
    obj = event["data"]["object"]

    intent_id = None
    failure_reason = None
    amount_refunded = None

    if event_type.startswith("payment_intent."):
        intent_id = obj.get("id")
        last_error = obj.get("last_payment_error") or {}
        failure_reason = last_error.get("message") if last_error else None
    elif event_type.startswith("charge."):
        intent_id = obj.get("payment_intent")
        amount_refunded = obj.get("amount_refunded")

    return WebhookEvent(
        event_id=event.get("id"),
        event_type=event_type,
        intent_id=intent_id,
        failure_reason=failure_reason,
        amount_refunded=amount_refunded,
    )


# =============================================================================
# Singleton Instance (Dependency Injection Ready)
# =============================================================================

_stripe_gateway_instance: Optional[StripeGateway] = None


def get_stripe_gateway() -> StripeGateway:
    """Get or create Stripe gateway singleton."""
    global _stripe_gateway_instance

    if _stripe_gateway_instance is None:
        _stripe_gateway_instance = StripeGateway()

    return _stripe_gateway_instance
