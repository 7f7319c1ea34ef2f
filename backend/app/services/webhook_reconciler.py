"""
Webhook Reconciler

Applies verified gateway events to tracked payments. Deliveries may be
duplicated, reordered, or race a client's confirm call; all of those end
in the same state as a single in-order delivery.
"""

import logging
from typing import Awaitable, Callable, Dict

from app.domain.entitlements import Payment, PaymentStatus
from app.domain.interfaces import EntitlementStore, WebhookEvent
from app.domain.schemas import ConfirmationResult, WebhookResult
from app.infrastructure.exceptions import UnknownWebhookTargetError
from app.services.payment_service import (
    CANCELED_REASON,
    DEFAULT_FAILURE_REASON,
    PaymentLifecycleManager,
)


logger = logging.getLogger(__name__)

EventHandler = Callable[[Payment, WebhookEvent], Awaitable[ConfirmationResult]]


class WebhookReconciler:
    """
    Routes gateway events to the payment lifecycle.

    Events are deduplicated by gateway event id. An event is recorded as
    processed only after its handler returns, so a delivery that fails
    midway is retried by the gateway.
    """

    def __init__(self, store: EntitlementStore, payments: PaymentLifecycleManager):
        self._store = store
        self._payments = payments
        self._handlers: Dict[str, EventHandler] = {
            "payment_intent.succeeded": self._on_succeeded,
            "payment_intent.payment_failed": self._on_failed,
            "payment_intent.canceled": self._on_canceled,
            "charge.refunded": self._on_refunded,
        }

    async def _on_succeeded(self, payment: Payment, event: WebhookEvent) -> ConfirmationResult:
        return await self._payments.finalize_success(payment, event)

    async def _on_failed(self, payment: Payment, event: WebhookEvent) -> ConfirmationResult:
        return await self._payments.finalize_failure(
            payment,
            PaymentStatus.FAILED,
            event.failure_reason or DEFAULT_FAILURE_REASON,
            event,
        )

    async def _on_canceled(self, payment: Payment, event: WebhookEvent) -> ConfirmationResult:
        return await self._payments.finalize_failure(
            payment,
            PaymentStatus.CANCELLED,
            event.failure_reason or CANCELED_REASON,
            event,
        )

    async def _on_refunded(self, payment: Payment, event: WebhookEvent) -> ConfirmationResult:
        return await self._payments.record_refund(
            payment,
            amount=event.amount_refunded,
            reason="Refunded through payment gateway",
            event=event,
        )

    async def _target(self, event: WebhookEvent) -> Payment:
        payment = await self._store.get_payment_by_intent(event.intent_id) if event.intent_id else None
        if payment is None:
            raise UnknownWebhookTargetError(event.intent_id or "")
        return payment

    async def handle_event(self, event: WebhookEvent) -> WebhookResult:
        """
        Apply one verified event.

        Returns:
            WebhookResult with status processed, already_processed, ignored
            or unknown_target
        """
        if await self._store.is_webhook_event_processed(event.event_id):
            logger.info(f"Webhook event {event.event_id} already processed")
            return WebhookResult(
                status="already_processed",
                event_id=event.event_id,
                intent_id=event.intent_id,
            )

        handler = self._handlers.get(event.event_type)
        if handler is None:
            logger.debug(f"Ignoring webhook event type {event.event_type}")
            await self._store.mark_webhook_event_processed(event.event_id, event.event_type)
            return WebhookResult(status="ignored", event_id=event.event_id, intent_id=event.intent_id)

        try:
            payment = await self._target(event)
        except UnknownWebhookTargetError as e:
            logger.warning(f"Webhook {event.event_type} ({event.event_id}): {e.message}")
            await self._store.mark_webhook_event_processed(event.event_id, event.event_type)
            return WebhookResult(status="unknown_target", event_id=event.event_id, intent_id=event.intent_id)

        result = await handler(payment, event)
        await self._store.mark_webhook_event_processed(event.event_id, event.event_type)

        logger.info(
            f"Webhook {event.event_type} ({event.event_id}) applied to payment {payment.id}: "
            f"{result.payment.status.value}{' (already processed)' if result.already_processed else ''}"
        )
        return WebhookResult(
            status="already_processed" if result.already_processed else "processed",
            event_id=event.event_id,
            intent_id=event.intent_id,
            payment_status=result.payment.status.value,
        )
