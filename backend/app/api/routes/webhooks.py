"""
Stripe Webhook Handler

Receives gateway notifications for payment intents and charges. Signature
verification happens before anything is read from the payload; processing
is idempotent by Stripe event id, backed by the database.

Handled Events:
- payment_intent.succeeded: Finalize payment, grant the entitlement
- payment_intent.payment_failed: Fail payment, cancel a pending subscription
- payment_intent.canceled: Cancel payment, cancel a pending subscription
- charge.refunded: Mark a succeeded payment as refunded
"""

import logging

from fastapi import APIRouter, Request, HTTPException, status

from app.api.dependencies import EngineDep
from app.domain.schemas import WebhookResult
from app.infrastructure.exceptions import WebhookSignatureError


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/stripe", response_model=WebhookResult)
async def stripe_webhook(request: Request, engine: EngineDep):
    """
    Handle Stripe webhook events.

    Returns 200 to acknowledge receipt. Unexpected failures surface as 5xx
    so Stripe retries the delivery; the event is only recorded as processed
    once it has been applied.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature"
        )

    try:
        return await engine.handle_webhook(payload, signature)
    except WebhookSignatureError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature"
        )
