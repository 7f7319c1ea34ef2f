"""
Payment API Routes

Purchase flows for subscriptions and credit packages, client-side
confirmation of payment intents and the client's payment history.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, status

from app.api.dependencies import ClientIdDep, EngineDep
from app.domain.entitlements import Payment
from app.domain.schemas import (
    ConfirmationResult,
    ConfirmPaymentRequest,
    PaymentHistory,
    PurchaseCreditsRequest,
    PurchaseResult,
    PurchaseSubscriptionRequest,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/payments/subscriptions",
    response_model=PurchaseResult,
    status_code=status.HTTP_201_CREATED,
)
async def purchase_subscription(
    request: PurchaseSubscriptionRequest,
    client_id: ClientIdDep,
    engine: EngineDep,
):
    """
    Start a subscription purchase.

    Returns the pending payment, its provisional subscription and the
    client secret needed to complete the payment.
    """
    return await engine.purchase_subscription(client_id, request.plan_id, request.payment_method_id)


@router.post(
    "/payments/credits",
    response_model=PurchaseResult,
    status_code=status.HTTP_201_CREATED,
)
async def purchase_credits(
    request: PurchaseCreditsRequest,
    client_id: ClientIdDep,
    engine: EngineDep,
):
    """Start a credit package purchase."""
    return await engine.purchase_credits(client_id, request.credit_plan_id, request.payment_method_id)


@router.post("/payments/confirm", response_model=ConfirmationResult)
async def confirm_payment(
    request: ConfirmPaymentRequest,
    client_id: ClientIdDep,
    engine: EngineDep,
):
    """
    Confirm a payment after the client completed it.

    Safe to call repeatedly; a payment already finalized by the webhook is
    returned with already_processed set.
    """
    return await engine.confirm_payment(request.payment_intent_id, client_id)


@router.get("/payments/history", response_model=PaymentHistory)
async def get_payment_history(
    client_id: ClientIdDep,
    engine: EngineDep,
    brand_id: Optional[str] = Query(default=None, description="Only payments to this brand"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    """The client's payments, newest first."""
    return await engine.get_client_payment_history(client_id, limit, offset, brand_id)


@router.get("/payments/{payment_id}", response_model=Payment)
async def get_payment(payment_id: str, client_id: ClientIdDep, engine: EngineDep):
    return await engine.get_payment(payment_id, client_id)
