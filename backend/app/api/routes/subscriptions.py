"""
Subscription API Routes

Listing, cancellation, booking eligibility and frequency usage of brand
subscriptions.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query

from app.api.dependencies import ClientIdDep, EngineDep
from app.domain.entitlements import Subscription, SubscriptionStatus
from app.domain.schemas import (
    BookingEligibility,
    CancelSubscriptionRequest,
    RecordBookingRequest,
    SubscriptionDetail,
    SubscriptionStats,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/subscriptions/eligibility", response_model=BookingEligibility)
async def check_booking_eligibility(
    client_id: ClientIdDep,
    engine: EngineDep,
    brand_id: str = Query(..., description="Brand offering the class"),
    class_id: Optional[str] = Query(default=None, description="Class to book"),
):
    """
    Check whether the client's subscription with a brand covers a booking.

    Ineligibility is reported through the reasons list, not as an error.
    """
    return await engine.check_booking_eligibility(client_id, brand_id, class_id)


@router.get("/subscriptions", response_model=List[SubscriptionDetail])
async def list_subscriptions(
    client_id: ClientIdDep,
    engine: EngineDep,
    status: Optional[SubscriptionStatus] = Query(default=None),
    brand_id: Optional[str] = Query(default=None),
):
    """The client's subscriptions, newest first."""
    return await engine.list_client_subscriptions(client_id, status, brand_id)


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionDetail)
async def get_subscription(subscription_id: str, client_id: ClientIdDep, engine: EngineDep):
    return await engine.get_subscription(subscription_id, client_id)


@router.get("/subscriptions/{subscription_id}/stats", response_model=SubscriptionStats)
async def get_subscription_stats(subscription_id: str, client_id: ClientIdDep, engine: EngineDep):
    """Usage of the subscription's frequency limit this period."""
    return await engine.get_subscription_stats(subscription_id, client_id)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=Subscription)
async def cancel_subscription(
    subscription_id: str,
    client_id: ClientIdDep,
    engine: EngineDep,
    request: Optional[CancelSubscriptionRequest] = None,
):
    reason = request.reason if request else None
    return await engine.cancel_subscription(subscription_id, client_id, reason)


@router.post("/subscriptions/{subscription_id}/bookings", response_model=Subscription)
async def record_subscription_booking(
    subscription_id: str,
    request: RecordBookingRequest,
    client_id: ClientIdDep,
    engine: EngineDep,
):
    """Count a booking against the subscription's frequency limit."""
    return await engine.record_subscription_booking(subscription_id, client_id, request.class_id)
