"""
Credit API Routes

Balances, history and booking-time deduction and refund of class credits.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query

from app.api.dependencies import ClientIdDep, EngineDep
from app.domain.schemas import (
    CreditBalanceSummary,
    CreditDeductionResult,
    CreditEligibility,
    CreditRefundResult,
    DeductCreditsRequest,
    RefundCreditsRequest,
    TransactionHistory,
)


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Balances
# =============================================================================

@router.get("/credits", response_model=List[CreditBalanceSummary])
async def list_credit_balances(client_id: ClientIdDep, engine: EngineDep):
    """All of the client's balances that still hold credits."""
    return await engine.list_credit_balances(client_id)


@router.get("/credits/expiring", response_model=List[CreditBalanceSummary])
async def get_expiring_credits(
    client_id: ClientIdDep,
    engine: EngineDep,
    days: Optional[int] = Query(default=None, ge=1, le=365),
):
    return await engine.get_expiring_credits(client_id, days)


@router.get("/credits/{brand_id}", response_model=CreditBalanceSummary)
async def get_credit_balance(brand_id: str, client_id: ClientIdDep, engine: EngineDep):
    return await engine.get_credit_balance(client_id, brand_id)


@router.get("/credits/{brand_id}/transactions", response_model=TransactionHistory)
async def get_transaction_history(
    brand_id: str,
    client_id: ClientIdDep,
    engine: EngineDep,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    """Ledger entries for one balance, newest first."""
    return await engine.get_transaction_history(client_id, brand_id, limit, offset)


@router.get("/credits/{brand_id}/eligibility", response_model=CreditEligibility)
async def validate_credit_eligibility(
    brand_id: str,
    client_id: ClientIdDep,
    engine: EngineDep,
    class_id: str = Query(...),
    amount: int = Query(default=1, ge=1, le=100),
):
    return await engine.validate_credit_eligibility(client_id, brand_id, class_id, amount)


# =============================================================================
# Booking hooks
# =============================================================================

@router.post("/credits/deduct", response_model=CreditDeductionResult)
async def deduct_credits(request: DeductCreditsRequest, client_id: ClientIdDep, engine: EngineDep):
    """
    Spend credits for a booking, oldest packages first.

    All-or-nothing: an insufficient balance fails without changing anything.
    """
    return await engine.deduct_credits_for_booking(
        client_id,
        request.brand_id,
        request.amount,
        request.booking_id,
        request.class_id,
    )


@router.post("/credits/refund", response_model=CreditRefundResult)
async def refund_credits(request: RefundCreditsRequest, client_id: ClientIdDep, engine: EngineDep):
    """Return credits of a cancelled booking to the balance."""
    return await engine.refund_credits_for_booking(
        client_id,
        request.brand_id,
        request.amount,
        request.booking_id,
    )
