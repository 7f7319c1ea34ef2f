"""
Entitlement Request/Response DTOs

Typed inputs and results of the engine's exposed operations.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.domain.entitlements import (
    CreditPackage,
    CreditTransaction,
    Payment,
    Subscription,
    SubscriptionStatus,
)


# =============================================================================
# Request DTOs
# =============================================================================

class PurchaseSubscriptionRequest(BaseModel):
    """Request DTO for buying a subscription plan."""
    plan_id: str = Field(..., description="Subscription plan to purchase")
    payment_method_id: Optional[str] = Field(
        default=None,
        description="Saved gateway payment method"
    )


class PurchaseCreditsRequest(BaseModel):
    """Request DTO for buying a credit plan."""
    credit_plan_id: str = Field(..., description="Credit plan to purchase")
    payment_method_id: Optional[str] = None


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)


class CancelSubscriptionRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RecordBookingRequest(BaseModel):
    class_id: Optional[str] = None


class DeductCreditsRequest(BaseModel):
    brand_id: str
    amount: int = Field(default=1, ge=1, le=100)
    booking_id: Optional[str] = None
    class_id: Optional[str] = None


class RefundCreditsRequest(BaseModel):
    brand_id: str
    amount: int = Field(..., ge=1, le=100)
    booking_id: Optional[str] = None


# =============================================================================
# Payment Results
# =============================================================================

class PurchaseResult(BaseModel):
    """Pending payment plus what the client needs to complete it."""
    payment: Payment
    client_secret: Optional[str] = None
    subscription: Optional[Subscription] = None
    credit_balance_id: Optional[str] = None


class ConfirmationResult(BaseModel):
    """
    Outcome of a confirm call.

    already_processed is True when another caller (usually the webhook)
    had already finalized the payment; the stored record is returned as-is.
    """
    success: bool
    payment: Payment
    already_processed: bool = False
    requires_action: bool = False
    subscription: Optional[Subscription] = None
    message: Optional[str] = None


class WebhookResult(BaseModel):
    status: str = Field(..., description="processed, already_processed, ignored or unknown_target")
    event_id: str
    intent_id: Optional[str] = None
    payment_status: Optional[str] = None


class PaymentHistory(BaseModel):
    """One page of payments, newest first."""
    payments: list[Payment]
    limit: int
    offset: int
    has_more: bool


# =============================================================================
# Subscription Results
# =============================================================================

class BookingEligibility(BaseModel):
    """Whether a client's subscription with a brand covers a booking."""
    eligible: bool
    reasons: list[str] = Field(default_factory=list)
    subscription_id: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    remaining_frequency: Optional[int] = None
    frequency_reset_date: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


class SubscriptionDetail(BaseModel):
    subscription: Subscription
    remaining_frequency: int
    is_valid_for_booking: bool


class SubscriptionStats(BaseModel):
    """Usage of a subscription in its current period."""
    subscription_id: str
    current_period_bookings: int
    remaining_frequency: int
    utilization_rate: float = Field(
        ...,
        description="Percent of the period's frequency limit used; 0 for unlimited plans"
    )


# =============================================================================
# Credit Results
# =============================================================================

class CreditBalanceSummary(BaseModel):
    client_id: str
    brand_id: str
    available_credits: int
    total_credits_earned: int
    total_credits_used: int
    active_packages: list[CreditPackage] = Field(default_factory=list)
    expiring_packages: list[CreditPackage] = Field(default_factory=list)
    last_activity_date: Optional[datetime] = None


class CreditDeductionResult(BaseModel):
    transactions: list[CreditTransaction]
    remaining_credits: int


class CreditRefundResult(BaseModel):
    transaction: CreditTransaction
    available_credits: int


class CreditEligibility(BaseModel):
    eligible: bool
    available_credits: int
    required_credits: int
    reason: Optional[str] = None


class TransactionHistory(BaseModel):
    transactions: list[CreditTransaction]
    total: int
    limit: int
    offset: int


class MaintenanceReport(BaseModel):
    """Counts from one run of the scheduled sweeps."""
    balances_cleaned: int = 0
    credits_expired: int = 0
    subscriptions_expired: int = 0
    frequencies_reset: int = 0
