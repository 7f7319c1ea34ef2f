"""
Entitlement Domain Models

Domain models for the entitlement bounded context following Clean Architecture.
Enums and entities for payments, subscriptions, credit balances and the
plans and tenants they reference. No persistence or framework concerns here:
every invariant that used to live in storage hooks is an explicit function
in credit_ledger / subscription_entitlement / payment_state.
"""

import calendar
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def add_months(moment: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


# =============================================================================
# Enums
# =============================================================================

class RecordStatus(str, Enum):
    """Lifecycle status shared by clients, brands and plans."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class PaymentType(str, Enum):
    SUBSCRIPTION = "subscription"
    CREDIT_PURCHASE = "credit_purchase"
    REFUND = "refund"


class PaymentStatus(str, Enum):
    """Payment state machine states."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PackageStatus(str, Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"
    EXPIRED = "expired"


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    REFUND = "refund"
    EXPIRY = "expiry"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def months(self) -> int:
        return {"monthly": 1, "quarterly": 3, "yearly": 12}[self.value]


class FrequencyPeriod(str, Enum):
    WEEK = "week"
    MONTH = "month"


# =============================================================================
# Tenants and Plans (read-only for the engine)
# =============================================================================

class Client(BaseModel):
    """End user purchasing entitlements."""
    id: str
    email: Optional[str] = None
    status: RecordStatus = RecordStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == RecordStatus.ACTIVE


class Brand(BaseModel):
    """Merchant tenant offering classes."""
    id: str
    name: str
    status: RecordStatus = RecordStatus.ACTIVE
    gateway_account_id: Optional[str] = None
    gateway_onboarding_complete: bool = False

    @property
    def is_gateway_configured(self) -> bool:
        """Whether the brand finished onboarding with the payment gateway."""
        return bool(self.gateway_account_id) and self.gateway_onboarding_complete


class FrequencyLimit(BaseModel):
    """Maximum bookings per period. A count of 0 means unlimited."""
    count: int = Field(default=0, ge=0, le=1000)
    period: FrequencyPeriod = FrequencyPeriod.WEEK
    reset_day: int = Field(default=1, ge=1, le=31)

    @model_validator(mode="after")
    def validate_reset_day(self) -> "FrequencyLimit":
        if self.period == FrequencyPeriod.WEEK and self.reset_day > 7:
            raise ValueError("Reset day must be 1-7 for weekly periods")
        return self

    @property
    def is_unlimited(self) -> bool:
        return self.count == 0


class SubscriptionPlan(BaseModel):
    id: str
    brand_id: str
    name: str
    price: int = Field(..., ge=0, description="Price in minor currency units")
    currency: str = "USD"
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    included_class_ids: list[str] = Field(default_factory=list)
    frequency_limit: FrequencyLimit = Field(default_factory=FrequencyLimit)
    status: RecordStatus = RecordStatus.ACTIVE

    def is_class_included(self, class_id: str) -> bool:
        """An empty inclusion list means every class of the brand."""
        return not self.included_class_ids or class_id in self.included_class_ids


class CreditPlan(BaseModel):
    id: str
    brand_id: str
    name: str
    price: int = Field(..., ge=0, description="Price in minor currency units")
    currency: str = "USD"
    credit_amount: int = Field(..., ge=1, le=1000)
    bonus_credits: int = Field(default=0, ge=0, le=1000)
    validity_period_days: int = Field(..., ge=1, le=3650)
    included_class_ids: list[str] = Field(default_factory=list)
    status: RecordStatus = RecordStatus.ACTIVE

    @property
    def total_credits(self) -> int:
        return self.credit_amount + self.bonus_credits

    def is_class_included(self, class_id: str) -> bool:
        return not self.included_class_ids or class_id in self.included_class_ids

    def expiry_date(self, purchase_date: datetime) -> datetime:
        return purchase_date + timedelta(days=self.validity_period_days)


# =============================================================================
# Payment
# =============================================================================

class GatewayEvent(BaseModel):
    """Gateway notification applied to a payment (append-only)."""
    event_id: str
    event_type: str
    processed_at: datetime = Field(default_factory=utcnow)


class Payment(BaseModel):
    """A charge tracked against one external payment intent."""
    id: str = Field(default_factory=new_id)
    client_id: str
    brand_id: str
    type: PaymentType
    status: PaymentStatus = PaymentStatus.PENDING
    amount: int = Field(..., ge=0)
    currency: str = "USD"
    external_intent_id: str
    related_entitlement_id: Optional[str] = None
    plan_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    failure_reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    refunded_amount: int = Field(default=0, ge=0)
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    gateway_events: list[GatewayEvent] = Field(default_factory=list)
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def add_gateway_event(self, event_id: str, event_type: str) -> bool:
        """Record a gateway event once. Returns False for a repeated id."""
        if any(event.event_id == event_id for event in self.gateway_events):
            return False
        self.gateway_events.append(GatewayEvent(event_id=event_id, event_type=event_type))
        return True


# =============================================================================
# Subscription
# =============================================================================

class Subscription(BaseModel):
    """Frequency-capped, time-bounded entitlement with one brand."""
    id: str = Field(default_factory=new_id)
    client_id: str
    brand_id: str
    plan_id: str
    status: SubscriptionStatus = SubscriptionStatus.PENDING
    start_date: datetime
    end_date: datetime
    next_billing_date: datetime
    current_period_start: datetime
    current_period_end: datetime
    frequency_used: int = Field(default=0, ge=0)
    frequency_reset_date: datetime
    payment_intent_id: Optional[str] = None
    auto_renew: bool = True
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Credit Balance
# =============================================================================

class CreditPackage(BaseModel):
    """One purchased batch of credits with its own expiry."""
    id: str = Field(default_factory=new_id)
    plan_id: str
    purchase_date: datetime
    expiry_date: datetime
    original_credits: int = Field(..., ge=1)
    credits_remaining: int = Field(..., ge=0)
    status: PackageStatus = PackageStatus.ACTIVE
    payment_intent_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_bounds(self) -> "CreditPackage":
        if self.credits_remaining > self.original_credits:
            raise ValueError("Credits remaining cannot exceed original credits")
        if self.expiry_date <= self.purchase_date:
            raise ValueError("Expiry date must be after purchase date")
        return self


class CreditTransaction(BaseModel):
    """Ledger entry. Immutable once written."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    type: TransactionType
    amount: int = Field(..., ge=0)
    package_id: Optional[str] = None
    related_booking_id: Optional[str] = None
    description: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class CreditBalance(BaseModel):
    """
    Prepaid credit ledger for one (client, brand) pair.

    Packages and transactions are owned by the aggregate and must only be
    changed through app.domain.credit_ledger.
    """
    id: str = Field(default_factory=new_id)
    client_id: str
    brand_id: str
    available_credits: int = Field(default=0, ge=0)
    total_credits_earned: int = Field(default=0, ge=0)
    total_credits_used: int = Field(default=0, ge=0)
    credit_packages: list[CreditPackage] = Field(default_factory=list)
    transactions: list[CreditTransaction] = Field(default_factory=list)
    last_activity_date: datetime = Field(default_factory=utcnow)
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
