"""
Subscription entitlement rules.

Pure functions over a Subscription and its plan. Lifecycle edits that the
storage layer used to apply implicitly (cancellation timestamps, period
rollover) are explicit here and must be called before persisting.
"""

import calendar
import logging
import sys
from datetime import datetime, timedelta
from typing import Optional

from app.domain.entitlements import (
    FrequencyLimit,
    FrequencyPeriod,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    add_months,
    utcnow,
)
from app.infrastructure.exceptions import SubscriptionStateError

logger = logging.getLogger(__name__)

# Returned by remaining_frequency for plans without a frequency cap
UNLIMITED_FREQUENCY = sys.maxsize

REASON_NO_SUBSCRIPTION = "No active subscription found with this brand"
REASON_OUTSIDE_PERIOD = "Subscription is not active or outside billing period"
REASON_FREQUENCY_REACHED = "Frequency limit reached for current period"
REASON_CLASS_EXCLUDED = "Class is not included in your subscription plan"

DEFAULT_CANCELLATION_REASON = "Cancelled by client"
PAYMENT_FAILED_REASON = "Payment failed"


# =============================================================================
# Dates
# =============================================================================

def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _clamped_day(year: int, month: int, day: int) -> int:
    return min(day, calendar.monthrange(year, month)[1])


def next_reset_date(limit: FrequencyLimit, now: datetime) -> datetime:
    """
    Next occurrence of the plan's reset day, strictly after now.

    Weekly reset days are ISO weekdays (1 = Monday). Monthly reset days
    beyond a month's length fall on its last day.
    """
    today = _midnight(now)

    if limit.period == FrequencyPeriod.WEEK:
        days_ahead = (limit.reset_day - now.isoweekday()) % 7 or 7
        return today + timedelta(days=days_ahead)

    candidate = today.replace(day=_clamped_day(today.year, today.month, limit.reset_day))
    if candidate > now:
        return candidate
    following = add_months(today.replace(day=1), 1)
    return following.replace(day=_clamped_day(following.year, following.month, limit.reset_day))


def billing_period_end(plan: SubscriptionPlan, start: datetime) -> datetime:
    return add_months(start, plan.billing_cycle.months)


# =============================================================================
# Queries
# =============================================================================

def is_active(subscription: Subscription, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return (
        subscription.status == SubscriptionStatus.ACTIVE
        and subscription.start_date <= now <= subscription.end_date
    )


def is_valid_for_booking(subscription: Subscription, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return (
        is_active(subscription, now)
        and subscription.current_period_start <= now <= subscription.current_period_end
    )


def can_book_class(
    subscription: Subscription,
    plan: SubscriptionPlan,
    class_id: str,
    now: Optional[datetime] = None,
) -> bool:
    return is_valid_for_booking(subscription, now) and plan.is_class_included(class_id)


def remaining_frequency(subscription: Subscription, plan: SubscriptionPlan) -> int:
    """Bookings left this period, or UNLIMITED_FREQUENCY for uncapped plans."""
    if plan.frequency_limit.is_unlimited:
        return UNLIMITED_FREQUENCY
    return max(0, plan.frequency_limit.count - subscription.frequency_used)


def booking_ineligibility_reasons(
    subscription: Subscription,
    plan: SubscriptionPlan,
    class_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> list[str]:
    """Empty when the subscription may be used for a booking right now."""
    now = now or utcnow()
    reasons = []
    if not is_valid_for_booking(subscription, now):
        reasons.append(REASON_OUTSIDE_PERIOD)
    if remaining_frequency(subscription, plan) <= 0:
        reasons.append(REASON_FREQUENCY_REACHED)
    if class_id and not plan.is_class_included(class_id):
        reasons.append(REASON_CLASS_EXCLUDED)
    return reasons


# =============================================================================
# Mutations
# =============================================================================

def increment_frequency_usage(subscription: Subscription) -> None:
    """Count one booking. Callers check remaining_frequency first."""
    subscription.frequency_used += 1
    subscription.updated_at = utcnow()


def reset_frequency_usage(
    subscription: Subscription,
    plan: SubscriptionPlan,
    now: Optional[datetime] = None,
) -> None:
    now = now or utcnow()
    subscription.frequency_used = 0
    subscription.frequency_reset_date = next_reset_date(plan.frequency_limit, now)
    subscription.updated_at = now


def new_pending_subscription(
    client_id: str,
    plan: SubscriptionPlan,
    payment_intent_id: str,
    now: Optional[datetime] = None,
) -> Subscription:
    """Provisional subscription awaiting payment; dates are re-based on activation."""
    now = now or utcnow()
    period_end = billing_period_end(plan, now)
    return Subscription(
        client_id=client_id,
        brand_id=plan.brand_id,
        plan_id=plan.id,
        status=SubscriptionStatus.PENDING,
        start_date=now,
        end_date=period_end,
        next_billing_date=period_end,
        current_period_start=now,
        current_period_end=period_end,
        frequency_reset_date=next_reset_date(plan.frequency_limit, now),
        payment_intent_id=payment_intent_id,
        created_at=now,
        updated_at=now,
    )


def activate(
    subscription: Subscription,
    plan: SubscriptionPlan,
    now: Optional[datetime] = None,
) -> None:
    """pending -> active, starting the first billing period at now."""
    if subscription.status != SubscriptionStatus.PENDING:
        raise SubscriptionStateError(
            f"Only pending subscriptions can be activated (status: {subscription.status.value})",
            {"subscription_id": subscription.id, "status": subscription.status.value},
        )
    now = now or utcnow()
    period_end = billing_period_end(plan, now)
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.start_date = now
    subscription.current_period_start = now
    subscription.end_date = period_end
    subscription.current_period_end = period_end
    subscription.next_billing_date = period_end
    subscription.frequency_used = 0
    subscription.frequency_reset_date = next_reset_date(plan.frequency_limit, now)
    subscription.updated_at = now


def cancel(
    subscription: Subscription,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    if subscription.status == SubscriptionStatus.CANCELLED:
        raise SubscriptionStateError(
            "Subscription is already cancelled",
            {"subscription_id": subscription.id},
        )
    if subscription.status == SubscriptionStatus.EXPIRED:
        raise SubscriptionStateError(
            "Cannot cancel an expired subscription",
            {"subscription_id": subscription.id},
        )
    now = now or utcnow()
    subscription.status = SubscriptionStatus.CANCELLED
    subscription.cancelled_at = now
    subscription.cancellation_reason = reason or DEFAULT_CANCELLATION_REASON
    subscription.auto_renew = False
    subscription.updated_at = now


def roll_over(
    subscription: Subscription,
    plan: SubscriptionPlan,
    now: Optional[datetime] = None,
) -> bool:
    """
    Apply time-driven transitions: expire after end_date, otherwise reset
    the frequency counter once its reset date has passed.

    Returns True when the subscription changed and needs persisting.
    """
    now = now or utcnow()
    if subscription.status != SubscriptionStatus.ACTIVE:
        return False

    if now > subscription.end_date:
        subscription.status = SubscriptionStatus.EXPIRED
        subscription.auto_renew = False
        subscription.updated_at = now
        logger.info(f"Subscription {subscription.id} expired at {subscription.end_date.isoformat()}")
        return True

    if now >= subscription.frequency_reset_date:
        reset_frequency_usage(subscription, plan, now)
        return True

    return False
