"""
Unit tests for subscription entitlement rules.

Reset date arithmetic, booking eligibility reasons and the lifecycle edits
(activate, cancel, roll over).
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.domain import subscription_entitlement as entitlement
from app.domain.entitlements import (
    BillingCycle,
    FrequencyLimit,
    FrequencyPeriod,
    SubscriptionPlan,
    SubscriptionStatus,
)
from app.infrastructure.exceptions import SubscriptionStateError


# Wednesday
WEDNESDAY = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


def make_plan(count=3, period=FrequencyPeriod.WEEK, reset_day=1, classes=None, cycle=BillingCycle.MONTHLY):
    return SubscriptionPlan(
        id="plan-1",
        brand_id="brand-a",
        name="Plan",
        price=4900,
        billing_cycle=cycle,
        included_class_ids=classes or [],
        frequency_limit=FrequencyLimit(count=count, period=period, reset_day=reset_day),
    )


def active_subscription(plan, now=WEDNESDAY):
    subscription = entitlement.new_pending_subscription("client-1", plan, "pi_1", now)
    entitlement.activate(subscription, plan, now)
    return subscription


class TestNextResetDate:

    def test_weekly_reset_on_monday_from_wednesday(self):
        limit = FrequencyLimit(count=3, period=FrequencyPeriod.WEEK, reset_day=1)

        reset = entitlement.next_reset_date(limit, WEDNESDAY)

        assert reset == datetime(2026, 3, 9, tzinfo=timezone.utc)
        assert reset.isoweekday() == 1

    def test_weekly_reset_on_same_weekday_is_a_week_out(self):
        limit = FrequencyLimit(count=3, period=FrequencyPeriod.WEEK, reset_day=3)

        assert entitlement.next_reset_date(limit, WEDNESDAY) == datetime(2026, 3, 11, tzinfo=timezone.utc)

    def test_monthly_reset_later_this_month(self):
        limit = FrequencyLimit(count=8, period=FrequencyPeriod.MONTH, reset_day=15)

        assert entitlement.next_reset_date(limit, WEDNESDAY) == datetime(2026, 3, 15, tzinfo=timezone.utc)

    def test_monthly_reset_already_passed_moves_to_next_month(self):
        limit = FrequencyLimit(count=8, period=FrequencyPeriod.MONTH, reset_day=1)

        assert entitlement.next_reset_date(limit, WEDNESDAY) == datetime(2026, 4, 1, tzinfo=timezone.utc)

    def test_monthly_reset_day_clamped_to_short_month(self):
        limit = FrequencyLimit(count=8, period=FrequencyPeriod.MONTH, reset_day=31)
        february = datetime(2026, 2, 10, tzinfo=timezone.utc)

        assert entitlement.next_reset_date(limit, february) == datetime(2026, 2, 28, tzinfo=timezone.utc)

    def test_weekly_reset_day_must_be_a_weekday(self):
        with pytest.raises(ValueError):
            FrequencyLimit(count=1, period=FrequencyPeriod.WEEK, reset_day=8)


class TestEligibility:

    def test_fresh_subscription_is_eligible(self):
        plan = make_plan()
        subscription = active_subscription(plan)

        assert entitlement.booking_ineligibility_reasons(subscription, plan, None, WEDNESDAY) == []
        assert entitlement.remaining_frequency(subscription, plan) == 3

    def test_frequency_limit_reached(self):
        plan = make_plan(count=2)
        subscription = active_subscription(plan)
        entitlement.increment_frequency_usage(subscription)
        entitlement.increment_frequency_usage(subscription)

        reasons = entitlement.booking_ineligibility_reasons(subscription, plan, None, WEDNESDAY)

        assert reasons == [entitlement.REASON_FREQUENCY_REACHED]

    def test_class_not_included(self):
        plan = make_plan(classes=["yoga"])
        subscription = active_subscription(plan)

        assert entitlement.can_book_class(subscription, plan, "yoga", WEDNESDAY)
        assert not entitlement.can_book_class(subscription, plan, "spin", WEDNESDAY)
        assert entitlement.booking_ineligibility_reasons(subscription, plan, "spin", WEDNESDAY) == [
            entitlement.REASON_CLASS_EXCLUDED
        ]

    def test_unlimited_plan_never_runs_out(self):
        plan = make_plan(count=0)
        subscription = active_subscription(plan)
        for _ in range(50):
            entitlement.increment_frequency_usage(subscription)

        assert entitlement.remaining_frequency(subscription, plan) == entitlement.UNLIMITED_FREQUENCY

    def test_pending_subscription_is_outside_period(self):
        plan = make_plan()
        subscription = entitlement.new_pending_subscription("client-1", plan, "pi_1", WEDNESDAY)

        assert entitlement.booking_ineligibility_reasons(subscription, plan, None, WEDNESDAY) == [
            entitlement.REASON_OUTSIDE_PERIOD
        ]

    def test_period_bounds_are_inclusive(self):
        plan = make_plan()
        subscription = active_subscription(plan)

        assert entitlement.is_active(subscription, subscription.start_date)
        assert entitlement.is_active(subscription, subscription.end_date)
        assert not entitlement.is_active(subscription, subscription.end_date + timedelta(seconds=1))


class TestLifecycle:

    def test_activate_starts_billing_period(self):
        plan = make_plan(cycle=BillingCycle.QUARTERLY)
        subscription = active_subscription(plan)

        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.start_date == WEDNESDAY
        assert subscription.end_date == datetime(2026, 6, 4, 10, 0, tzinfo=timezone.utc)
        assert subscription.frequency_used == 0

    def test_activate_twice_is_rejected(self):
        plan = make_plan()
        subscription = active_subscription(plan)

        with pytest.raises(SubscriptionStateError):
            entitlement.activate(subscription, plan, WEDNESDAY)

    def test_cancel_sets_reason_and_timestamp(self):
        plan = make_plan()
        subscription = active_subscription(plan)

        entitlement.cancel(subscription, None, WEDNESDAY)

        assert subscription.status == SubscriptionStatus.CANCELLED
        assert subscription.cancelled_at == WEDNESDAY
        assert subscription.cancellation_reason == entitlement.DEFAULT_CANCELLATION_REASON
        assert subscription.auto_renew is False
        with pytest.raises(SubscriptionStateError):
            entitlement.cancel(subscription, "again", WEDNESDAY)

    def test_roll_over_resets_frequency_after_reset_date(self):
        plan = make_plan()
        subscription = active_subscription(plan)
        entitlement.increment_frequency_usage(subscription)
        monday = datetime(2026, 3, 9, 8, 0, tzinfo=timezone.utc)

        assert entitlement.roll_over(subscription, plan, monday) is True
        assert subscription.frequency_used == 0
        assert subscription.frequency_reset_date == datetime(2026, 3, 16, tzinfo=timezone.utc)
        assert entitlement.roll_over(subscription, plan, monday) is False

    def test_roll_over_expires_after_end_date(self):
        plan = make_plan()
        subscription = active_subscription(plan)

        assert entitlement.roll_over(subscription, plan, subscription.end_date + timedelta(days=1)) is True
        assert subscription.status == SubscriptionStatus.EXPIRED
