"""
Subscription Service

Application service for subscription lifecycle and booking eligibility.
Time-driven transitions (frequency resets, expiry) are applied on read and
by the maintenance sweeps, always through versioned writes.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from app.domain import subscription_entitlement as entitlement
from app.domain.entitlements import (
    Payment,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    utcnow,
)
from app.domain.interfaces import EntitlementStore
from app.domain.schemas import BookingEligibility, SubscriptionDetail, SubscriptionStats
from app.infrastructure.exceptions import (
    PlanNotFoundError,
    SubscriptionNotEligibleError,
    SubscriptionNotFoundError,
)
from app.services.concurrency import retry_on_conflict


logger = logging.getLogger(__name__)


class SubscriptionService:
    """
    Subscriptions of clients to brands.

    Args:
        store: EntitlementStore implementation
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(self, store: EntitlementStore, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock

    async def _plan_for(self, subscription: Subscription) -> SubscriptionPlan:
        plan = await self._store.get_subscription_plan(subscription.plan_id)
        if plan is None:
            raise PlanNotFoundError(
                "Subscription plan not found",
                {"plan_id": subscription.plan_id, "subscription_id": subscription.id},
            )
        return plan

    async def _load(self, subscription_id: str, client_id: Optional[str] = None) -> Subscription:
        subscription = await self._store.get_subscription(subscription_id)
        if subscription is None or (client_id and subscription.client_id != client_id):
            raise SubscriptionNotFoundError(
                "Subscription not found",
                {"subscription_id": subscription_id},
            )
        return subscription

    # =========================================================================
    # Payment outcomes
    # =========================================================================

    async def activate_for_payment(self, payment: Payment) -> Optional[Subscription]:
        """
        Activate the subscription a succeeded payment paid for.

        Idempotent: an already active subscription is returned unchanged.
        """
        if not payment.related_entitlement_id:
            logger.warning(f"Payment {payment.id} has no linked subscription to activate")
            return None

        async def attempt() -> Subscription:
            subscription = await self._load(payment.related_entitlement_id)
            if subscription.status != SubscriptionStatus.PENDING:
                if subscription.status != SubscriptionStatus.ACTIVE:
                    logger.warning(
                        f"Subscription {subscription.id} is {subscription.status.value}; "
                        f"not activating for payment {payment.id}"
                    )
                return subscription
            plan = await self._plan_for(subscription)
            expected_version = subscription.version
            entitlement.activate(subscription, plan, self._clock())
            stored = await self._store.update_subscription(subscription, expected_version)
            logger.info(
                f"Activated subscription {stored.id} for client {stored.client_id} "
                f"until {stored.end_date.isoformat()}"
            )
            return stored

        return await retry_on_conflict(attempt, "activate subscription")

    async def cancel_for_failed_payment(self, payment: Payment) -> Optional[Subscription]:
        """Cancel a still-pending subscription whose payment failed."""
        if not payment.related_entitlement_id:
            return None

        async def attempt() -> Subscription:
            subscription = await self._load(payment.related_entitlement_id)
            if subscription.status != SubscriptionStatus.PENDING:
                return subscription
            expected_version = subscription.version
            entitlement.cancel(subscription, entitlement.PAYMENT_FAILED_REASON, self._clock())
            stored = await self._store.update_subscription(subscription, expected_version)
            logger.info(f"Cancelled pending subscription {stored.id} after failed payment {payment.id}")
            return stored

        return await retry_on_conflict(attempt, "cancel unpaid subscription")

    # =========================================================================
    # Client operations
    # =========================================================================

    async def cancel_subscription(
        self,
        subscription_id: str,
        client_id: str,
        reason: Optional[str] = None,
    ) -> Subscription:
        async def attempt() -> Subscription:
            subscription = await self._load(subscription_id, client_id)
            expected_version = subscription.version
            entitlement.cancel(subscription, reason, self._clock())
            return await self._store.update_subscription(subscription, expected_version)

        stored = await retry_on_conflict(attempt, "cancel subscription")
        logger.info(f"Client {client_id} cancelled subscription {subscription_id}")
        return stored

    async def _rolled_over(self, subscription: Subscription, plan: SubscriptionPlan) -> Subscription:
        """Persist time-driven transitions that are due, retrying on conflict."""
        if not entitlement.roll_over(subscription.model_copy(deep=True), plan, self._clock()):
            return subscription

        async def attempt() -> Subscription:
            current = await self._load(subscription.id)
            expected_version = current.version
            if not entitlement.roll_over(current, plan, self._clock()):
                return current
            return await self._store.update_subscription(current, expected_version)

        return await retry_on_conflict(attempt, "roll over subscription")

    async def check_booking_eligibility(
        self,
        client_id: str,
        brand_id: str,
        class_id: Optional[str] = None,
    ) -> BookingEligibility:
        subscription = await self._store.find_subscription(
            client_id, brand_id, [SubscriptionStatus.ACTIVE]
        )
        if subscription is None:
            return BookingEligibility(
                eligible=False,
                reasons=[entitlement.REASON_NO_SUBSCRIPTION],
            )

        plan = await self._plan_for(subscription)
        subscription = await self._rolled_over(subscription, plan)
        now = self._clock()
        reasons = entitlement.booking_ineligibility_reasons(subscription, plan, class_id, now)

        return BookingEligibility(
            eligible=not reasons,
            reasons=reasons,
            subscription_id=subscription.id,
            status=subscription.status,
            remaining_frequency=entitlement.remaining_frequency(subscription, plan),
            frequency_reset_date=subscription.frequency_reset_date,
            current_period_end=subscription.current_period_end,
        )

    async def record_subscription_booking(
        self,
        subscription_id: str,
        client_id: str,
        class_id: Optional[str] = None,
    ) -> Subscription:
        """Count one booking against the subscription's frequency limit."""

        async def attempt() -> Subscription:
            subscription = await self._load(subscription_id, client_id)
            plan = await self._plan_for(subscription)
            now = self._clock()
            expected_version = subscription.version
            entitlement.roll_over(subscription, plan, now)

            reasons = entitlement.booking_ineligibility_reasons(subscription, plan, class_id, now)
            if reasons:
                raise SubscriptionNotEligibleError(reasons[0], reasons)

            entitlement.increment_frequency_usage(subscription)
            return await self._store.update_subscription(subscription, expected_version)

        stored = await retry_on_conflict(attempt, "record subscription booking")
        logger.info(
            f"Recorded booking on subscription {subscription_id} "
            f"({stored.frequency_used} used this period)"
        )
        return stored

    # =========================================================================
    # Reads
    # =========================================================================

    async def _detail(self, subscription: Subscription) -> SubscriptionDetail:
        plan = await self._plan_for(subscription)
        subscription = await self._rolled_over(subscription, plan)
        return SubscriptionDetail(
            subscription=subscription,
            remaining_frequency=entitlement.remaining_frequency(subscription, plan),
            is_valid_for_booking=entitlement.is_valid_for_booking(subscription, self._clock()),
        )

    async def list_client_subscriptions(
        self,
        client_id: str,
        status: Optional[SubscriptionStatus] = None,
        brand_id: Optional[str] = None,
    ) -> List[SubscriptionDetail]:
        subscriptions = await self._store.list_client_subscriptions(
            client_id, [status] if status else None, brand_id
        )
        return [await self._detail(subscription) for subscription in subscriptions]

    async def get_subscription(self, subscription_id: str, client_id: str) -> SubscriptionDetail:
        return await self._detail(await self._load(subscription_id, client_id))

    async def get_subscription_stats(
        self, subscription_id: str, client_id: Optional[str] = None
    ) -> SubscriptionStats:
        """Bookings counted this period against the plan's frequency limit."""
        subscription = await self._load(subscription_id, client_id)
        plan = await self._plan_for(subscription)
        subscription = await self._rolled_over(subscription, plan)

        utilization = 0.0
        if not plan.frequency_limit.is_unlimited:
            utilization = round(subscription.frequency_used / plan.frequency_limit.count * 100, 2)

        return SubscriptionStats(
            subscription_id=subscription.id,
            current_period_bookings=subscription.frequency_used,
            remaining_frequency=entitlement.remaining_frequency(subscription, plan),
            utilization_rate=utilization,
        )

    # =========================================================================
    # Maintenance sweeps
    # =========================================================================

    async def _sweep(self, name: str, due: Callable[[Subscription, datetime], bool]) -> int:
        changed = 0
        for candidate in await self._store.list_subscriptions([SubscriptionStatus.ACTIVE]):
            if not due(candidate, self._clock()):
                continue
            plan = await self._plan_for(candidate)

            async def attempt(subscription_id: str = candidate.id) -> bool:
                subscription = await self._load(subscription_id)
                expected_version = subscription.version
                if not entitlement.roll_over(subscription, plan, self._clock()):
                    return False
                await self._store.update_subscription(subscription, expected_version)
                return True

            if await retry_on_conflict(attempt, name):
                changed += 1

        logger.info(f"{name}: {changed} subscriptions updated")
        return changed

    async def expire_ended_subscriptions(self) -> int:
        """Mark active subscriptions past their end date as expired."""
        return await self._sweep(
            "expire subscriptions",
            lambda sub, now: now > sub.end_date,
        )

    async def reset_due_frequencies(self) -> int:
        """Reset frequency counters whose reset date has passed."""
        return await self._sweep(
            "reset subscription frequencies",
            lambda sub, now: now <= sub.end_date and now >= sub.frequency_reset_date,
        )
