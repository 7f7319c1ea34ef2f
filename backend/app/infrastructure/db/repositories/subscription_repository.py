"""
Subscription Repository

Data access layer for subscription persistence.
"""

from typing import Any, Dict, Iterable, List, Optional

from sqlmodel import select

from app.domain.entitlements import Subscription, SubscriptionStatus
from app.infrastructure.db.models.subscription import SubscriptionModel
from app.infrastructure.db.repositories.base_repository import BaseRepository


class SubscriptionRepository(BaseRepository[SubscriptionModel, Subscription]):
    """
    Repository for subscription data access.

    Implements queries with domain model mapping; writes go through the
    versioned base methods.
    """

    model = SubscriptionModel
    entity_name = "Subscription"

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def find_for_client_brand(
        self,
        client_id: str,
        brand_id: str,
        statuses: Iterable[SubscriptionStatus],
    ) -> Optional[Subscription]:
        """Most recent subscription of the pair in one of the given statuses."""
        statement = (
            select(SubscriptionModel)
            .where(SubscriptionModel.client_id == client_id)
            .where(SubscriptionModel.brand_id == brand_id)
            .where(SubscriptionModel.status.in_([s.value for s in statuses]))
            .order_by(SubscriptionModel.created_at.desc())
        )
        return await self._first(statement)

    async def list_by_status(self, statuses: Iterable[SubscriptionStatus]) -> List[Subscription]:
        statement = select(SubscriptionModel).where(
            SubscriptionModel.status.in_([s.value for s in statuses])
        )
        return await self._all(statement)

    async def list_for_client(
        self,
        client_id: str,
        statuses: Optional[Iterable[SubscriptionStatus]] = None,
        brand_id: Optional[str] = None,
    ) -> List[Subscription]:
        """A client's subscriptions, newest first."""
        statement = select(SubscriptionModel).where(SubscriptionModel.client_id == client_id)
        if statuses is not None:
            statement = statement.where(SubscriptionModel.status.in_([s.value for s in statuses]))
        if brand_id:
            statement = statement.where(SubscriptionModel.brand_id == brand_id)
        return await self._all(statement.order_by(SubscriptionModel.created_at.desc()))

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, model: SubscriptionModel) -> Subscription:
        """Convert database model to domain entity."""
        return Subscription(
            id=str(model.id),
            client_id=str(model.client_id),
            brand_id=str(model.brand_id),
            plan_id=str(model.plan_id),
            status=SubscriptionStatus(model.status),
            start_date=model.start_date,
            end_date=model.end_date,
            next_billing_date=model.next_billing_date,
            current_period_start=model.current_period_start,
            current_period_end=model.current_period_end,
            frequency_used=model.frequency_used or 0,
            frequency_reset_date=model.frequency_reset_date,
            payment_intent_id=model.payment_intent_id,
            auto_renew=model.auto_renew,
            cancelled_at=model.cancelled_at,
            cancellation_reason=model.cancellation_reason,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_values(self, entity: Subscription) -> Dict[str, Any]:
        """Column values for a domain entity."""
        return {
            "client_id": entity.client_id,
            "brand_id": entity.brand_id,
            "plan_id": entity.plan_id,
            "status": entity.status.value,
            "start_date": entity.start_date,
            "end_date": entity.end_date,
            "next_billing_date": entity.next_billing_date,
            "current_period_start": entity.current_period_start,
            "current_period_end": entity.current_period_end,
            "frequency_used": entity.frequency_used,
            "frequency_reset_date": entity.frequency_reset_date,
            "payment_intent_id": entity.payment_intent_id,
            "auto_renew": entity.auto_renew,
            "cancelled_at": entity.cancelled_at,
            "cancellation_reason": entity.cancellation_reason,
            "created_at": entity.created_at,
            "updated_at": entity.updated_at,
        }
