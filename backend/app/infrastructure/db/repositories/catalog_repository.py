"""
Catalog Repository

Read-only lookups of clients, brands and plans.
"""

from typing import Dict, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.config.settings import get_settings
from app.domain.entitlements import (
    BillingCycle,
    Brand,
    Client,
    CreditPlan,
    FrequencyLimit,
    FrequencyPeriod,
    RecordStatus,
    SubscriptionPlan,
)
from app.infrastructure.db.models.catalog import (
    BrandModel,
    ClientModel,
    CreditPlanModel,
    SubscriptionPlanModel,
)


class CatalogRepository:
    """Maps catalog rows to domain entities. No writes."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_client(self, client_id: str) -> Optional[Client]:
        model = await self._session.get(ClientModel, client_id)
        if not model:
            return None
        return Client(id=str(model.id), email=model.email, status=RecordStatus(model.status))

    async def get_brand(self, brand_id: str) -> Optional[Brand]:
        model = await self._session.get(BrandModel, brand_id)
        if not model:
            return None
        return Brand(
            id=str(model.id),
            name=model.name,
            status=RecordStatus(model.status),
            gateway_account_id=model.gateway_account_id,
            gateway_onboarding_complete=model.gateway_onboarding_complete,
        )

    async def get_subscription_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        model = await self._session.get(SubscriptionPlanModel, plan_id)
        return self._subscription_plan_to_domain(model) if model else None

    async def get_credit_plan(self, plan_id: str) -> Optional[CreditPlan]:
        model = await self._session.get(CreditPlanModel, plan_id)
        return self._credit_plan_to_domain(model) if model else None

    async def get_credit_plans(self, plan_ids: Iterable[str]) -> Dict[str, CreditPlan]:
        ids = list(set(plan_ids))
        if not ids:
            return {}
        result = await self._session.execute(select(CreditPlanModel).where(CreditPlanModel.id.in_(ids)))
        plans = [self._credit_plan_to_domain(model) for model in result.scalars().all()]
        return {plan.id: plan for plan in plans}

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _subscription_plan_to_domain(self, model: SubscriptionPlanModel) -> SubscriptionPlan:
        return SubscriptionPlan(
            id=str(model.id),
            brand_id=str(model.brand_id),
            name=model.name,
            price=model.price,
            currency=(model.currency or get_settings().default_currency).upper(),
            billing_cycle=BillingCycle(model.billing_cycle),
            included_class_ids=list(model.included_class_ids or []),
            frequency_limit=FrequencyLimit(
                count=model.frequency_count,
                period=FrequencyPeriod(model.frequency_period),
                reset_day=model.frequency_reset_day,
            ),
            status=RecordStatus(model.status),
        )

    def _credit_plan_to_domain(self, model: CreditPlanModel) -> CreditPlan:
        return CreditPlan(
            id=str(model.id),
            brand_id=str(model.brand_id),
            name=model.name,
            price=model.price,
            currency=(model.currency or get_settings().default_currency).upper(),
            credit_amount=model.credit_amount,
            bonus_credits=model.bonus_credits,
            validity_period_days=model.validity_period_days,
            included_class_ids=list(model.included_class_ids or []),
            status=RecordStatus(model.status),
        )
