"""
Payment Repository

Data access for payments, keyed by id and by gateway intent id.
"""

from typing import Any, Dict, List, Optional

from sqlmodel import select

from app.domain.entitlements import GatewayEvent, Payment, PaymentStatus, PaymentType
from app.infrastructure.db.models.payment import PaymentModel
from app.infrastructure.db.repositories.base_repository import BaseRepository


class PaymentRepository(BaseRepository[PaymentModel, Payment]):
    model = PaymentModel
    entity_name = "Payment"

    async def get_by_intent_id(self, intent_id: str) -> Optional[Payment]:
        return await self._first(
            select(PaymentModel).where(PaymentModel.external_intent_id == intent_id)
        )

    async def list_recent(
        self,
        client_id: Optional[str] = None,
        brand_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Payment]:
        statement = select(PaymentModel)
        if client_id:
            statement = statement.where(PaymentModel.client_id == client_id)
        if brand_id:
            statement = statement.where(PaymentModel.brand_id == brand_id)
        statement = statement.order_by(PaymentModel.created_at.desc()).offset(offset).limit(limit)
        return await self._all(statement)

    def _to_domain(self, model: PaymentModel) -> Payment:
        return Payment(
            id=str(model.id),
            client_id=str(model.client_id),
            brand_id=str(model.brand_id),
            type=PaymentType(model.type),
            status=PaymentStatus(model.status),
            amount=model.amount,
            currency=model.currency,
            external_intent_id=model.external_intent_id,
            related_entitlement_id=str(model.related_entitlement_id) if model.related_entitlement_id else None,
            plan_id=str(model.plan_id) if model.plan_id else None,
            payment_method_id=model.payment_method_id,
            failure_reason=model.failure_reason,
            processed_at=model.processed_at,
            refunded_amount=model.refunded_amount or 0,
            refund_reason=model.refund_reason,
            refunded_at=model.refunded_at,
            metadata=dict(model.payment_metadata or {}),
            gateway_events=[GatewayEvent.model_validate(e) for e in model.gateway_events or []],
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_values(self, entity: Payment) -> Dict[str, Any]:
        return {
            "client_id": entity.client_id,
            "brand_id": entity.brand_id,
            "type": entity.type.value,
            "status": entity.status.value,
            "amount": entity.amount,
            "currency": entity.currency,
            "external_intent_id": entity.external_intent_id,
            "related_entitlement_id": entity.related_entitlement_id,
            "plan_id": entity.plan_id,
            "payment_method_id": entity.payment_method_id,
            "failure_reason": entity.failure_reason,
            "processed_at": entity.processed_at,
            "refunded_amount": entity.refunded_amount,
            "refund_reason": entity.refund_reason,
            "refunded_at": entity.refunded_at,
            "payment_metadata": dict(entity.metadata),
            "gateway_events": [e.model_dump(mode="json") for e in entity.gateway_events],
            "created_at": entity.created_at,
            "updated_at": entity.updated_at,
        }
