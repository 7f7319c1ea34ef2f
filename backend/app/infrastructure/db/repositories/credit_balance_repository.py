"""
Credit Balance Repository

Data access for credit balances. Packages and transactions travel as JSON
lists inside the balance row.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlmodel import select

from app.domain.entitlements import CreditBalance, CreditPackage, CreditTransaction, new_id, utcnow
from app.infrastructure.db.models.credit_balance import CreditBalanceModel
from app.infrastructure.db.repositories.base_repository import BaseRepository


class CreditBalanceRepository(BaseRepository[CreditBalanceModel, CreditBalance]):
    model = CreditBalanceModel
    entity_name = "CreditBalance"

    async def get_for_client_brand(self, client_id: str, brand_id: str) -> Optional[CreditBalance]:
        statement = (
            select(CreditBalanceModel)
            .where(CreditBalanceModel.client_id == client_id)
            .where(CreditBalanceModel.brand_id == brand_id)
        )
        return await self._first(statement)

    async def list_for_client(self, client_id: Optional[str] = None) -> List[CreditBalance]:
        statement = select(CreditBalanceModel).order_by(CreditBalanceModel.last_activity_date.desc())
        if client_id:
            statement = statement.where(CreditBalanceModel.client_id == client_id)
        return await self._all(statement)

    async def insert_if_absent(self, client_id: str, brand_id: str) -> None:
        """
        Create an empty balance for the pair unless one exists.

        Uses PostgreSQL upsert semantics so concurrent creators converge on
        a single row.
        """
        now = utcnow()
        statement = pg_insert(CreditBalanceModel).values(
            id=new_id(),
            client_id=client_id,
            brand_id=brand_id,
            available_credits=0,
            total_credits_earned=0,
            total_credits_used=0,
            credit_packages=[],
            transactions=[],
            last_activity_date=now,
            version=0,
            created_at=now,
            updated_at=now,
        )
        await self._session.execute(
            statement.on_conflict_do_nothing(index_elements=["client_id", "brand_id"])
        )

    def _to_domain(self, model: CreditBalanceModel) -> CreditBalance:
        return CreditBalance(
            id=str(model.id),
            client_id=str(model.client_id),
            brand_id=str(model.brand_id),
            available_credits=model.available_credits,
            total_credits_earned=model.total_credits_earned,
            total_credits_used=model.total_credits_used,
            credit_packages=[CreditPackage.model_validate(p) for p in model.credit_packages or []],
            transactions=[CreditTransaction.model_validate(t) for t in model.transactions or []],
            last_activity_date=model.last_activity_date,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_values(self, entity: CreditBalance) -> Dict[str, Any]:
        return {
            "client_id": entity.client_id,
            "brand_id": entity.brand_id,
            "available_credits": entity.available_credits,
            "total_credits_earned": entity.total_credits_earned,
            "total_credits_used": entity.total_credits_used,
            "credit_packages": [p.model_dump(mode="json") for p in entity.credit_packages],
            "transactions": [t.model_dump(mode="json") for t in entity.transactions],
            "last_activity_date": entity.last_activity_date,
            "created_at": entity.created_at,
            "updated_at": entity.updated_at,
        }
