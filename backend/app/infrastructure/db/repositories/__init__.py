"""
Repository Layer for the Entitlement Engine

Exports repository classes and the SQL store adapter.
"""

from app.infrastructure.db.repositories.base_repository import (
    BaseRepository,
    IReadRepository,
    IVersionedWriteRepository,
)
from app.infrastructure.db.repositories.catalog_repository import CatalogRepository
from app.infrastructure.db.repositories.payment_repository import PaymentRepository
from app.infrastructure.db.repositories.subscription_repository import SubscriptionRepository
from app.infrastructure.db.repositories.credit_balance_repository import CreditBalanceRepository
from app.infrastructure.db.repositories.entitlement_store import (
    SqlEntitlementStore,
    get_entitlement_store,
)


__all__ = [
    # Base
    "BaseRepository",
    "IReadRepository",
    "IVersionedWriteRepository",
    # Repositories
    "CatalogRepository",
    "PaymentRepository",
    "SubscriptionRepository",
    "CreditBalanceRepository",
    # Store
    "SqlEntitlementStore",
    "get_entitlement_store",
]
