"""
SQLModel ORM Models for the Entitlement Engine

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from app.infrastructure.db.models.base import (
    TimestampMixin,
    VersionMixin,
)
from app.infrastructure.db.models.catalog import (
    ClientModel,
    BrandModel,
    SubscriptionPlanModel,
    CreditPlanModel,
)
from app.infrastructure.db.models.payment import PaymentModel
from app.infrastructure.db.models.subscription import SubscriptionModel
from app.infrastructure.db.models.credit_balance import CreditBalanceModel
from app.infrastructure.db.models.webhook_event import ProcessedWebhookEventModel


__all__ = [
    # Base
    "TimestampMixin",
    "VersionMixin",
    # Catalog
    "ClientModel",
    "BrandModel",
    "SubscriptionPlanModel",
    "CreditPlanModel",
    # Entitlements
    "PaymentModel",
    "SubscriptionModel",
    "CreditBalanceModel",
    # Webhooks
    "ProcessedWebhookEventModel",
]
