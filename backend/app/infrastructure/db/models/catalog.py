"""
Catalog Database Models

Clients, brands and plans. The engine only reads these tables; they are
owned by the brand and account management surfaces.
"""

from typing import Optional

from sqlalchemy import JSON, Column, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin


class ClientModel(TimestampMixin, table=True):
    """Maps to the 'clients' table."""

    __tablename__ = "clients"

    id: str = Field(sa_column=Column(PGUUID(as_uuid=False), primary_key=True))
    email: Optional[str] = Field(default=None, max_length=255)
    status: str = Field(default="active", max_length=20)


class BrandModel(TimestampMixin, table=True):
    """Maps to the 'brands' table."""

    __tablename__ = "brands"

    id: str = Field(sa_column=Column(PGUUID(as_uuid=False), primary_key=True))
    name: str = Field(max_length=255)
    status: str = Field(default="active", max_length=20)

    # Stripe Connect
    gateway_account_id: Optional[str] = Field(default=None, max_length=255)
    gateway_onboarding_complete: bool = Field(default=False)


class SubscriptionPlanModel(TimestampMixin, table=True):
    """Maps to the 'subscription_plans' table."""

    __tablename__ = "subscription_plans"

    id: str = Field(sa_column=Column(PGUUID(as_uuid=False), primary_key=True))
    brand_id: str = Field(sa_column=Column(PGUUID(as_uuid=False), index=True, nullable=False))
    name: str = Field(max_length=100)
    price: int = Field(ge=0)
    currency: str = Field(default="USD", max_length=3)
    billing_cycle: str = Field(default="monthly", max_length=20)
    included_class_ids: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    frequency_count: int = Field(default=0, ge=0)
    frequency_period: str = Field(default="week", max_length=10)
    frequency_reset_day: int = Field(default=1)
    status: str = Field(default="active", max_length=20)


class CreditPlanModel(TimestampMixin, table=True):
    """Maps to the 'credit_plans' table."""

    __tablename__ = "credit_plans"

    id: str = Field(sa_column=Column(PGUUID(as_uuid=False), primary_key=True))
    brand_id: str = Field(sa_column=Column(PGUUID(as_uuid=False), index=True, nullable=False))
    name: str = Field(sa_column=Column(String(100), nullable=False))
    price: int = Field(ge=0)
    currency: str = Field(default="USD", max_length=3)
    credit_amount: int = Field(ge=1)
    bonus_credits: int = Field(default=0, ge=0)
    validity_period_days: int = Field(ge=1)
    included_class_ids: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    status: str = Field(default="active", max_length=20)
