"""
Subscription Database Model

SQLModel table for class subscriptions.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Index, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin, VersionMixin


class SubscriptionModel(TimestampMixin, VersionMixin, table=True):
    """
    Subscription table for storing client subscriptions to a brand.

    Maps to the 'subscriptions' table in PostgreSQL. A client holds at most
    one pending or active subscription per brand (partial unique index).
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index(
            "uq_subscriptions_open_client_brand",
            "client_id",
            "brand_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'active')"),
        ),
    )

    id: str = Field(sa_column=Column(PGUUID(as_uuid=False), primary_key=True))
    client_id: str = Field(sa_column=Column(PGUUID(as_uuid=False), index=True, nullable=False))
    brand_id: str = Field(sa_column=Column(PGUUID(as_uuid=False), index=True, nullable=False))
    plan_id: str = Field(sa_column=Column(PGUUID(as_uuid=False), nullable=False))

    status: str = Field(default="pending", max_length=20, index=True)

    # Billing period dates
    start_date: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
    end_date: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
    next_billing_date: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
    current_period_start: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
    current_period_end: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)

    # Usage tracking
    frequency_used: int = Field(default=0, ge=0)
    frequency_reset_date: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)

    payment_intent_id: Optional[str] = Field(default=None, max_length=255, index=True)
    auto_renew: bool = Field(default=True)
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cancellation_reason: Optional[str] = Field(default=None, max_length=500)
