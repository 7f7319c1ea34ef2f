"""
Payment Database Model

SQLModel table for payments. One row per gateway payment intent; the
gateway events applied to it are stored as a JSON list.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin, VersionMixin


class PaymentModel(TimestampMixin, VersionMixin, table=True):
    """
    Payments table.

    Maps to the 'payments' table in PostgreSQL. `version` guards every
    status transition (compare-and-swap).
    """

    __tablename__ = "payments"

    id: str = Field(sa_column=Column(PGUUID(as_uuid=False), primary_key=True))
    client_id: str = Field(sa_column=Column(PGUUID(as_uuid=False), index=True, nullable=False))
    brand_id: str = Field(sa_column=Column(PGUUID(as_uuid=False), index=True, nullable=False))

    type: str = Field(max_length=20)
    status: str = Field(default="pending", max_length=20, index=True)
    amount: int = Field(ge=0)
    currency: str = Field(default="USD", max_length=3)

    # Gateway linkage
    external_intent_id: str = Field(sa_column=Column(String(255), unique=True, index=True, nullable=False))
    payment_method_id: Optional[str] = Field(default=None, max_length=255)

    # Entitlement linkage
    related_entitlement_id: Optional[str] = Field(
        default=None, sa_column=Column(PGUUID(as_uuid=False), nullable=True)
    )
    plan_id: Optional[str] = Field(default=None, sa_column=Column(PGUUID(as_uuid=False), nullable=True))

    failure_reason: Optional[str] = Field(default=None, max_length=500)
    processed_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    # Refunds
    refunded_amount: int = Field(default=0, ge=0)
    refund_reason: Optional[str] = Field(default=None, max_length=500)
    refunded_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    payment_metadata: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    gateway_events: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
