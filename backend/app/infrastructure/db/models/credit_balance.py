"""
Credit Balance Database Model

One row per (client, brand). Packages and ledger entries are embedded JSON
lists owned by the aggregate and rewritten with each versioned update.
"""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin, VersionMixin


class CreditBalanceModel(TimestampMixin, VersionMixin, table=True):
    """Maps to the 'credit_balances' table in PostgreSQL."""

    __tablename__ = "credit_balances"
    __table_args__ = (
        UniqueConstraint("client_id", "brand_id", name="uq_credit_balances_client_brand"),
    )

    id: str = Field(sa_column=Column(PGUUID(as_uuid=False), primary_key=True))
    client_id: str = Field(sa_column=Column(PGUUID(as_uuid=False), index=True, nullable=False))
    brand_id: str = Field(sa_column=Column(PGUUID(as_uuid=False), index=True, nullable=False))

    available_credits: int = Field(default=0, ge=0, index=True)
    total_credits_earned: int = Field(default=0, ge=0)
    total_credits_used: int = Field(default=0, ge=0)

    credit_packages: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    transactions: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    last_activity_date: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
