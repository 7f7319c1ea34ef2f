"""
Base Mixins for SQLModel ORM

Common columns for entitlement tables.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin(SQLModel):
    """
    Mixin providing timestamp fields for models.

    The engine sets updated_at explicitly on every versioned write.
    """

    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
        description="Record creation timestamp (UTC)"
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
        description="Last update timestamp (UTC)"
    )


class VersionMixin(SQLModel):
    """Optimistic concurrency counter, bumped by every conditional update."""

    version: int = Field(default=0, nullable=False)
