"""
Processed Webhook Event Model

Gateway event ids already applied, for replay detection.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel


class ProcessedWebhookEventModel(SQLModel, table=True):
    __tablename__ = "processed_webhook_events"

    event_id: str = Field(sa_column=Column(String(255), primary_key=True))
    event_type: str = Field(max_length=100)
    processed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_type=DateTime(timezone=True),
        nullable=False,
        index=True,
    )
