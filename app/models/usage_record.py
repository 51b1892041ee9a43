"""UsageRecord model — one row per completed assistant turn."""

import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, new_uuid


class UsageRecord(TimestampMixin, SQLModel, table=True):
    __tablename__ = "usage_records"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    account_id: uuid.UUID = Field(nullable=False, index=True)

    # Cleared (not deleted) when the conversation goes away so quota stays intact
    conversation_id: uuid.UUID | None = Field(default=None, index=True)
    # Assistant message, or the user message when the assistant row could not be written
    message_id: uuid.UUID | None = Field(default=None, unique=True)

    model: str = Field(max_length=100, nullable=False)
    input_tokens: int = Field(default=0)
    output_tokens: int = Field(default=0)
    estimated_cost_usd: float = Field(default=0.0)


# ── Pydantic schemas ─────────────────────────────────────────

class UsageRecordRead(SQLModel):
    id: uuid.UUID
    conversation_id: uuid.UUID | None
    message_id: uuid.UUID | None
    model: str
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float
    created_at: datetime
