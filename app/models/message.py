"""Message model — a single turn in a Conversation."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.models.base import TimestampMixin, new_uuid


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class Message(TimestampMixin, SQLModel, table=True):
    __tablename__ = "messages"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    conversation_id: uuid.UUID = Field(foreign_key="conversations.id", nullable=False, index=True)
    account_id: uuid.UUID = Field(nullable=False, index=True)

    role: MessageRole = Field(nullable=False)
    content: str = Field(sa_column=Column(Text, nullable=False))

    # Only meaningful for tool-role rows
    tool_name: str | None = Field(default=None, max_length=100)

    # Set on assistant rows written after a completed stream
    input_tokens: int | None = Field(default=None)
    output_tokens: int | None = Field(default=None)


# ── Pydantic schemas ─────────────────────────────────────────

class MessageRead(SQLModel):
    id: uuid.UUID
    conversation_id: uuid.UUID
    role: MessageRole
    content: str
    tool_name: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    created_at: datetime
