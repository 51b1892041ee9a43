"""Conversation model — a chat thread owned by one account."""

import uuid
from datetime import datetime

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.models.base import TimestampMixin, new_uuid

# Assigned at creation; replaced once from the first user message
PLACEHOLDER_TITLE = "New conversation"


class Conversation(TimestampMixin, SQLModel, table=True):
    __tablename__ = "conversations"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    account_id: uuid.UUID = Field(nullable=False, index=True)

    title: str = Field(default=PLACEHOLDER_TITLE, max_length=500)
    system_prompt: str | None = Field(default=None, sa_column=Column(Text, nullable=True))


# ── Pydantic schemas ─────────────────────────────────────────

class ConversationCreate(SQLModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    system_prompt: str | None = Field(default=None, max_length=8000)


class ConversationUpdate(SQLModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    system_prompt: str | None = Field(default=None, max_length=8000)


class ConversationRead(SQLModel):
    id: uuid.UUID
    title: str
    system_prompt: str | None
    created_at: datetime
    updated_at: datetime
