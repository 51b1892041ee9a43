"""Note model — free-form markdown notes, searchable from chat."""

import json
import uuid
from datetime import datetime
from typing import Annotated

from pydantic import StringConstraints
from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from app.models.base import TimestampMixin, new_uuid

Tag = Annotated[str, StringConstraints(min_length=1, max_length=50)]


class Note(TimestampMixin, SQLModel, table=True):
    __tablename__ = "notes"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    account_id: uuid.UUID = Field(nullable=False, index=True)

    title: str = Field(max_length=300, nullable=False)
    content: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))

    # JSON array of tag strings
    tags: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    is_pinned: bool = Field(default=False)

    @property
    def tag_list(self) -> list[str]:
        return json.loads(self.tags or "[]")


# ── Pydantic schemas ─────────────────────────────────────────

class NoteCreate(SQLModel):
    title: str = Field(min_length=1, max_length=300)
    content: str = Field(default="", max_length=100_000)
    tags: list[Tag] = Field(default_factory=list, max_length=10)
    is_pinned: bool = False


class NoteUpdate(SQLModel):
    title: str | None = Field(default=None, min_length=1, max_length=300)
    content: str | None = Field(default=None, max_length=100_000)
    tags: list[Tag] | None = Field(default=None, max_length=10)
    is_pinned: bool | None = None


class NoteRead(SQLModel):
    id: uuid.UUID
    title: str
    content: str
    tags: list[str]
    is_pinned: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_note(cls, note: Note) -> "NoteRead":
        return cls(
            id=note.id,
            title=note.title,
            content=note.content,
            tags=note.tag_list,
            is_pinned=note.is_pinned,
            created_at=note.created_at,
            updated_at=note.updated_at,
        )
