"""Notes CRUD with search, tag filter, sort and pagination."""

import json
import uuid
from enum import StrEnum

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import func, or_
from sqlmodel import select

from app.api.deps import Auth, Session
from app.models.base import utcnow
from app.models.note import Note, NoteCreate, NoteRead, NoteUpdate

router = APIRouter(prefix="/notes", tags=["notes"])


class NoteSortField(StrEnum):
    UPDATED_AT = "updated_at"
    CREATED_AT = "created_at"
    TITLE = "title"


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"


class NotePage(BaseModel):
    data: list[NoteRead]
    total: int
    page: int
    page_size: int
    has_more: bool


def _encode_tags(tags: list[str]) -> str:
    # Order-preserving de-duplication
    return json.dumps(list(dict.fromkeys(tags)))


@router.post("", response_model=NoteRead, status_code=status.HTTP_201_CREATED)
async def create_note(body: NoteCreate, auth: Auth, session: Session) -> NoteRead:
    note = Note(
        account_id=auth.account_id,
        title=body.title,
        content=body.content,
        tags=_encode_tags(body.tags),
        is_pinned=body.is_pinned,
    )
    session.add(note)
    await session.commit()
    await session.refresh(note)
    return NoteRead.from_note(note)


@router.get("", response_model=NotePage)
async def list_notes(
    auth: Auth,
    session: Session,
    search: str | None = Query(default=None, max_length=500),
    tag: list[str] | None = Query(default=None),
    sort_by: NoteSortField = NoteSortField.UPDATED_AT,
    sort_order: SortOrder = SortOrder.DESC,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> NotePage:
    """List the caller's notes.

    ``search`` matches title or content case-insensitively; repeated ``tag``
    parameters match notes carrying any of the given tags.
    """
    filters = [Note.account_id == auth.account_id]
    if search:
        filters.append(or_(
            Note.title.icontains(search, autoescape=True),  # type: ignore[union-attr]
            Note.content.icontains(search, autoescape=True),  # type: ignore[union-attr]
        ))
    if tag:
        # Tags are stored as a JSON array; match the encoded element
        filters.append(or_(*(Note.tags.contains(json.dumps(t), autoescape=True) for t in tag)))  # type: ignore[union-attr]

    total = (await session.execute(
        select(func.count()).select_from(Note).where(*filters)
    )).scalar_one()

    column = getattr(Note, sort_by.value)
    ordering = column.asc() if sort_order is SortOrder.ASC else column.desc()
    offset = (page - 1) * page_size
    stmt = (
        select(Note)
        .where(*filters)
        .order_by(ordering, Note.id)
        .offset(offset)
        .limit(page_size)
    )
    notes = (await session.execute(stmt)).scalars().all()

    return NotePage(
        data=[NoteRead.from_note(n) for n in notes],
        total=total,
        page=page,
        page_size=page_size,
        has_more=total > offset + page_size,
    )


@router.get("/{note_id}", response_model=NoteRead)
async def get_note(note_id: uuid.UUID, auth: Auth, session: Session) -> NoteRead:
    note = await _get_or_404(note_id, auth.account_id, session)
    return NoteRead.from_note(note)


@router.patch("/{note_id}", response_model=NoteRead)
async def update_note(
    note_id: uuid.UUID,
    body: NoteUpdate,
    auth: Auth,
    session: Session,
) -> NoteRead:
    note = await _get_or_404(note_id, auth.account_id, session)

    update_data = body.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        if value is None:
            continue
        if field == "tags":
            value = _encode_tags(value)
        setattr(note, field, value)

    note.updated_at = utcnow()
    session.add(note)
    await session.commit()
    await session.refresh(note)
    return NoteRead.from_note(note)


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(note_id: uuid.UUID, auth: Auth, session: Session) -> None:
    note = await _get_or_404(note_id, auth.account_id, session)
    await session.delete(note)
    await session.commit()


async def _get_or_404(note_id: uuid.UUID, account_id: uuid.UUID, session) -> Note:
    stmt = select(Note).where(Note.id == note_id, Note.account_id == account_id)
    result = await session.execute(stmt)
    note = result.scalar_one_or_none()
    if note is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found")
    return note
