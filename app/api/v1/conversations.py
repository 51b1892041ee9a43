"""Conversation CRUD — all queries scoped to the caller's account."""

import uuid

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import delete, update
from sqlmodel import select

from app.api.deps import Auth, Session
from app.models.base import utcnow
from app.models.conversation import (
    PLACEHOLDER_TITLE,
    Conversation,
    ConversationCreate,
    ConversationRead,
    ConversationUpdate,
)
from app.models.message import Message, MessageRead
from app.models.usage_record import UsageRecord

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.post("", response_model=ConversationRead, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    body: ConversationCreate,
    auth: Auth,
    session: Session,
) -> ConversationRead:
    conversation = Conversation(
        account_id=auth.account_id,
        title=body.title or PLACEHOLDER_TITLE,
        system_prompt=body.system_prompt,
    )
    session.add(conversation)
    await session.commit()
    await session.refresh(conversation)
    return ConversationRead.model_validate(conversation)


@router.get("", response_model=list[ConversationRead])
async def list_conversations(
    auth: Auth,
    session: Session,
    limit: int = 50,
    offset: int = 0,
) -> list[ConversationRead]:
    stmt = (
        select(Conversation)
        .where(Conversation.account_id == auth.account_id)
        .order_by(Conversation.updated_at.desc())  # type: ignore[union-attr]
        .limit(min(limit, 100))
        .offset(offset)
    )
    result = await session.execute(stmt)
    return [ConversationRead.model_validate(c) for c in result.scalars().all()]


@router.get("/{conversation_id}", response_model=ConversationRead)
async def get_conversation(
    conversation_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> ConversationRead:
    conversation = await _get_or_404(conversation_id, auth.account_id, session)
    return ConversationRead.model_validate(conversation)


@router.get("/{conversation_id}/messages", response_model=list[MessageRead])
async def get_conversation_messages(
    conversation_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> list[MessageRead]:
    await _get_or_404(conversation_id, auth.account_id, session)  # verify access

    stmt = (
        select(Message)
        .where(Message.conversation_id == conversation_id, Message.account_id == auth.account_id)
        .order_by(Message.created_at.asc())  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return [MessageRead.model_validate(m) for m in result.scalars().all()]


@router.patch("/{conversation_id}", response_model=ConversationRead)
async def update_conversation(
    conversation_id: uuid.UUID,
    body: ConversationUpdate,
    auth: Auth,
    session: Session,
) -> ConversationRead:
    conversation = await _get_or_404(conversation_id, auth.account_id, session)

    for field, value in body.model_dump(exclude_unset=True).items():
        if field == "title" and value is None:
            continue
        setattr(conversation, field, value)

    conversation.updated_at = utcnow()
    session.add(conversation)
    await session.commit()
    await session.refresh(conversation)
    return ConversationRead.model_validate(conversation)


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: uuid.UUID,
    auth: Auth,
    session: Session,
) -> None:
    conversation = await _get_or_404(conversation_id, auth.account_id, session)

    # Usage rows outlive the thread: they still count against this month's quota
    await session.execute(
        update(UsageRecord)
        .where(
            UsageRecord.account_id == auth.account_id,
            UsageRecord.conversation_id == conversation.id,
        )
        .values(conversation_id=None, message_id=None)
    )
    await session.execute(delete(Message).where(Message.conversation_id == conversation.id))
    await session.delete(conversation)
    await session.commit()


# ── Internal helper ───────────────────────────────────────────

async def _get_or_404(
    conversation_id: uuid.UUID,
    account_id: uuid.UUID,
    session,
) -> Conversation:
    stmt = select(Conversation).where(
        Conversation.id == conversation_id,
        Conversation.account_id == account_id,
    )
    result = await session.execute(stmt)
    conversation = result.scalar_one_or_none()
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation
