"""Post-stream persistence of a finished chat turn.

Runs after the ``done`` event on sessions from the detached session factory,
so a client that hung up mid-stream does not lose the accounting. The three
writes are independent and idempotent; each is retried on its own and a
failure in one never stops the others:

  1. assistant message (pre-assigned id, skipped when already present)
  2. usage record (anchored on the assistant message, else the user message)
  3. conversation title, only while it still holds the placeholder
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sqlalchemy import update
from sqlmodel import select

from app.core.cache import usage_summaries
from app.core.pricing import calc_cost
from app.models.base import new_uuid, utcnow
from app.models.conversation import PLACEHOLDER_TITLE, Conversation
from app.models.message import Message, MessageRole
from app.models.usage_record import UsageRecord
from app.services.orchestrator import ChatTurnResult

logger = logging.getLogger(__name__)

TITLE_CHARS = 60


@dataclass
class PersistOutcome:
    assistant_message_id: uuid.UUID | None = None
    usage_record_id: uuid.UUID | None = None
    title_updated: bool = False


def derive_title(content: str) -> str:
    title = content[:TITLE_CHARS].strip()
    if title and len(content) > TITLE_CHARS:
        title += "…"
    return title


async def save_assistant_message(
    session_factory, *, message_id: uuid.UUID, account_id: uuid.UUID,
    conversation_id: uuid.UUID, result: ChatTurnResult,
) -> uuid.UUID:
    async with session_factory() as session:
        if await session.get(Message, message_id) is None:
            session.add(Message(
                id=message_id,
                conversation_id=conversation_id,
                account_id=account_id,
                role=MessageRole.ASSISTANT,
                content=result.content,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
            ))
            await session.commit()
    return message_id


async def record_usage(
    session_factory, *, account_id: uuid.UUID, conversation_id: uuid.UUID,
    anchor_message_id: uuid.UUID, result: ChatTurnResult,
) -> uuid.UUID:
    async with session_factory() as session:
        existing = (await session.execute(
            select(UsageRecord).where(UsageRecord.message_id == anchor_message_id)
        )).scalar_one_or_none()
        if existing is not None:
            return existing.id

        record = UsageRecord(
            account_id=account_id,
            conversation_id=conversation_id,
            message_id=anchor_message_id,
            model=result.model,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            estimated_cost_usd=calc_cost(result.model, result.input_tokens, result.output_tokens),
        )
        session.add(record)
        await session.commit()
        return record.id


async def retitle_conversation(
    session_factory, *, conversation_id: uuid.UUID, user_content: str,
) -> bool:
    """Replace the placeholder title; a no-op once the title has changed."""
    title = derive_title(user_content)
    if not title:
        return False
    async with session_factory() as session:
        result = await session.execute(
            update(Conversation)
            .where(
                Conversation.id == conversation_id,
                Conversation.title == PLACEHOLDER_TITLE,
            )
            .values(title=title, updated_at=utcnow())
        )
        await session.commit()
        return result.rowcount > 0


async def _attempt(step: str, attempts: int, operation: Callable[[], Awaitable]):
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception:
            logger.exception("Persisting %s failed (attempt %d/%d)", step, attempt, attempts)
    return None


async def persist_turn(
    session_factory,
    *,
    account_id: uuid.UUID,
    conversation_id: uuid.UUID,
    user_message_id: uuid.UUID,
    user_content: str,
    result: ChatTurnResult,
    attempts: int = 2,
) -> PersistOutcome:
    """Write the assistant message, usage record and title. Never raises."""
    outcome = PersistOutcome()
    message_id = new_uuid()

    outcome.assistant_message_id = await _attempt(
        "assistant message", attempts,
        lambda: save_assistant_message(
            session_factory,
            message_id=message_id,
            account_id=account_id,
            conversation_id=conversation_id,
            result=result,
        ),
    )

    outcome.usage_record_id = await _attempt(
        "usage record", attempts,
        lambda: record_usage(
            session_factory,
            account_id=account_id,
            conversation_id=conversation_id,
            anchor_message_id=outcome.assistant_message_id or user_message_id,
            result=result,
        ),
    )
    usage_summaries.invalidate(account_id)

    outcome.title_updated = bool(await _attempt(
        "conversation title", attempts,
        lambda: retitle_conversation(
            session_factory, conversation_id=conversation_id, user_content=user_content,
        ),
    ))

    logger.info(
        "Persisted turn for conversation %s (message=%s usage=%s title_updated=%s)",
        conversation_id, outcome.assistant_message_id, outcome.usage_record_id,
        outcome.title_updated,
    )
    return outcome
