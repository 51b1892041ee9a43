"""Chat endpoint — admission, then a streamed model turn with tool use.

Middleware chain: auth → validate → address rate limit → monthly limit →
conversation ownership → stream.
"""

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncGenerator

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from app.api.deps import Auth, Limiter, Session, SessionFactory, client_address
from app.core.config import get_settings
from app.core.prompts import resolve_system_prompt
from app.models.conversation import Conversation
from app.models.message import Message, MessageRole
from app.models.profile import Profile, SubscriptionStatus
from app.services.orchestrator import GENERIC_ERROR, ChatTurnStream, StreamEvent, TurnState
from app.services.persistence import persist_turn
from app.services.rate_limit import check_monthly_limit
from app.services.tools import ToolContext, default_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

settings = get_settings()

# Running turns, referenced until they finish so they are not collected mid-flight
_background_turns: set[asyncio.Task] = set()


# ── Request schema ───────────────────────────────────────────

class SendMessageRequest(BaseModel):
    conversation_id: uuid.UUID = Field(
        validation_alias=AliasChoices("conversation_id", "conversationId"),
    )
    content: str = Field(min_length=1, max_length=32000)
    system_prompt: str | None = Field(
        default=None,
        max_length=8000,
        validation_alias=AliasChoices("system_prompt", "systemPrompt"),
    )


# ── Route ─────────────────────────────────────────────────────

@router.post("", status_code=status.HTTP_200_OK)
async def send_message(
    body: SendMessageRequest,
    request: Request,
    auth: Auth,
    session: Session,
    session_factory: SessionFactory,
    limiter: Limiter,
) -> StreamingResponse:
    """Send a message and stream the assistant's reply.

    Returns ``text/event-stream`` where every record is ``data: <json>``
    with ``type`` one of text, tool_start, tool_result, done, error.
    """
    # ── Address rate limit ───────────────────────────────────
    decision = await limiter.check(client_address(request))
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please wait a moment.",
            headers={
                "Retry-After": str(decision.retry_after(limiter.clock())),
                "X-RateLimit-Remaining": "0",
            },
        )

    # ── Monthly limit ────────────────────────────────────────
    subscription_status = await _subscription_status(auth.account_id, session)
    monthly = await check_monthly_limit(
        session,
        auth.account_id,
        subscription_status,
        settings.free_tier_monthly_message_limit,
    )
    if not monthly.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": (
                    f"Monthly message limit reached ({monthly.used}/{monthly.limit}). "
                    "Upgrade to Pro for unlimited messages."
                ),
                "code": "MONTHLY_LIMIT_REACHED",
                "used": monthly.used,
                "limit": monthly.limit,
            },
        )

    # ── Ownership + history ──────────────────────────────────
    conversation = await _get_conversation(body.conversation_id, auth.account_id, session)
    history = await _load_history(conversation.id, session, settings.chat_history_limit)

    # Saved before streaming so the turn survives an upstream failure
    user_msg = Message(
        conversation_id=conversation.id,
        account_id=auth.account_id,
        role=MessageRole.USER,
        content=body.content,
    )
    session.add(user_msg)
    await session.commit()

    turn_kwargs = dict(
        messages=[*history, {"role": "user", "content": body.content}],
        system_prompt=resolve_system_prompt(body.system_prompt, conversation.system_prompt),
        model=settings.default_llm_model,
        max_tokens=settings.llm_max_tokens,
        api_key=settings.llm_api_key or None,
        timeout=settings.llm_timeout_seconds,
    )

    queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
    task = asyncio.create_task(_run_turn(
        queue,
        session_factory=session_factory,
        account_id=auth.account_id,
        conversation_id=conversation.id,
        user_message_id=user_msg.id,
        user_content=body.content,
        turn_kwargs=turn_kwargs,
    ))
    _background_turns.add(task)
    task.add_done_callback(_background_turns.discard)

    return StreamingResponse(
        _drain_sse(queue),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "X-Accel-Buffering": "no",
            "X-RateLimit-Remaining": str(decision.remaining),
        },
    )


# ── Turn runner / SSE relay ──────────────────────────────────

def _format_sse(event: StreamEvent) -> str:
    """Format a single SSE record."""
    return f"data: {json.dumps(event.to_dict())}\n\n"


async def _run_turn(
    queue: asyncio.Queue,
    *,
    session_factory,
    account_id: uuid.UUID,
    conversation_id: uuid.UUID,
    user_message_id: uuid.UUID,
    user_content: str,
    turn_kwargs: dict,
) -> None:
    """Drive one turn to completion independently of the client connection."""
    turn: ChatTurnStream | None = None
    try:
        async with session_factory() as tool_session:
            turn = ChatTurnStream(
                registry=default_registry,
                tool_context=ToolContext(account_id=account_id, session=tool_session),
                **turn_kwargs,
            )
            async for event in turn.run():
                queue.put_nowait(event)

        if turn.state is TurnState.DONE:
            await persist_turn(
                session_factory,
                account_id=account_id,
                conversation_id=conversation_id,
                user_message_id=user_message_id,
                user_content=user_content,
                result=turn.result(),
                attempts=settings.persistence_attempts,
            )
    except Exception:
        logger.exception("Chat turn runner crashed for conversation %s", conversation_id)
        if turn is None or turn.state not in (TurnState.DONE, TurnState.FAILED):
            queue.put_nowait(StreamEvent(type="error", data={"content": GENERIC_ERROR}))
    finally:
        queue.put_nowait(None)


async def _drain_sse(queue: asyncio.Queue) -> AsyncGenerator[str, None]:
    while True:
        event = await queue.get()
        if event is None:
            return
        yield _format_sse(event)


# ── Internal helpers ──────────────────────────────────────────

async def _subscription_status(account_id: uuid.UUID, session) -> str:
    try:
        profile = await session.get(Profile, account_id)
    except SQLAlchemyError:
        logger.warning("Profile lookup failed for %s, treating as free tier", account_id, exc_info=True)
        await session.rollback()
        return SubscriptionStatus.FREE
    if profile is None:
        return SubscriptionStatus.FREE
    return profile.subscription_status


async def _get_conversation(
    conversation_id: uuid.UUID, account_id: uuid.UUID, session
) -> Conversation:
    stmt = select(Conversation).where(
        Conversation.id == conversation_id,
        Conversation.account_id == account_id,
    )
    result = await session.execute(stmt)
    conversation = result.scalar_one_or_none()
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )
    return conversation


async def _load_history(conversation_id: uuid.UUID, session, limit: int) -> list[dict]:
    """Most recent ``limit`` user/assistant messages, oldest first."""
    stmt = (
        select(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.role.in_([MessageRole.USER, MessageRole.ASSISTANT]),  # type: ignore[union-attr]
        )
        .order_by(Message.created_at.desc())  # type: ignore[union-attr]
        .limit(limit)
    )
    result = await session.execute(stmt)
    messages = list(reversed(result.scalars().all()))
    return [{"role": str(m.role), "content": m.content} for m in messages]
