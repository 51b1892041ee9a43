"""Tool catalog exposed to the model during a chat turn.

Two kinds of tools:
  1. Query tools — read the account's data (get_usage_stats, search_notes)
  2. Action tools — write the account's data (create_note)

Every handler receives a ``ToolContext`` and filters on its ``account_id``;
no tool can reach another account's rows. Results are JSON strings that are
relayed verbatim to the model, so failures come back as ``{"error": ...}``
payloads it can talk about instead of exceptions.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.note import Note
from app.services.usage import summarize_month

logger = logging.getLogger(__name__)

SEARCH_RESULT_LIMIT = 5
PREVIEW_CHARS = 200


@dataclass
class ToolContext:
    """Authenticated identity plus a data-store handle for one chat turn."""
    account_id: uuid.UUID
    session: AsyncSession


# ── Input contracts ──────────────────────────────────────────

class GetUsageStatsInput(BaseModel):
    pass


class SearchNotesInput(BaseModel):
    query: str = Field(description="The search term to find in note titles and content")


class CreateNoteInput(BaseModel):
    title: str = Field(description="A short, descriptive title for the note")
    content: str = Field(description="The full content of the note (supports markdown)")
    tags: list[str] = Field(
        default_factory=list,
        description="Optional tags to categorize the note",
    )


# ── Handlers ─────────────────────────────────────────────────

async def get_usage_stats(_input: GetUsageStatsInput, ctx: ToolContext) -> dict:
    try:
        usage = await summarize_month(ctx.session, ctx.account_id)
    except SQLAlchemyError:
        logger.exception("get_usage_stats failed for %s", ctx.account_id)
        await ctx.session.rollback()
        return {"error": "Failed to fetch usage stats"}

    return {
        "month": usage.month,
        "message_count": usage.message_count,
        "total_input_tokens": usage.total_input_tokens,
        "total_output_tokens": usage.total_output_tokens,
        "estimated_cost_usd": f"{usage.estimated_cost_usd:.4f}",
    }


async def search_notes(params: SearchNotesInput, ctx: ToolContext) -> dict:
    stmt = (
        select(Note)
        .where(
            Note.account_id == ctx.account_id,
            or_(
                Note.title.icontains(params.query, autoescape=True),  # type: ignore[attr-defined]
                Note.content.icontains(params.query, autoescape=True),  # type: ignore[attr-defined]
            ),
        )
        .order_by(Note.updated_at.desc())  # type: ignore[attr-defined]
        .limit(SEARCH_RESULT_LIMIT)
    )
    try:
        notes = (await ctx.session.execute(stmt)).scalars().all()
    except SQLAlchemyError:
        logger.exception("search_notes failed for %s", ctx.account_id)
        await ctx.session.rollback()
        return {"error": "Failed to search notes"}

    if not notes:
        return {"results": [], "message": f'No notes found matching "{params.query}"'}

    results = [
        {
            "id": str(note.id),
            "title": note.title,
            "preview": note.content[:PREVIEW_CHARS] + ("…" if len(note.content) > PREVIEW_CHARS else ""),
            "tags": note.tag_list,
            "updated_at": note.updated_at.isoformat(),
        }
        for note in notes
    ]
    return {"results": results, "total": len(results)}


async def create_note(params: CreateNoteInput, ctx: ToolContext) -> dict:
    note = Note(
        account_id=ctx.account_id,
        title=params.title,
        content=params.content,
        tags=json.dumps(params.tags),
    )
    try:
        ctx.session.add(note)
        await ctx.session.commit()
    except SQLAlchemyError as exc:
        logger.exception("create_note failed for %s", ctx.account_id)
        await ctx.session.rollback()
        return {"error": "Failed to create note", "details": type(exc).__name__}

    return {
        "success": True,
        "note_id": str(note.id),
        "message": f'Note "{note.title}" created successfully',
    }


# ── Registry ─────────────────────────────────────────────────

ToolHandler = Callable[[BaseModel, ToolContext], Awaitable[dict]]


@dataclass
class ToolSpec:
    name: str
    description: str
    input_model: type[BaseModel]
    handler: ToolHandler

    def declaration(self) -> dict:
        """Function-tool declaration in the shape LiteLLM forwards to the provider."""
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        schema.setdefault("required", [])
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": schema,
            },
        }


def _serialize(result: dict) -> str:
    # Non-ASCII kept as-is: the string is stored verbatim in the transcript
    return json.dumps(result, ensure_ascii=False)


class ToolRegistry:
    def __init__(self, tools: Iterable[ToolSpec]) -> None:
        self._tools: dict[str, ToolSpec] = {}
        for spec in tools:
            if spec.name in self._tools:
                raise ValueError(f"Duplicate tool name: {spec.name}")
            self._tools[spec.name] = spec

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def declarations(self) -> list[dict]:
        return [spec.declaration() for spec in self._tools.values()]

    async def execute(self, tool_name: str, raw_input: dict, ctx: ToolContext) -> str:
        """Run a tool and return its JSON-serialized result. Never raises."""
        spec = self._tools.get(tool_name)
        if spec is None:
            return _serialize({"error": f"Unknown tool: {tool_name}"})

        try:
            parsed = spec.input_model.model_validate(raw_input)
        except ValidationError as exc:
            details = [
                f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
                for err in exc.errors()
            ]
            return _serialize({"error": f"Invalid input for {tool_name}", "details": details})

        try:
            result = await spec.handler(parsed, ctx)
        except Exception:
            logger.exception("Tool %s raised", tool_name)
            result = {"error": f"Tool {tool_name} failed"}
        return _serialize(result)


default_registry = ToolRegistry([
    ToolSpec(
        name="get_usage_stats",
        description=(
            "Get the user's AI usage statistics for the current month, including message count, "
            "token usage, and estimated cost. Use this when the user asks about their usage, "
            "limits, or remaining messages."
        ),
        input_model=GetUsageStatsInput,
        handler=get_usage_stats,
    ),
    ToolSpec(
        name="search_notes",
        description=(
            "Search through the user's notes by keyword. Returns matching note titles and "
            "previews. Use this when the user asks to find or look up notes."
        ),
        input_model=SearchNotesInput,
        handler=search_notes,
    ),
    ToolSpec(
        name="create_note",
        description=(
            "Create a new note for the user with a title and content. Use this when the user "
            "asks to save, write down, or create a note. Always confirm the content with the "
            "user before creating."
        ),
        input_model=CreateNoteInput,
        handler=create_note,
    ),
])
