"""Month-window usage queries.

Shared by the monthly admission gate, the ``get_usage_stats`` tool and the
usage endpoint so all three count the same rows: UsageRecords, never raw
messages.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.base import start_of_month, utcnow
from app.models.usage_record import UsageRecord


@dataclass
class MonthlyUsage:
    month: str
    message_count: int
    total_input_tokens: int
    total_output_tokens: int
    estimated_cost_usd: float


async def count_usage_since(
    session: AsyncSession, account_id: uuid.UUID, since: datetime,
) -> int:
    stmt = (
        select(func.count())
        .select_from(UsageRecord)
        .where(UsageRecord.account_id == account_id, UsageRecord.created_at >= since)
    )
    return (await session.execute(stmt)).scalar_one()


async def summarize_month(
    session: AsyncSession, account_id: uuid.UUID, now: datetime | None = None,
) -> MonthlyUsage:
    """Aggregate the account's UsageRecords for the current calendar month."""
    now = now or utcnow()
    stmt = select(
        func.count(),
        func.coalesce(func.sum(UsageRecord.input_tokens), 0),
        func.coalesce(func.sum(UsageRecord.output_tokens), 0),
        func.coalesce(func.sum(UsageRecord.estimated_cost_usd), 0.0),
    ).where(
        UsageRecord.account_id == account_id,
        UsageRecord.created_at >= start_of_month(now),
    )
    count, input_tokens, output_tokens, cost = (await session.execute(stmt)).one()
    return MonthlyUsage(
        month=now.strftime("%B %Y"),
        message_count=count,
        total_input_tokens=int(input_tokens),
        total_output_tokens=int(output_tokens),
        estimated_cost_usd=float(cost),
    )
