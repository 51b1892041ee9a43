"""Monthly usage summary for the dashboard."""

from fastapi import APIRouter
from pydantic import BaseModel

from app.api.deps import Auth, Session
from app.core.cache import usage_summaries
from app.core.config import get_settings
from app.models.profile import Profile, SubscriptionStatus, is_paid
from app.services.usage import summarize_month

router = APIRouter(prefix="/usage", tags=["usage"])

settings = get_settings()


class UsageSummary(BaseModel):
    month: str
    message_count: int
    total_input_tokens: int
    total_output_tokens: int
    estimated_cost_usd: float
    limit: int | None
    is_paid: bool


@router.get("", response_model=UsageSummary)
async def get_usage(auth: Auth, session: Session) -> UsageSummary:
    """This month's usage; ``limit`` is null on a paid subscription."""
    cached = usage_summaries.get(auth.account_id)
    if cached is not None:
        return cached

    profile = await session.get(Profile, auth.account_id)
    paid = is_paid(profile.subscription_status if profile else SubscriptionStatus.FREE)
    month = await summarize_month(session, auth.account_id)

    result = UsageSummary(
        month=month.month,
        message_count=month.message_count,
        total_input_tokens=month.total_input_tokens,
        total_output_tokens=month.total_output_tokens,
        estimated_cost_usd=round(month.estimated_cost_usd, 6),
        limit=None if paid else settings.free_tier_monthly_message_limit,
        is_paid=paid,
    )
    usage_summaries.put(auth.account_id, result)
    return result
