"""Profile model — account record mirrored from the auth provider."""

import uuid
from enum import StrEnum

from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin


class SubscriptionStatus(StrEnum):
    FREE = "free"
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


PAID_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


def is_paid(status: str) -> bool:
    return status in PAID_STATUSES


class Profile(TimestampMixin, SQLModel, table=True):
    __tablename__ = "profiles"

    # Same id as the auth provider's user (the JWT ``sub``)
    id: uuid.UUID = Field(primary_key=True)
    email: str = Field(default="", max_length=320)
    display_name: str = Field(default="", max_length=255)

    # Maintained by the billing webhook; anything but active/trialing is the free tier
    subscription_status: str = Field(default=SubscriptionStatus.FREE, max_length=20)


# ── Pydantic schemas ─────────────────────────────────────────

class ProfileRead(SQLModel):
    id: uuid.UUID
    email: str
    display_name: str
    subscription_status: str
