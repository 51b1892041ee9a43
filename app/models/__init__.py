"""Import all models so SQLModel.metadata picks them up."""

from app.models.conversation import (
    PLACEHOLDER_TITLE,
    Conversation,
    ConversationCreate,
    ConversationRead,
    ConversationUpdate,
)
from app.models.message import Message, MessageRead, MessageRole
from app.models.note import Note, NoteCreate, NoteRead, NoteUpdate
from app.models.profile import Profile, ProfileRead, SubscriptionStatus
from app.models.usage_record import UsageRecord, UsageRecordRead

__all__ = [
    "PLACEHOLDER_TITLE",
    "Conversation",
    "ConversationCreate",
    "ConversationRead",
    "ConversationUpdate",
    "Message",
    "MessageRead",
    "MessageRole",
    "Note",
    "NoteCreate",
    "NoteRead",
    "NoteUpdate",
    "Profile",
    "ProfileRead",
    "SubscriptionStatus",
    "UsageRecord",
    "UsageRecordRead",
]
