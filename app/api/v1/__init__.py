"""V1 API router aggregation."""

from fastapi import APIRouter

from app.api.v1.chat import router as chat_router
from app.api.v1.conversations import router as conversations_router
from app.api.v1.notes import router as notes_router
from app.api.v1.system import router as system_router
from app.api.v1.usage import router as usage_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(conversations_router)
v1_router.include_router(chat_router)
v1_router.include_router(notes_router)
v1_router.include_router(usage_router)
v1_router.include_router(system_router)
