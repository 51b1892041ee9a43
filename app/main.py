"""FastAPI application entrypoint."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.deps import get_rate_limiter
from app.api.v1 import v1_router
from app.core.config import get_settings
from app.core.database import init_db
from app.models.base import utcnow

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup: ensure tables exist (use Alembic in production)
    await init_db()
    logger.info("NoteChat %s started (rate limit backend: %s)", __version__, _settings.rate_limit_backend)
    yield
    # Shutdown: release the rate limiter's counter store
    if get_rate_limiter.cache_info().currsize:
        await get_rate_limiter().store.close()
        get_rate_limiter.cache_clear()


app = FastAPI(
    title="NoteChat",
    version=__version__,
    description="Notes with a tool-using chat assistant",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────
_settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _settings.allowed_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── API routes ───────────────────────────────────────────────
app.include_router(v1_router)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": utcnow().isoformat() + "Z",
    }
