"""System health endpoint — checks connectivity to the backing services."""

import time

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from app.api.deps import Session
from app.core.config import get_settings

router = APIRouter(prefix="/system", tags=["system"])

settings = get_settings()


class ServiceHealth(BaseModel):
    status: str  # "ok", "error" or "disabled"
    detail: str | None = None
    version: str | None = None
    latency_ms: int | None = None


class HealthResponse(BaseModel):
    status: str
    database: ServiceHealth
    redis: ServiceHealth


@router.get("/health", response_model=HealthResponse)
async def system_health(session: Session) -> HealthResponse:
    """Check the database and, when it backs the rate limiter, Redis."""
    db = await _check_database(session)
    if settings.rate_limit_backend == "redis":
        rd = await _check_redis()
    else:
        rd = ServiceHealth(status="disabled")

    overall = "ok" if all(s.status != "error" for s in (db, rd)) else "degraded"
    return HealthResponse(status=overall, database=db, redis=rd)


async def _check_database(session) -> ServiceHealth:
    try:
        t0 = time.monotonic()
        await session.execute(text("SELECT 1"))
        latency = int((time.monotonic() - t0) * 1000)
        return ServiceHealth(status="ok", version=session.bind.dialect.name, latency_ms=latency)
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])


async def _check_redis() -> ServiceHealth:
    try:
        from redis.asyncio import from_url
        t0 = time.monotonic()
        redis = from_url(settings.redis_url, decode_responses=True)
        try:
            pong = await redis.ping()
            latency = int((time.monotonic() - t0) * 1000)
            info = await redis.info("server")
        finally:
            await redis.aclose()
        version = info.get("redis_version")
        return ServiceHealth(
            status="ok" if pong else "error",
            version=f"Redis {version}" if version else None,
            latency_ms=latency,
        )
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])
