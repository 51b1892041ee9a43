"""FastAPI dependencies for authentication, sessions and admission control."""

import uuid
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from app.core.config import get_settings
from app.core.database import get_session, get_session_factory
from app.core.security import decode_jwt
from app.services.rate_limit import RateLimiter, build_counter_store

bearer_scheme = HTTPBearer(auto_error=False)


class AuthContext:
    """Resolved identity carried through a request."""

    __slots__ = ("account_id",)

    def __init__(self, account_id: uuid.UUID) -> None:
        self.account_id = account_id


async def get_auth_context(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> AuthContext:
    """Resolve the auth provider's bearer JWT to an AuthContext."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_jwt(credentials.credentials)
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        ) from exc

    try:
        return AuthContext(account_id=uuid.UUID(payload["sub"]))
    except (KeyError, ValueError, TypeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed token payload",
        ) from exc


@lru_cache
def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter; the counter store is picked by configuration."""
    settings = get_settings()
    store = build_counter_store(
        settings.rate_limit_backend,
        settings.redis_url,
        sweep_interval=settings.rate_limit_sweep_seconds,
    )
    return RateLimiter(
        store,
        limit=settings.chat_rate_limit_per_minute,
        window_seconds=settings.rate_limit_window_seconds,
    )


def client_address(request: Request) -> str:
    """First X-Forwarded-For hop, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


# Typed shorthand for use in route signatures
Auth = Annotated[AuthContext, Depends(get_auth_context)]
Session = Annotated[AsyncSession, Depends(get_session)]
SessionFactory = Annotated[sessionmaker, Depends(get_session_factory)]
Limiter = Annotated[RateLimiter, Depends(get_rate_limiter)]
