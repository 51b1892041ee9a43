"""Admission control for the chat endpoint.

Two independent gates, both must pass before a model call is made:

  1. Source address: fixed window (default 10 requests / 60 s) per client
     address, counted in a pluggable store — process-local for a single
     instance, Redis when several instances share the quota.
  2. Account: monthly quota for free-tier accounts, counted from UsageRecords.
     Paid accounts (active / trialing) are never counted.

Both gates fail open. The monthly quota is a business limit, not a security
boundary, and the address window is abuse damping.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import start_of_month
from app.models.profile import is_paid
from app.services.usage import count_usage_since

logger = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        """Whole seconds until the window resets (at least 1)."""
        return max(1, math.ceil(self.reset_at - now))


@dataclass
class MonthlyLimitDecision:
    allowed: bool
    used: int
    limit: int | None  # None for paid accounts
    is_paid: bool


# ── Counter stores ───────────────────────────────────────────

class CounterStore(Protocol):
    async def hit(self, key: str, limit: int, window_seconds: float, now: float) -> tuple[bool, RateLimitEntry]:
        """Check-and-increment ``key`` as one step.

        Returns ``(allowed, entry)``. A rejected request is not counted and
        ``entry`` keeps its existing reset time.
        """

    async def sweep(self, now: float) -> int: ...

    async def close(self) -> None: ...


class InMemoryCounterStore:
    """Process-local counters. Lost on restart, which is acceptable (fail open)."""

    def __init__(self, sweep_interval: float = 300.0) -> None:
        self._entries: dict[str, RateLimitEntry] = {}
        self._sweep_interval = sweep_interval
        self._next_sweep: float | None = None

    async def hit(self, key: str, limit: int, window_seconds: float, now: float) -> tuple[bool, RateLimitEntry]:
        # No await between the read and the write: atomic on the event loop.
        self._maybe_sweep(now)
        entry = self._entries.get(key)
        if entry is None or entry.reset_at < now:
            entry = RateLimitEntry(count=1, reset_at=now + window_seconds)
            self._entries[key] = entry
            return True, entry
        if entry.count >= limit:
            return False, entry
        entry.count += 1
        return True, entry

    async def sweep(self, now: float) -> int:
        return self._drop_expired(now)

    def _drop_expired(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if entry.reset_at < now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _maybe_sweep(self, now: float) -> None:
        # Expired entries are replaced on access anyway; this only bounds memory.
        if self._next_sweep is None:
            self._next_sweep = now + self._sweep_interval
        elif now >= self._next_sweep:
            self._drop_expired(now)
            self._next_sweep = now + self._sweep_interval

    async def close(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# KEYS[1] = counter key; ARGV = limit, window_ms
# Returns {allowed (0/1), count, ttl_ms}
_FIXED_WINDOW_LUA = """
local current = redis.call('GET', KEYS[1])
if not current then
  redis.call('SET', KEYS[1], 1, 'PX', ARGV[2])
  return {1, 1, tonumber(ARGV[2])}
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
  redis.call('SET', KEYS[1], 1, 'PX', ARGV[2])
  return {1, 1, tonumber(ARGV[2])}
end
current = tonumber(current)
if current >= tonumber(ARGV[1]) then
  return {0, current, ttl}
end
current = redis.call('INCR', KEYS[1])
return {1, current, ttl}
"""


class RedisCounterStore:
    """Shared counters for multi-instance deployments.

    The whole check-and-increment runs as one Lua script, so concurrent
    requests on different instances never both see unconsumed quota. Keys
    expire with their window; there is nothing to sweep.
    """

    def __init__(self, redis, prefix: str = "ratelimit:chat:") -> None:
        self._redis = redis
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> RedisCounterStore:
        from redis.asyncio import from_url

        return cls(from_url(url, decode_responses=True))

    async def hit(self, key: str, limit: int, window_seconds: float, now: float) -> tuple[bool, RateLimitEntry]:
        window_ms = int(window_seconds * 1000)
        allowed, count, ttl_ms = await self._redis.eval(
            _FIXED_WINDOW_LUA, 1, self._prefix + key, limit, window_ms,
        )
        return bool(allowed), RateLimitEntry(count=int(count), reset_at=now + int(ttl_ms) / 1000)

    async def sweep(self, now: float) -> int:
        return 0

    async def close(self) -> None:
        await self._redis.aclose()


def build_counter_store(backend: str, redis_url: str, sweep_interval: float) -> CounterStore:
    if backend == "redis":
        return RedisCounterStore.from_url(redis_url)
    if backend != "memory":
        raise ValueError(f"Unknown rate limit backend: {backend!r}")
    return InMemoryCounterStore(sweep_interval=sweep_interval)


# ── Gates ────────────────────────────────────────────────────

class RateLimiter:
    """Fixed-window limiter keyed by source address."""

    def __init__(
        self,
        store: CounterStore,
        limit: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock

    async def check(self, source_key: str) -> RateLimitDecision:
        """Count one request for ``source_key``. Never raises."""
        now = self.clock()
        try:
            allowed, entry = await self.store.hit(source_key, self.limit, self.window_seconds, now)
        except Exception:
            logger.warning("Rate limit store unavailable, allowing %s", source_key, exc_info=True)
            return RateLimitDecision(
                allowed=True, remaining=self.limit - 1, reset_at=now + self.window_seconds,
            )
        if not allowed:
            return RateLimitDecision(allowed=False, remaining=0, reset_at=entry.reset_at)
        return RateLimitDecision(
            allowed=True,
            remaining=max(0, self.limit - entry.count),
            reset_at=entry.reset_at,
        )


async def check_monthly_limit(
    session: AsyncSession,
    account_id: uuid.UUID,
    subscription_status: str,
    free_limit: int,
) -> MonthlyLimitDecision:
    """Decide whether the account may start another chat turn this month. Never raises."""
    if is_paid(subscription_status):
        return MonthlyLimitDecision(allowed=True, used=0, limit=None, is_paid=True)

    try:
        used = await count_usage_since(session, account_id, start_of_month())
    except Exception:
        logger.warning("Monthly usage query failed for %s, allowing request", account_id, exc_info=True)
        await _discard_failed_transaction(session)
        return MonthlyLimitDecision(allowed=True, used=0, limit=free_limit, is_paid=False)

    return MonthlyLimitDecision(
        allowed=used < free_limit,
        used=used,
        limit=free_limit,
        is_paid=False,
    )


async def _discard_failed_transaction(session: AsyncSession) -> None:
    # A failed statement aborts the transaction; later queries on the request
    # session need a clean one.
    try:
        await session.rollback()
    except Exception:
        logger.warning("Rollback after failed usage query failed", exc_info=True)
