"""Lightweight in-memory TTL cache for expensive per-account queries.

The usage summary is polled by the dashboard; identical requests from one
account within a short window reuse the previous aggregate. Entries are
dropped explicitly whenever a chat turn records new usage.
"""

import time
from collections.abc import Callable, Hashable
from typing import Any

DEFAULT_TTL = 30.0


class TTLCache:
    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value if present and fresh, else None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self.ttl:
            del self._entries[key]
            return None
        return value

    def put(self, key: Hashable, value: Any) -> None:
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# Monthly usage summaries keyed by account id
usage_summaries = TTLCache()
