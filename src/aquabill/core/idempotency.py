"""In-process idempotency key store with expiry."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any

from aquabill.core.clock import Clock, SystemClock


class IdempotencyStore:
    """Remembers completed units of work for ``ttl_seconds``.

    Keys are built with :meth:`key`, e.g. ``("bill", account_id, period)``.
    """

    def __init__(self, ttl_seconds: int, clock: Clock | None = None):
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or SystemClock()
        self._entries: dict[str, tuple[datetime, Any]] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def key(*parts: object) -> str:
        return ":".join(str(part) for part in parts)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock.now():
                del self._entries[key]
                return None
            return value

    async def put(self, key: str, value: Any) -> None:
        async with self._lock:
            self._entries[key] = (self._clock.now() + self._ttl, value)

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self._clock.now()
            expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
            for k in expired:
                del self._entries[k]
            return len(expired)
