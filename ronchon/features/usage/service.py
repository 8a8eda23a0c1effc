"""
ronchon/features/usage/service.py

Daily usage counter.

Handles:
- Atomic increment-and-read per (ClientKey, UTC day)
- Read-only lookups (0 when unset)
- Reset-at-midnight by day-namespaced keys: hits:{YYYY-MM-DD}:{ClientKey},
  each expiring USAGE_TTL_SECONDS after its first write. No reset job.
"""

from datetime import datetime, timezone
from typing import Optional

from ronchon.features.store.backend import KeyValueBackend

DEFAULT_TTL_SECONDS = 24 * 60 * 60


def utc_day(now: Optional[datetime] = None) -> str:
    """Calendar day in UTC as YYYY-MM-DD."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")


def hits_key(client_key: str, day: str) -> str:
    return f"hits:{day}:{client_key}"


class UsageCounter:
    def __init__(self, backend: KeyValueBackend, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    async def increment_and_get(self, client_key: str, day: str) -> int:
        """Add exactly 1 and return the new count (single atomic backend increment)."""
        return await self.backend.incr(hits_key(client_key, day), ttl_seconds=self.ttl_seconds)

    async def get(self, client_key: str, day: str) -> int:
        value = await self.backend.get(hits_key(client_key, day))
        return int(value) if value is not None else 0
