"""
Processed-event ledger for idempotent webhook handling.

Usage: should_process() before applying an event, mark_processed() only after
the transition succeeded. A crash in between yields a redelivery, which is
safe because every transition is idempotent.
"""

from ronchon.features.store.backend import KeyValueBackend

DEFAULT_TTL_SECONDS = 30 * 24 * 60 * 60


def event_key(event_id: str) -> str:
    return f"events:{event_id}"


class EventDeduplicator:
    def __init__(self, backend: KeyValueBackend, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    async def should_process(self, event_id: str) -> bool:
        """True if event_id has not been marked yet."""
        return not await self.backend.exists(event_key(event_id))

    async def mark_processed(self, event_id: str) -> None:
        await self.backend.set(event_key(event_id), "1", ttl_seconds=self.ttl_seconds)
