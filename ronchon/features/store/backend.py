"""
Key-value backing store (quota counters, entitlement flags, links, dedup marks).

Two implementations behind one protocol:
- RedisBackend: durable, shared across processes (redis.asyncio).
- InMemoryBackend: process-local fallback for dev or when Redis is unreachable.

One backend is built at startup by connect_backend() and passed to the
services that need it. Nothing here holds business logic.
"""
import asyncio
import logging
import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from redis import asyncio as redis_asyncio
from redis.exceptions import RedisError

from ronchon.core.errors import StoreUnavailableError
from ronchon.core.metrics import store_errors_total

logger = logging.getLogger("ronchon")


class KeyValueBackend(Protocol):
    """
    Protocol for backing stores.

    Implementations must:
    - make incr() a single atomic increment (never read-modify-write)
    - apply ttl_seconds on incr() only when the increment created the key
    - raise StoreUnavailableError on transport/backend failures
    """

    name: str

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, *, ttl_seconds: Optional[int] = None, only_if_absent: bool = False) -> bool:
        """Store value. With only_if_absent, returns False when the key already existed."""
        ...

    async def delete(self, key: str) -> int:
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def incr(self, key: str, *, ttl_seconds: Optional[int] = None) -> int:
        """Atomically add 1 and return the new value."""
        ...

    async def ttl(self, key: str) -> Optional[int]:
        """Seconds left before expiry, None when the key is missing or persistent."""
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...


class InMemoryBackend:
    """Process-local backend. Entries are (value, expires_at or None)."""

    name = "memory"

    def __init__(self, time_fn: Callable[[], float] = time.time):
        self.time_fn = time_fn
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self.time_fn():
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: Optional[int]) -> Optional[float]:
        return self.time_fn() + ttl_seconds if ttl_seconds else None

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    async def set(self, key: str, value: str, *, ttl_seconds: Optional[int] = None, only_if_absent: bool = False) -> bool:
        with self._lock:
            if only_if_absent and self._live(key) is not None:
                return False
            self._data[key] = (str(value), self._expiry(ttl_seconds))
            return True

    async def delete(self, key: str) -> int:
        with self._lock:
            return 1 if self._data.pop(key, None) is not None else 0

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    async def incr(self, key: str, *, ttl_seconds: Optional[int] = None) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                count = 1
                expires_at = self._expiry(ttl_seconds)
            else:
                count = int(entry[0]) + 1
                expires_at = entry[1]
            self._data[key] = (str(count), expires_at)
            return count

    async def ttl(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry[1] is None:
                return None
            return max(0, int(entry[1] - self.time_fn()))

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    def clear(self) -> None:
        """Drop everything (testing only)."""
        with self._lock:
            self._data.clear()


class RedisBackend:
    """Redis implementation. Every Redis failure surfaces as StoreUnavailableError."""

    name = "redis"

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 2.0) -> "RedisBackend":
        client = redis_asyncio.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=timeout_seconds,
            socket_timeout=timeout_seconds,
        )
        return cls(client)

    def _fail(self, operation: str, exc: Exception) -> StoreUnavailableError:
        store_errors_total.inc(labels={"operation": operation})
        logger.warning(f"[store] redis {operation} failed: {exc}")
        return StoreUnavailableError("Backing store unavailable")

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except (RedisError, OSError) as e:
            raise self._fail("get", e) from e

    async def set(self, key: str, value: str, *, ttl_seconds: Optional[int] = None, only_if_absent: bool = False) -> bool:
        try:
            result = await self.client.set(key, value, ex=ttl_seconds or None, nx=only_if_absent)
            return bool(result)
        except (RedisError, OSError) as e:
            raise self._fail("set", e) from e

    async def delete(self, key: str) -> int:
        try:
            return int(await self.client.delete(key) or 0)
        except (RedisError, OSError) as e:
            raise self._fail("delete", e) from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.client.exists(key))
        except (RedisError, OSError) as e:
            raise self._fail("exists", e) from e

    async def incr(self, key: str, *, ttl_seconds: Optional[int] = None) -> int:
        try:
            if not ttl_seconds:
                return int(await self.client.incr(key))
            # one MULTI/EXEC: the counter never exists without its expiry
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, ttl_seconds, nx=True)
                count, _ = await pipe.execute()
            return int(count)
        except (RedisError, OSError) as e:
            raise self._fail("incr", e) from e

    async def ttl(self, key: str) -> Optional[int]:
        try:
            remaining = await self.client.ttl(key)
        except (RedisError, OSError) as e:
            raise self._fail("ttl", e) from e
        if remaining is None or int(remaining) < 0:
            return None
        return int(remaining)

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        try:
            await self.client.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"[store] redis close failed: {e}")


async def connect_backend(settings_obj) -> KeyValueBackend:
    """
    Build the process-wide backend before serving traffic.

    REDIS_URL set and reachable -> RedisBackend.
    REDIS_URL unset, or the startup ping fails/times out -> InMemoryBackend
    (logged as a warning; quota state is then per-process and lost on restart).
    """
    url = getattr(settings_obj, "REDIS_URL", None)
    if not url:
        logger.info("[store] REDIS_URL not set, using in-memory store")
        return InMemoryBackend()

    timeout = float(getattr(settings_obj, "REDIS_CONNECT_TIMEOUT_SECONDS", 2.0))
    backend = RedisBackend.from_url(url, timeout_seconds=timeout)
    try:
        reachable = await asyncio.wait_for(backend.ping(), timeout=timeout)
    except asyncio.TimeoutError:
        reachable = False

    if reachable:
        logger.info("[store] connected to redis")
        return backend

    logger.warning("[store] redis unreachable at startup, falling back to in-memory store")
    await backend.close()
    return InMemoryBackend()
