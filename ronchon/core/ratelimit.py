"""
Token-bucket rate limiter.

- In-memory, keyed by resolved client address.
- Per-process request throttling; unrelated to the daily quota.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass
class RateLimitConfig:
    enabled: bool = True
    per_minute_default: int = 60
    burst_default: int = 60
    max_buckets: int = 10000
    sweep_interval_seconds: float = 60.0


class TokenBucket:
    def __init__(self, capacity: int, refill_rate_per_sec: float, time_fn: Callable[[], float] = time.monotonic):
        self.capacity = max(1, capacity)
        self.tokens = float(self.capacity)
        self.refill_rate = max(0.0, refill_rate_per_sec)
        self.time_fn = time_fn
        self.last_refill = self.time_fn()
        self.last_used = self.last_refill

    def _refill(self) -> None:
        now = self.time_fn()
        elapsed = now - self.last_refill
        if elapsed <= 0:
            return
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def is_full(self) -> bool:
        self._refill()
        return self.tokens >= self.capacity

    def allow(self, cost: float = 1.0) -> bool:
        self._refill()
        self.last_used = self.time_fn()
        if self.tokens >= cost:
            self.tokens -= cost
            return True
        return False


class InMemoryRateLimiter:
    def __init__(self, config: RateLimitConfig, time_fn: Callable[[], float] = time.monotonic):
        self.config = config
        self.time_fn = time_fn
        self.buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()
        self._last_sweep = self.time_fn()

    def _sweep(self) -> None:
        # A refilled bucket behaves exactly like a new one, so it can go.
        self.buckets = {k: b for k, b in self.buckets.items() if not b.is_full()}
        # leave room for the bucket about to be added
        overflow = len(self.buckets) - self.config.max_buckets + 1
        if overflow > 0:
            for key in sorted(self.buckets, key=lambda k: self.buckets[k].last_used)[:overflow]:
                del self.buckets[key]
        self._last_sweep = self.time_fn()

    def allow(self, key: str, *, per_minute: int, burst: int) -> bool:
        with self._lock:
            bucket = self.buckets.get(key)
            if bucket is None:
                now = self.time_fn()
                if len(self.buckets) >= self.config.max_buckets or now - self._last_sweep >= self.config.sweep_interval_seconds:
                    self._sweep()
                bucket = TokenBucket(capacity=burst, refill_rate_per_sec=per_minute / 60.0, time_fn=self.time_fn)
                self.buckets[key] = bucket
            return bucket.allow()


def build_rate_limit_config(settings_obj) -> RateLimitConfig:
    return RateLimitConfig(
        enabled=bool(settings_obj.RATE_LIMIT_ENABLED),
        per_minute_default=max(1, int(settings_obj.RATE_LIMIT_PER_MINUTE_DEFAULT)),
        burst_default=max(1, int(settings_obj.RATE_LIMIT_BURST_DEFAULT)),
        max_buckets=max(1, int(getattr(settings_obj, "RATE_LIMIT_MAX_BUCKETS", 10000))),
    )
