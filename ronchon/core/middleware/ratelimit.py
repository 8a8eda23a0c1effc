import time
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ronchon.core.config import settings
from ronchon.core.errors import RateLimitError, app_error_handler
from ronchon.core.logging import get_request_id
from ronchon.core.metrics import ratelimit_block_total, normalize_path
from ronchon.core.ratelimit import InMemoryRateLimiter, RateLimitConfig, build_rate_limit_config
from ronchon.features.identity.service import FORWARDED_FOR_HEADER, resolve_address

EXEMPT_PATHS = frozenset({"/health", "/healthz", "/readyz", "/metrics"})


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Token-bucket rate limiting per client address (60/min by default)."""

    def __init__(self, app, *, config: Optional[RateLimitConfig] = None, time_fn: Optional[Callable[[], float]] = None):
        super().__init__(app)
        self.config = config or build_rate_limit_config(settings)
        self.limiter = InMemoryRateLimiter(self.config, time_fn=time_fn or time.monotonic)

    def _client_key(self, request: Request) -> str:
        peer = request.client.host if request.client else None
        address = resolve_address(request.headers.get(FORWARDED_FOR_HEADER), peer)
        return f"ip:{address or 'unknown'}"

    async def dispatch(self, request: Request, call_next):
        if not self.config.enabled or request.method.upper() == "OPTIONS" or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        per_minute = self.config.per_minute_default
        if self.limiter.allow(self._client_key(request), per_minute=per_minute, burst=self.config.burst_default):
            return await call_next(request)

        rid = getattr(request.state, "request_id", None) or get_request_id()
        ratelimit_block_total.inc(labels={"scope": normalize_path(request.url.path)})

        response = await app_error_handler(
            request,
            RateLimitError("Too many requests, slow down", request_id=rid),
        )
        response.headers["Retry-After"] = str(max(1, int(60 / max(1, per_minute))))
        response.headers["X-RateLimit-Limit"] = str(per_minute)
        response.headers["X-RateLimit-Remaining"] = "0"
        return response
