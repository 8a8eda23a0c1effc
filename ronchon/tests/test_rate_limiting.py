"""Tests for token-bucket rate limiting middleware."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from ronchon.core.metrics import ratelimit_block_total
from ronchon.core.middleware.ratelimit import RateLimitMiddleware
from ronchon.core.middleware.request_id import RequestIdMiddleware
from ronchon.core.ratelimit import InMemoryRateLimiter, RateLimitConfig
from ronchon.tests.mocks import FakeTime


def _app(fake_time, per_minute=2, burst=2):
    config = RateLimitConfig(enabled=True, per_minute_default=per_minute, burst_default=burst)
    test_app = FastAPI()
    test_app.add_middleware(RateLimitMiddleware, config=config, time_fn=fake_time)
    test_app.add_middleware(RequestIdMiddleware)

    @test_app.get("/api/status")
    async def status():
        return {"ok": True}

    @test_app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    return test_app


def test_rate_limit_enforced_per_address_and_resets():
    fake_time = FakeTime()
    client = TestClient(_app(fake_time))
    headers = {"x-forwarded-for": "203.0.113.7"}

    assert client.get("/api/status", headers=headers).status_code == 200
    assert client.get("/api/status", headers=headers).status_code == 200
    blocked = client.get("/api/status", headers=headers)
    assert blocked.status_code == 429
    assert blocked.headers["Retry-After"] == "30"
    payload = blocked.json()
    assert payload["error"]["code"] == "rate_limited"
    assert payload["error"]["request_id"] == blocked.headers["x-request-id"]
    assert ratelimit_block_total.value({"scope": "/api/status"}) == 1

    # another address has its own bucket
    assert client.get("/api/status", headers={"x-forwarded-for": "198.51.100.1"}).status_code == 200

    fake_time.advance(61)
    assert client.get("/api/status", headers=headers).status_code == 200


def test_health_paths_exempt():
    client = TestClient(_app(FakeTime(), per_minute=1, burst=1))
    for _ in range(5):
        assert client.get("/healthz").status_code == 200


def test_disabled_limiter_passes_everything():
    test_app = FastAPI()
    test_app.add_middleware(RateLimitMiddleware, config=RateLimitConfig(enabled=False, per_minute_default=1, burst_default=1))

    @test_app.get("/api/status")
    async def status():
        return {"ok": True}

    client = TestClient(test_app)
    assert all(client.get("/api/status").status_code == 200 for _ in range(3))


def test_idle_buckets_are_pruned():
    fake_time = FakeTime()
    limiter = InMemoryRateLimiter(RateLimitConfig(sweep_interval_seconds=60), time_fn=fake_time)
    for i in range(50):
        assert limiter.allow(f"10.0.0.{i}", per_minute=60, burst=60)
    assert len(limiter.buckets) == 50

    fake_time.advance(61)
    assert limiter.allow("203.0.113.7", per_minute=60, burst=60)
    assert list(limiter.buckets) == ["203.0.113.7"]


def test_bucket_map_is_capped():
    fake_time = FakeTime()
    limiter = InMemoryRateLimiter(RateLimitConfig(max_buckets=3), time_fn=fake_time)
    for i in range(10):
        fake_time.advance(0.1)
        limiter.allow(f"10.0.0.{i}", per_minute=1, burst=5)
    assert len(limiter.buckets) == 3
    assert "10.0.0.9" in limiter.buckets
    assert "10.0.0.0" not in limiter.buckets
