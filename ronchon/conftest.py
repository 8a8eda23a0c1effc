# ronchon/conftest.py
import pytest
from fastapi.testclient import TestClient

from ronchon.core.config import Settings
from ronchon.core.metrics import METRICS
from ronchon.features.entitlements.service import EntitlementEngine
from ronchon.features.store.backend import InMemoryBackend
from ronchon.tests.mocks import FakeBillingProvider, FakeCompletionClient, FakeTime


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def test_settings():
    """Small limits so quota boundaries are cheap to reach."""
    return Settings(
        _env_file=None,
        ENV="test",
        FREE_DAILY_LIMIT=3,
        PREMIUM_DAILY_LIMIT=5,
        LICENSE_KEYS="LIC-GOOD,LIC-OTHER",
        ADMIN_KEY="admin-secret",
        MOCK_BILLING_ENABLED=True,
        RATE_LIMIT_ENABLED=False,
        STRIPE_PRICE_ID="price_test",
        GROQ_API_KEY=None,
        STRIPE_SECRET_KEY=None,
        STRIPE_WEBHOOK_SECRET=None,
        REDIS_URL=None,
    )


@pytest.fixture
def memory_backend(fake_time):
    return InMemoryBackend(time_fn=fake_time)


@pytest.fixture
def engine(memory_backend, test_settings):
    return EntitlementEngine.from_backend(memory_backend, test_settings)


@pytest.fixture
def completion_client():
    return FakeCompletionClient()


@pytest.fixture
def billing_provider():
    return FakeBillingProvider()


@pytest.fixture
def app(test_settings, memory_backend, completion_client, billing_provider):
    from ronchon.main import create_app

    return create_app(
        test_settings,
        backend=memory_backend,
        completion_client=completion_client,
        billing_provider=billing_provider,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
