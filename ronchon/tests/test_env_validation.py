"""Tests for environment and config validation."""

import logging
from types import SimpleNamespace

import pytest

from ronchon.core.config import validate_config
from ronchon.core.validation import EnvValidationError, validate_env


def make_settings(**overrides):
    defaults = dict(
        ENV="development",
        REDIS_URL=None,
        STORE_FAILURE_POLICY="open",
        FREE_DAILY_LIMIT=10,
        PREMIUM_DAILY_LIMIT=1000,
        GROQ_API_KEY=None,
        STRIPE_SECRET_KEY=None,
        STRIPE_WEBHOOK_SECRET=None,
        MOCK_BILLING_ENABLED=False,
    )
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def test_valid_production_config_passes():
    settings = make_settings(ENV="production", GROQ_API_KEY="gsk_test", REDIS_URL="rediss://cache:6380/0")
    assert validate_env(settings_obj=settings) is True


def test_development_without_keys_passes():
    assert validate_env(settings_obj=make_settings()) is True


@pytest.mark.parametrize("url", ["http://cache:6379", "not-a-url", "redis://"])
def test_invalid_redis_url_fails(url):
    with pytest.raises(EnvValidationError):
        validate_env(settings_obj=make_settings(REDIS_URL=url))


def test_unknown_failure_policy_fails():
    with pytest.raises(EnvValidationError):
        validate_env(settings_obj=make_settings(STORE_FAILURE_POLICY="maybe"))


def test_premium_limit_below_free_fails():
    with pytest.raises(EnvValidationError):
        validate_env(settings_obj=make_settings(FREE_DAILY_LIMIT=10, PREMIUM_DAILY_LIMIT=5))


def test_zero_limit_fails():
    with pytest.raises(EnvValidationError):
        validate_env(settings_obj=make_settings(FREE_DAILY_LIMIT=0))


def test_production_requires_groq_key():
    with pytest.raises(EnvValidationError):
        validate_env(settings_obj=make_settings(ENV="production"))


def test_mock_billing_forbidden_in_production():
    settings = make_settings(ENV="production", GROQ_API_KEY="gsk_test", MOCK_BILLING_ENABLED=True)
    with pytest.raises(EnvValidationError):
        validate_env(settings_obj=settings)


def test_skip_env_validation(monkeypatch):
    monkeypatch.setenv("SKIP_ENV_VALIDATION", "1")
    assert validate_env(settings_obj=make_settings(STORE_FAILURE_POLICY="maybe")) is True


def test_validate_config_warns_then_raises_when_strict(caplog):
    settings = make_settings()
    with caplog.at_level(logging.WARNING, logger="ronchon"):
        validate_config(strict=False, settings_obj=settings)
    assert "GROQ_API_KEY" in caplog.text
    with pytest.raises(RuntimeError):
        validate_config(strict=True, settings_obj=settings)
