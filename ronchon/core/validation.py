"""
Environment validation utilities.

Ensures the backend fails fast on misconfiguration while
remaining bypassable for tests via SKIP_ENV_VALIDATION.
"""

import os
from typing import Optional, Iterable
from urllib.parse import urlparse

from ronchon.core.config import settings

FAILURE_POLICIES = {"open", "closed"}
REDIS_SCHEMES = {"redis", "rediss", "unix"}


class EnvValidationError(RuntimeError):
    """Raised when environment validation fails."""


def _is_valid_redis_url(url: str) -> bool:
    parsed = urlparse(url)
    if parsed.scheme not in REDIS_SCHEMES:
        return False
    return bool(parsed.netloc or parsed.path)


def _require(vars_required: Iterable[str], source: object) -> None:
    for var in vars_required:
        if not getattr(source, var, None):
            raise EnvValidationError(f"{var} is required in production")


def validate_env(env: Optional[str] = None, settings_obj=None) -> bool:
    """Validate environment configuration.

    Args:
        env: Override environment name (defaults to settings.ENV)
        settings_obj: Override settings object (defaults to ronchon.core.config.settings)

    Returns:
        True if validation passes.

    Raises:
        EnvValidationError when a rule is violated.
    """
    if os.getenv("SKIP_ENV_VALIDATION") == "1":
        return True

    cfg = settings_obj or settings
    mode = (env or getattr(cfg, "ENV", "development") or "development").lower()

    redis_url = getattr(cfg, "REDIS_URL", None)
    if redis_url and not _is_valid_redis_url(redis_url):
        raise EnvValidationError("REDIS_URL must be a valid URL (e.g. redis://host:6379/0)")

    policy = (getattr(cfg, "STORE_FAILURE_POLICY", "open") or "").lower()
    if policy not in FAILURE_POLICIES:
        raise EnvValidationError("STORE_FAILURE_POLICY must be 'open' or 'closed'")

    free_limit = getattr(cfg, "FREE_DAILY_LIMIT", 0)
    premium_limit = getattr(cfg, "PREMIUM_DAILY_LIMIT", 0)
    if free_limit < 1 or premium_limit < 1:
        raise EnvValidationError("Daily limits must be positive")
    if premium_limit < free_limit:
        raise EnvValidationError("PREMIUM_DAILY_LIMIT must not be lower than FREE_DAILY_LIMIT")

    if mode == "production":
        _require(["GROQ_API_KEY"], cfg)
        if getattr(cfg, "MOCK_BILLING_ENABLED", False):
            raise EnvValidationError("MOCK_BILLING_ENABLED must not be set in production")

    return True
