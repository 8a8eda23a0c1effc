import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

DEFAULT_CORS_ORIGINS = ",".join([
    "chrome-extension://mbfcngdankjjdmdkflfpgnfeeoijpddn",
    "http://localhost:5173",
    "https://ronchon.com",
])


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Backing store (quota counters, entitlements, webhook dedup)
    REDIS_URL: Optional[str] = None
    REDIS_CONNECT_TIMEOUT_SECONDS: float = 2.0
    STORE_FAILURE_POLICY: str = "open"  # open | closed

    # Quota
    FREE_DAILY_LIMIT: int = 10
    PREMIUM_DAILY_LIMIT: int = 1000
    USAGE_TTL_SECONDS: int = 24 * 60 * 60
    EVENT_DEDUP_TTL_SECONDS: int = 30 * 24 * 60 * 60

    # Client identity
    CLIENT_KEY_HASHING: bool = True
    CLIENT_KEY_BIND_ADDRESS: bool = False
    INSTANCE_ID_MAX_LENGTH: int = 64

    # Licenses (comma-separated)
    LICENSE_KEYS: str = ""

    # LLM (Groq)
    GROQ_API_KEY: Optional[str] = None
    LLM_MODEL: str = "llama-3.1-8b-instant"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_CONTEXT_MESSAGES: int = 20

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_ID: Optional[str] = None
    BILLING_SUCCESS_URL: str = "https://ronchon.com/?success=true"
    BILLING_CANCEL_URL: str = "https://ronchon.com/?canceled=true"
    BILLING_RETURN_URL: str = "https://ronchon.com/"

    # Admin access
    ADMIN_KEY: Optional[str] = None
    MOCK_BILLING_ENABLED: bool = False

    # HTTP surface
    CORS_ORIGINS: str = DEFAULT_CORS_ORIGINS
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE_DEFAULT: int = 60
    RATE_LIMIT_BURST_DEFAULT: int = 60
    RATE_LIMIT_MAX_BUCKETS: int = 10000
    MAX_BODY_BYTES: int = 200 * 1024

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("ronchon")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "GROQ_API_KEY",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
