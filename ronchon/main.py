import logging
import os

from dotenv import load_dotenv

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from ronchon.api import billing, chat, health, license, status
from ronchon.core.config import settings, validate_config
from ronchon.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_error_handler,
    unhandled_exception_handler,
)
from ronchon.core.logging import configure_logging
from ronchon.core.metrics import store_backend_info
from ronchon.core.middleware.metrics import MetricsMiddleware
from ronchon.core.middleware.ratelimit import RateLimitMiddleware
from ronchon.core.middleware.request_id import RequestIdMiddleware
from ronchon.core.ratelimit import build_rate_limit_config
from ronchon.core.validation import validate_env
from ronchon.features.billing.service import get_provider
from ronchon.features.chat.service import GroqCompletionClient
from ronchon.features.entitlements.service import EntitlementEngine
from ronchon.features.licenses.service import LicenseRegistry
from ronchon.features.store.backend import connect_backend

logger = logging.getLogger("ronchon")

_UNSET = object()


def _wire_services(app: FastAPI, backend) -> None:
    cfg = app.state.settings
    app.state.backend = backend
    app.state.engine = EntitlementEngine.from_backend(backend, cfg)
    store_backend_info.set(1, labels={"backend": backend.name})


def create_app(
    settings_obj=None,
    *,
    backend=None,
    completion_client=_UNSET,
    billing_provider=_UNSET,
) -> FastAPI:
    """
    Build the application.

    Anything passed in is used as-is (tests); the rest is built at startup:
    the backing store is connected (awaited) before the first request.
    """
    cfg = settings_obj or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Ronchon backend...")
        owns_backend = getattr(app.state, "backend", None) is None
        if owns_backend:
            _wire_services(app, await connect_backend(cfg))
        if getattr(app.state, "completion_client", None) is None and cfg.GROQ_API_KEY:
            app.state.completion_client = GroqCompletionClient.from_settings(cfg)
        try:
            yield
        finally:
            if owns_backend:
                await app.state.backend.close()
            logger.info("Stopping Ronchon backend...")

    app = FastAPI(title="Ronchon - Backend", lifespan=lifespan)
    app.state.settings = cfg
    app.state.backend = None
    app.state.licenses = LicenseRegistry.from_settings(cfg)
    app.state.completion_client = None if completion_client is _UNSET else completion_client
    app.state.billing_provider = get_provider(cfg) if billing_provider is _UNSET else billing_provider
    if backend is not None:
        _wire_services(app, backend)

    # Middlewares (last added runs first)
    app.add_middleware(RateLimitMiddleware, config=build_rate_limit_config(cfg))
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(chat.router)
    app.include_router(status.router)
    app.include_router(license.router)
    app.include_router(billing.router)
    app.include_router(billing.mock_router)
    app.include_router(billing.admin_router)
    app.include_router(health.router)
    return app


configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))

app = create_app()
