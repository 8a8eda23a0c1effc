"""
Shared route dependencies.

Services are built once in the app lifespan and kept on app.state; routes
reach them through these helpers so tests can swap any of them.
"""
from dataclasses import dataclass

from fastapi import Request

from ronchon.core.config import settings
from ronchon.core.errors import PayloadTooLargeError, UpstreamCallError
from ronchon.features.entitlements.service import EntitlementEngine
from ronchon.features.identity.service import derive_client_key, metadata_from_request
from ronchon.features.licenses.service import LicenseRegistry


@dataclass(frozen=True)
class Caller:
    client_key: str
    licensed: bool


def get_settings(request: Request):
    return getattr(request.app.state, "settings", None) or settings


def get_engine(request: Request) -> EntitlementEngine:
    return request.app.state.engine


def get_licenses(request: Request) -> LicenseRegistry:
    return request.app.state.licenses


def get_completion_client(request: Request):
    client = request.app.state.completion_client
    if client is None:
        raise UpstreamCallError("LLM client not configured")
    return client


def get_billing_provider(request: Request):
    return getattr(request.app.state, "billing_provider", None)


def resolve_caller(request: Request) -> Caller:
    """Derive the caller's ClientKey. Only a valid license header counts."""
    cfg = get_settings(request)
    licenses = get_licenses(request)
    metadata = metadata_from_request(request, license_valid=licenses.is_valid)
    client_key = derive_client_key(
        metadata,
        hashing=cfg.CLIENT_KEY_HASHING,
        bind_address=cfg.CLIENT_KEY_BIND_ADDRESS,
        max_instance_id_length=cfg.INSTANCE_ID_MAX_LENGTH,
    )
    return Caller(client_key=client_key, licensed=metadata.license_token is not None)


def enforce_body_limit(request: Request) -> None:
    """Reject bodies declared larger than MAX_BODY_BYTES before parsing them."""
    cfg = get_settings(request)
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > cfg.MAX_BODY_BYTES:
        raise PayloadTooLargeError("Request body too large")
