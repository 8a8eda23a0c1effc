"""
ronchon/features/identity/service.py

Client key derivation.

A ClientKey identifies an anonymous caller across requests without a login.
Priority of discriminators:
1. a valid license token            -> "lic:<digest>"
2. a client-supplied instance id    -> "cid:<digest>" (optionally bound to the address)
3. the resolved network address     -> "ip:<digest>"
4. nothing usable                   -> "anonymous"

Instance ids are self-reported and therefore spoofable: a caller minting fresh
ids gets a fresh free quota. That is a known limitation of the anonymous tier.
Pure functions only; nothing here performs I/O or raises.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Optional

ANONYMOUS_KEY = "anonymous"

INSTANCE_ID_HEADER = "x-instance-id"
LICENSE_HEADER = "x-license-key"
FORWARDED_FOR_HEADER = "x-forwarded-for"

DIGEST_LENGTH = 32
MAX_LICENSE_LENGTH = 256

_INSTANCE_ID_DISALLOWED = re.compile(r"[^A-Za-z0-9_-]")


@dataclass(frozen=True)
class RequestMetadata:
    """Identity-relevant request facts, already extracted from the transport."""
    forwarded_for: Optional[str] = None
    peer_address: Optional[str] = None
    instance_id: Optional[str] = None
    license_token: Optional[str] = None


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]


def resolve_address(forwarded_for: Optional[str], peer_address: Optional[str]) -> Optional[str]:
    """First hop of the forwarded-for chain, else the direct peer."""
    if forwarded_for:
        first = str(forwarded_for).split(",")[0].strip()
        if first:
            return first
    if peer_address:
        peer = str(peer_address).strip()
        if peer:
            return peer
    return None


def sanitize_instance_id(raw: Optional[str], max_length: int = 64) -> Optional[str]:
    """Keep [A-Za-z0-9_-] only, capped at max_length. Empty results become None."""
    if not raw:
        return None
    cleaned = _INSTANCE_ID_DISALLOWED.sub("", str(raw))[:max(0, max_length)]
    return cleaned or None


def _normalize_license(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    token = str(raw).strip()[:MAX_LICENSE_LENGTH]
    return token or None


def derive_client_key(
    metadata: Optional[RequestMetadata],
    *,
    hashing: bool = True,
    bind_address: bool = False,
    max_instance_id_length: int = 64,
) -> str:
    """Compute a stable ClientKey for the caller described by `metadata`.

    Deterministic: identical metadata and options always give the same key.
    Never raises; anything unusable degrades to ANONYMOUS_KEY.

    License tokens are always hashed so they never appear in keys or logs.
    """
    if metadata is None:
        return ANONYMOUS_KEY

    license_token = _normalize_license(metadata.license_token)
    if license_token:
        return f"lic:{_digest(license_token)}"

    address = resolve_address(metadata.forwarded_for, metadata.peer_address)
    instance_id = sanitize_instance_id(metadata.instance_id, max_instance_id_length)

    if instance_id:
        composite = f"{instance_id}@{address}" if bind_address and address else instance_id
        return f"cid:{_digest(composite) if hashing else composite}"

    if address:
        return f"ip:{_digest(address) if hashing else address}"

    return ANONYMOUS_KEY


def metadata_from_request(request, *, license_valid=None) -> RequestMetadata:
    """Extract RequestMetadata from a Starlette request.

    `license_valid` is a predicate; a license header it rejects is dropped so an
    invalid token does not mint a separate identity.
    """
    headers = request.headers
    license_token = _normalize_license(headers.get(LICENSE_HEADER))
    if license_token and license_valid is not None and not license_valid(license_token):
        license_token = None
    return RequestMetadata(
        forwarded_for=headers.get(FORWARDED_FOR_HEADER),
        peer_address=request.client.host if request.client else None,
        instance_id=headers.get(INSTANCE_ID_HEADER),
        license_token=license_token,
    )
