"""
Admin authentication for entitlement overrides.

Shared-secret X-Admin-Key checked against ADMIN_KEY. With no ADMIN_KEY
configured every admin call is refused.
"""
import hashlib
import hmac
from dataclasses import dataclass

from fastapi import Request

from ronchon.core.config import settings
from ronchon.core.errors import PermissionError

ADMIN_KEY_HEADER = "X-Admin-Key"


@dataclass
class AdminActor:
    """Represents an authenticated admin caller, for audit logs."""
    actor_id: str  # "admin:<hash prefix>", never the key itself


def require_admin(request: Request) -> AdminActor:
    """FastAPI dependency: 403 unless X-Admin-Key matches ADMIN_KEY."""
    cfg = getattr(request.app.state, "settings", None) or settings
    expected = cfg.ADMIN_KEY
    header_key = request.headers.get(ADMIN_KEY_HEADER, "").strip()
    if not expected or not header_key or not hmac.compare_digest(header_key.encode("utf-8"), expected.encode("utf-8")):
        raise PermissionError("Admin key required")
    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_id=f"admin:{key_hash}")
