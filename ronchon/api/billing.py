"""
Billing API routes.

Surface:
- POST /api/billing/checkout: Create checkout session for the caller
- POST /api/billing/portal: Create portal session for the caller's customer
- POST /api/billing/webhook: Handle Stripe webhooks
- POST /api/mock/upgrade, /api/mock/downgrade: Dev-only tier flips (MOCK_BILLING_ENABLED)
- POST /api/admin/premium: Admin override (X-Admin-Key)
"""
import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from ronchon.api.deps import Caller, get_billing_provider, get_engine, get_settings, resolve_caller
from ronchon.core.admin_auth import AdminActor, require_admin
from ronchon.core.errors import NotFoundError, ValidationError
from ronchon.features.billing.service import process_webhook, start_checkout, start_portal
from ronchon.features.entitlements.service import EntitlementEngine

logger = logging.getLogger("ronchon")

router = APIRouter(prefix="/api/billing", tags=["billing"])
mock_router = APIRouter(prefix="/api/mock", tags=["billing"])
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])


class SessionResponse(BaseModel):
    """Response with a provider-hosted URL."""
    url: str


class AdminPremiumRequest(BaseModel):
    client_key: str
    premium: bool


@router.post("/checkout", response_model=SessionResponse)
async def create_checkout(
    caller: Caller = Depends(resolve_caller),
    provider=Depends(get_billing_provider),
    cfg=Depends(get_settings),
):
    """
    Create Stripe checkout session tagged with the caller's ClientKey.

    Errors:
        503: Billing disabled (no STRIPE_SECRET_KEY / STRIPE_PRICE_ID)
        502: Stripe API error
    """
    url = await start_checkout(caller.client_key, provider, cfg)
    return {"url": url}


@router.post("/portal", response_model=SessionResponse)
async def create_portal(
    caller: Caller = Depends(resolve_caller),
    engine: EntitlementEngine = Depends(get_engine),
    provider=Depends(get_billing_provider),
    cfg=Depends(get_settings),
):
    """
    Create Stripe billing portal session.

    Errors:
        503: Billing disabled
        404: No customer linked (caller never checked out)
        502: Stripe API error
    """
    url = await start_portal(engine, caller.client_key, provider, cfg)
    return {"url": url}


@router.post("/webhook")
async def handle_webhook(
    request: Request,
    engine: EntitlementEngine = Depends(get_engine),
    provider=Depends(get_billing_provider),
):
    """
    Handle Stripe webhook events.

    Verifies signature on the raw body, then applies the event at most once.
    Any failure answers non-2xx so Stripe redelivers.

    Returns:
        {"received": true, "event_id", "applied", "reason"}
    """
    body = await request.body()
    result = await process_webhook(engine, dict(request.headers), body, provider)
    return {
        "received": True,
        "event_id": result.event_id,
        "applied": result.applied,
        "reason": result.reason.value if result.reason else None,
    }


def _require_mock_billing(cfg=Depends(get_settings)) -> None:
    if not cfg.MOCK_BILLING_ENABLED:
        raise NotFoundError("Not Found")


@mock_router.post("/upgrade", dependencies=[Depends(_require_mock_billing)])
async def mock_upgrade(caller: Caller = Depends(resolve_caller), engine: EntitlementEngine = Depends(get_engine)):
    await engine.set_premium_manually(caller.client_key, True)
    return {"ok": True, "premium": True, "client_key": caller.client_key}


@mock_router.post("/downgrade", dependencies=[Depends(_require_mock_billing)])
async def mock_downgrade(caller: Caller = Depends(resolve_caller), engine: EntitlementEngine = Depends(get_engine)):
    await engine.set_premium_manually(caller.client_key, False)
    return {"ok": True, "premium": False, "client_key": caller.client_key}


@admin_router.post("/premium")
async def admin_set_premium(
    body: AdminPremiumRequest,
    actor: AdminActor = Depends(require_admin),
    engine: EntitlementEngine = Depends(get_engine),
):
    client_key = body.client_key.strip()
    if not client_key:
        raise ValidationError("client_key is required")
    await engine.set_premium_manually(client_key, body.premium)
    logger.info(
        "admin.premium_set",
        extra={"client_key": client_key, "premium": body.premium, "actor_id": actor.actor_id},
    )
    return {"ok": True, "client_key": client_key, "premium": body.premium}
