"""
Billing service orchestrator.

Coordinates:
- Checkout sessions tagged with the caller's ClientKey
- Portal sessions for callers with a linked customer
- Webhook processing (verify -> normalize -> EntitlementEngine.apply_event)

All Stripe-specific code is in stripe_provider.py. Provider SDK calls are
blocking and run in a worker thread.
"""
import asyncio
import logging
from typing import Dict, Optional

from ronchon.core.config import settings
from ronchon.core.errors import (
    BillingDisabledError,
    NotFoundError,
    UpstreamCallError,
    ValidationError,
)
from ronchon.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    BillingWebhookError,
)
from ronchon.features.billing.stripe_provider import StripeProvider
from ronchon.features.entitlements.service import EntitlementEngine
from ronchon.models.billing import ApplyResult

logger = logging.getLogger("ronchon")


def billing_enabled(settings_obj=None) -> bool:
    """Check if billing is enabled (Stripe configured)."""
    cfg = settings_obj or settings
    return bool(cfg.STRIPE_SECRET_KEY)


def get_provider(settings_obj=None) -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    cfg = settings_obj or settings
    if not billing_enabled(cfg):
        return None
    try:
        return StripeProvider(cfg.STRIPE_SECRET_KEY, cfg.STRIPE_WEBHOOK_SECRET)
    except BillingProviderError as e:
        logger.warning(f"[billing] provider unavailable: {e}")
        return None


def _require(provider: Optional[BillingProvider]) -> BillingProvider:
    if provider is None:
        raise BillingDisabledError("Billing is not configured")
    return provider


async def start_checkout(
    client_key: str,
    provider: Optional[BillingProvider],
    settings_obj=None,
) -> str:
    """
    Start a subscription checkout for the caller.

    Returns:
        Checkout URL

    Raises:
        BillingDisabledError: No provider or no price configured
        UpstreamCallError: Provider rejected the session creation
    """
    cfg = settings_obj or settings
    provider = _require(provider)
    if not cfg.STRIPE_PRICE_ID:
        raise BillingDisabledError("No price configured")
    try:
        return await asyncio.to_thread(
            provider.create_checkout_session,
            client_key,
            cfg.STRIPE_PRICE_ID,
            cfg.BILLING_SUCCESS_URL,
            cfg.BILLING_CANCEL_URL,
        )
    except BillingProviderError as e:
        logger.error(f"[billing] checkout failed: {e}", extra={"client_key": client_key})
        raise UpstreamCallError("Billing provider error")


async def start_portal(
    engine: EntitlementEngine,
    client_key: str,
    provider: Optional[BillingProvider],
    settings_obj=None,
) -> str:
    """
    Open the billing portal for the customer linked to the caller.

    Raises:
        BillingDisabledError: No provider configured
        NotFoundError: The caller never completed a checkout
        UpstreamCallError: Provider rejected the session creation
    """
    cfg = settings_obj or settings
    provider = _require(provider)
    customer_id = await engine.store.resolve_customer_by_key(client_key)
    if not customer_id:
        raise NotFoundError("No billing customer for this client")
    try:
        return await asyncio.to_thread(provider.create_portal_session, customer_id, cfg.BILLING_RETURN_URL)
    except BillingProviderError as e:
        logger.error(f"[billing] portal failed: {e}", extra={"client_key": client_key})
        raise UpstreamCallError("Billing provider error")


async def process_webhook(
    engine: EntitlementEngine,
    headers: Dict[str, str],
    body: bytes,
    provider: Optional[BillingProvider],
) -> ApplyResult:
    """
    Verify, normalize and apply a webhook delivery.

    Every failure raises so the route answers non-2xx and the provider
    redelivers; once the event is marked processed, redeliveries are Skipped.

    Raises:
        BillingDisabledError: No provider configured
        SignatureInvalidError: Missing or invalid signature
        ValidationError: Signed payload could not be parsed
        StoreUnavailableError: The flag transition could not be persisted
    """
    provider = _require(provider)
    try:
        event = provider.parse_webhook(headers, body)
    except BillingWebhookError as e:
        logger.warning(f"[billing] webhook rejected: {e}")
        raise ValidationError("Invalid webhook payload")
    return await engine.apply_event(event)
