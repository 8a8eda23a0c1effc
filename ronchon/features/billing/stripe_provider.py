"""
Stripe billing provider implementation.

Implements BillingProvider protocol using Stripe API.
Handles webhook signature verification and event normalization.
"""
import os
from typing import Dict, Any, Optional

import stripe

from ronchon.core.errors import SignatureInvalidError
from ronchon.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
)
from ronchon.models.billing import BillingEvent, BillingEventData, BillingEventType

CLIENT_KEY_METADATA = "client_key"

EVENT_TYPE_MAP = {
    "checkout.session.completed": BillingEventType.CHECKOUT_COMPLETED,
    "customer.subscription.deleted": BillingEventType.SUBSCRIPTION_DELETED,
    "invoice.paid": BillingEventType.INVOICE_PAID,
    "invoice.payment_succeeded": BillingEventType.INVOICE_PAID,
}


def _as_id(value: Any) -> Optional[str]:
    """Stripe fields may be an id string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


def _metadata_key(obj: Dict[str, Any]) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    return metadata.get(CLIENT_KEY_METADATA) or None


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY env var)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET env var)
        """
        self.secret_key = secret_key or os.getenv("STRIPE_SECRET_KEY")
        self.webhook_secret = webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET")

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def create_checkout_session(
        self,
        client_key: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        """Create Stripe subscription checkout session tagged with the ClientKey."""
        try:
            session = stripe.checkout.Session.create(
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                client_reference_id=client_key,
                metadata={CLIENT_KEY_METADATA: client_key},
                subscription_data={"metadata": {CLIENT_KEY_METADATA: client_key}},
            )
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}", getattr(e, "code", None))

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create Stripe billing portal session."""
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e}", getattr(e, "code", None))

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> BillingEvent:
        """Verify Stripe webhook signature and normalize the event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        lowered = {k.lower(): v for k, v in headers.items()}
        sig_header = lowered.get("stripe-signature")
        if not sig_header:
            raise SignatureInvalidError("Missing stripe-signature header")

        try:
            event = stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError:
            raise SignatureInvalidError("Invalid webhook signature")

        return normalize_event(event)


def normalize_event(event: Dict[str, Any]) -> BillingEvent:
    """Map a verified Stripe event onto the provider-neutral BillingEvent."""
    try:
        event_id = event["id"]
        provider_type = event["type"]
    except (KeyError, TypeError) as e:
        raise BillingWebhookError(f"Malformed event: {e}")

    obj = (event.get("data") or {}).get("object") or {}
    event_type = EVENT_TYPE_MAP.get(provider_type, BillingEventType.UNHANDLED)

    client_key = None
    customer_id = _as_id(obj.get("customer"))
    subscription_id = None

    if event_type == BillingEventType.CHECKOUT_COMPLETED:
        client_key = obj.get("client_reference_id") or _metadata_key(obj)
        subscription_id = _as_id(obj.get("subscription"))
    elif event_type == BillingEventType.SUBSCRIPTION_DELETED:
        client_key = _metadata_key(obj)
        subscription_id = _as_id(obj.get("id"))
    elif event_type == BillingEventType.INVOICE_PAID:
        subscription_id = _as_id(obj.get("subscription"))
        details = obj.get("subscription_details") or {}
        client_key = _metadata_key(details)

    return BillingEvent(
        id=event_id,
        type=event_type,
        data=BillingEventData(
            client_reference_key=client_key,
            customer_id=customer_id,
            subscription_id=subscription_id,
        ),
        provider_type=provider_type,
    )
