"""
Billing provider protocol.

Defines the interface for payment providers (Stripe, etc.).
This allows swapping providers without changing the entitlement engine.
"""
from typing import Protocol, Dict, Optional

from ronchon.models.billing import BillingEvent


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Checkout session creation, tagged with the caller's ClientKey
    - Portal session creation for an existing customer
    - Webhook signature verification and normalization into BillingEvent
    """

    def create_checkout_session(
        self,
        client_key: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        """
        Create a subscription checkout session for a caller.

        The ClientKey is attached both as the session's client reference and as
        subscription metadata, so every later event carries a way back to it.

        Args:
            client_key: ClientKey of the caller
            price_id: Provider price ID
            success_url: URL to redirect on success
            cancel_url: URL to redirect on cancellation

        Returns:
            Checkout session URL

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a billing portal session for customer self-service.

        Args:
            customer_id: Provider customer ID
            return_url: URL to return to after portal actions

        Returns:
            Portal session URL

        Raises:
            BillingProviderError: If portal session creation fails
        """
        ...

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> BillingEvent:
        """
        Verify webhook signature and normalize the event.

        Args:
            headers: HTTP headers (must include signature header)
            body: Raw webhook body (for signature verification)

        Returns:
            Normalized BillingEvent

        Raises:
            SignatureInvalidError: If the signature is missing or invalid
            BillingWebhookError: If the payload cannot be parsed
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""

    def __init__(self, message: str, provider_code: Optional[str] = None):
        super().__init__(message)
        self.provider_code = provider_code


class BillingWebhookError(BillingProviderError):
    """Exception for webhook processing errors."""
    pass
