"""Test doubles shared by fixtures and tests."""

import json
from typing import Dict, List, Optional

from ronchon.core.errors import SignatureInvalidError
from ronchon.models.billing import BillingEvent, BillingEventData, BillingEventType

START_TIME = 1_760_000_000.0  # 2025-10-09T08:53:20Z


class FakeTime:
    def __init__(self, start: float = START_TIME):
        self.current = start

    def advance(self, seconds: float):
        self.current += seconds

    def __call__(self):
        return self.current


class FakeCompletionClient:
    """CompletionClient double: records prompts, returns `reply` or raises `error`."""

    def __init__(self, reply: Optional[str] = "Salut !", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[List[Dict[str, str]]] = []

    async def complete(self, messages):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply


class FakeBillingProvider:
    """
    BillingProvider double.

    parse_webhook accepts a JSON body shaped like
    {"id", "type", "client_reference_key", "customer_id", "subscription_id"}
    when the stripe-signature header equals "valid".
    """

    def __init__(self):
        self.checkouts: List[dict] = []
        self.portals: List[dict] = []

    def create_checkout_session(self, client_key, price_id, success_url, cancel_url):
        self.checkouts.append({"client_key": client_key, "price_id": price_id})
        return f"https://checkout.test/{len(self.checkouts)}"

    def create_portal_session(self, customer_id, return_url):
        self.portals.append({"customer_id": customer_id, "return_url": return_url})
        return f"https://portal.test/{customer_id}"

    def parse_webhook(self, headers, body):
        if headers.get("stripe-signature") != "valid":
            raise SignatureInvalidError("Invalid webhook signature")
        payload = json.loads(body)
        return make_event(
            payload["id"],
            BillingEventType(payload["type"]),
            key=payload.get("client_reference_key"),
            customer=payload.get("customer_id"),
            subscription=payload.get("subscription_id"),
        )


def make_event(event_id: str, event_type: BillingEventType, *, key=None, customer=None, subscription=None) -> BillingEvent:
    return BillingEvent(
        id=event_id,
        type=event_type,
        data=BillingEventData(client_reference_key=key, customer_id=customer, subscription_id=subscription),
    )
