"""
Billing models for Ronchon.

Provider-neutral view of a verified payment-provider event, and the result of
applying one to the entitlement state.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class BillingEventType(str, Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    INVOICE_PAID = "invoice_paid"
    UNHANDLED = "unhandled"


class BillingEventData(BaseModel):
    """Identifiers carried by an event. Any of them may be absent."""
    model_config = ConfigDict(frozen=True)

    client_reference_key: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None


class BillingEvent(BaseModel):
    """Verified event, already normalized by a BillingProvider."""
    model_config = ConfigDict(frozen=True)

    id: str
    type: BillingEventType
    data: BillingEventData = Field(default_factory=BillingEventData)
    provider_type: Optional[str] = None  # raw provider type, e.g. checkout.session.completed
    raw: Dict[str, Any] = Field(default_factory=dict)


class SkipReason(str, Enum):
    DUPLICATE = "duplicate"
    UNATTRIBUTABLE = "unattributable"
    UNHANDLED = "unhandled"


class ApplyResult(BaseModel):
    """Applied, or Skipped{reason}."""
    model_config = ConfigDict(frozen=True)

    applied: bool
    event_id: str
    event_type: BillingEventType
    client_key: Optional[str] = None
    reason: Optional[SkipReason] = None

    @classmethod
    def ok(cls, event: BillingEvent, client_key: str) -> "ApplyResult":
        return cls(applied=True, event_id=event.id, event_type=event.type, client_key=client_key)

    @classmethod
    def skipped(cls, event: BillingEvent, reason: SkipReason, client_key: Optional[str] = None) -> "ApplyResult":
        return cls(applied=False, event_id=event.id, event_type=event.type, client_key=client_key, reason=reason)
