"""
ronchon/models/entitlement.py

Tier and quota-gate results.

Tier governs the daily limit. A ClientKey is FREE unless a premium flag exists
(or a valid license was presented).
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class Tier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


class AdmissionDecision(BaseModel):
    """
    Outcome of the quota gate, independent of whether the LLM call later succeeds.

    used_count is post-increment when admitted, the current count when rejected.
    degraded is True when the store failed and the fail-open policy admitted the call.
    """
    model_config = ConfigDict(frozen=True)

    admitted: bool
    tier: Tier
    used_count: int
    limit: int
    degraded: bool = False

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used_count)


class StatusReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_key: str
    tier: Tier
    used_count: int
    limit: int
    day: str
    degraded: bool = False

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used_count)
