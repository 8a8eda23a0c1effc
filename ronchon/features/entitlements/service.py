"""
ronchon/features/entitlements/service.py

Entitlement engine: quota gate + premium state machine.

Handles:
- Admission (check_and_consume): tier lookup, limit, read, increment
- Premium/free transitions driven by verified billing events (apply_event)
- Manual/admin grants (set_premium_manually)
- Status reporting (get_status)
- Store degradation under a single policy (fail open or fail closed)

States per ClientKey: FREE (no premium flag) and PREMIUM.
"""

from datetime import datetime
from typing import Optional

from ronchon.core.errors import StoreUnavailableError
from ronchon.core.logging import log_event
from ronchon.core.metrics import billing_events_total, quota_decisions_total
from ronchon.features.billing.dedup import EventDeduplicator
from ronchon.features.store.service import EntitlementStore
from ronchon.features.usage.service import UsageCounter, utc_day
from ronchon.models.billing import ApplyResult, BillingEvent, BillingEventType, SkipReason
from ronchon.models.entitlement import AdmissionDecision, StatusReport, Tier

FAIL_OPEN = "open"
FAIL_CLOSED = "closed"


class EntitlementEngine:
    def __init__(
        self,
        store: EntitlementStore,
        usage: UsageCounter,
        dedup: EventDeduplicator,
        *,
        free_limit: int = 10,
        premium_limit: int = 1000,
        failure_policy: str = FAIL_OPEN,
    ):
        if failure_policy not in (FAIL_OPEN, FAIL_CLOSED):
            raise ValueError(f"unknown store failure policy: {failure_policy}")
        self.store = store
        self.usage = usage
        self.dedup = dedup
        self.free_limit = free_limit
        self.premium_limit = premium_limit
        self.failure_policy = failure_policy

    @classmethod
    def from_backend(cls, backend, settings_obj) -> "EntitlementEngine":
        return cls(
            EntitlementStore(backend),
            UsageCounter(backend, settings_obj.USAGE_TTL_SECONDS),
            EventDeduplicator(backend, settings_obj.EVENT_DEDUP_TTL_SECONDS),
            free_limit=settings_obj.FREE_DAILY_LIMIT,
            premium_limit=settings_obj.PREMIUM_DAILY_LIMIT,
            failure_policy=settings_obj.STORE_FAILURE_POLICY,
        )

    def limit_for(self, tier: Tier) -> int:
        return self.premium_limit if tier == Tier.PREMIUM else self.free_limit

    async def _tier(self, client_key: str, licensed: bool) -> Tier:
        if licensed or await self.store.is_premium(client_key):
            return Tier.PREMIUM
        return Tier.FREE

    # ------------------------------------------------------------------
    # Quota gate
    # ------------------------------------------------------------------

    async def check_and_consume(
        self,
        client_key: str,
        *,
        licensed: bool = False,
        now: Optional[datetime] = None,
    ) -> AdmissionDecision:
        """
        Admit or reject one chat request for `client_key`.

        Rejection performs no mutation. Admission increments the day counter
        exactly once, before the caller invokes the LLM; the unit stays spent
        even if the LLM call later fails.

        Two concurrent callers at the boundary may both be admitted (one over
        the limit); increments are never lost.

        Raises:
            StoreUnavailableError: store failed and the policy is fail-closed
        """
        day = utc_day(now)
        try:
            tier = await self._tier(client_key, licensed)
            limit = self.limit_for(tier)
            used = await self.usage.get(client_key, day)
            if used >= limit:
                quota_decisions_total.inc({"tier": tier.value, "outcome": "rejected"})
                log_event(
                    "info",
                    "quota.rejected",
                    client_key=client_key,
                    extra={"tier": tier.value, "used": used, "limit": limit, "day": day},
                )
                return AdmissionDecision(admitted=False, tier=tier, used_count=used, limit=limit)

            used = await self.usage.increment_and_get(client_key, day)
        except StoreUnavailableError as e:
            return self._degraded_admission(client_key, licensed, e)

        quota_decisions_total.inc({"tier": tier.value, "outcome": "admitted"})
        log_event(
            "info",
            "quota.admitted",
            client_key=client_key,
            extra={"tier": tier.value, "used": used, "limit": limit, "day": day},
        )
        return AdmissionDecision(admitted=True, tier=tier, used_count=used, limit=limit)

    def _degraded_admission(self, client_key: str, licensed: bool, error: StoreUnavailableError) -> AdmissionDecision:
        if self.failure_policy == FAIL_CLOSED:
            quota_decisions_total.inc({"tier": "unknown", "outcome": "store_unavailable"})
            log_event(
                "warning",
                "quota.store_unavailable",
                client_key=client_key,
                error_code=error.code,
                extra={"policy": FAIL_CLOSED},
            )
            raise error

        # Fail open: Free tier, zero prior usage for this call. A license still
        # carries its grant since it needs no store lookup.
        tier = Tier.PREMIUM if licensed else Tier.FREE
        quota_decisions_total.inc({"tier": tier.value, "outcome": "degraded"})
        log_event(
            "warning",
            "quota.degraded",
            client_key=client_key,
            error_code=error.code,
            extra={"policy": FAIL_OPEN, "tier": tier.value},
        )
        return AdmissionDecision(admitted=True, tier=tier, used_count=1, limit=self.limit_for(tier), degraded=True)

    # ------------------------------------------------------------------
    # Status / admin
    # ------------------------------------------------------------------

    async def get_status(self, client_key: str, *, licensed: bool = False, now: Optional[datetime] = None) -> StatusReport:
        day = utc_day(now)
        try:
            tier = await self._tier(client_key, licensed)
            used = await self.usage.get(client_key, day)
            degraded = False
        except StoreUnavailableError as e:
            if self.failure_policy == FAIL_CLOSED:
                raise
            log_event("warning", "status.degraded", client_key=client_key, error_code=e.code)
            tier = Tier.PREMIUM if licensed else Tier.FREE
            used = 0
            degraded = True
        return StatusReport(
            client_key=client_key,
            tier=tier,
            used_count=used,
            limit=self.limit_for(tier),
            day=day,
            degraded=degraded,
        )

    async def set_premium_manually(self, client_key: str, premium: bool) -> None:
        """Mock/admin upgrade or downgrade. No customer link involved."""
        await self.store.set_premium(client_key, premium)
        log_event(
            "info",
            "entitlement.manual_set",
            client_key=client_key,
            extra={"premium": premium},
        )

    # ------------------------------------------------------------------
    # Billing events
    # ------------------------------------------------------------------

    async def apply_event(self, event: BillingEvent) -> ApplyResult:
        """
        Apply one verified billing event at most once.

        The event is marked processed only after its flag transition was
        persisted. Store errors before that point propagate so the webhook
        answers non-2xx and the provider redelivers.
        """
        if not await self.dedup.should_process(event.id):
            return self._record(ApplyResult.skipped(event, SkipReason.DUPLICATE))

        if event.type == BillingEventType.CHECKOUT_COMPLETED:
            result = await self._on_checkout_completed(event)
        elif event.type == BillingEventType.SUBSCRIPTION_DELETED:
            result = await self._on_subscription_deleted(event)
        elif event.type == BillingEventType.INVOICE_PAID:
            result = await self._on_invoice_paid(event)
        else:
            result = ApplyResult.skipped(event, SkipReason.UNHANDLED)

        await self.dedup.mark_processed(event.id)
        return self._record(result)

    async def _resolve_key(self, event: BillingEvent) -> Optional[str]:
        data = event.data
        if data.client_reference_key:
            return data.client_reference_key
        if data.subscription_id:
            key = await self.store.resolve_key_by_subscription(data.subscription_id)
            if key:
                return key
        if data.customer_id:
            return await self.store.resolve_key_by_customer(data.customer_id)
        return None

    async def _on_checkout_completed(self, event: BillingEvent) -> ApplyResult:
        """
        Grant premium and record the customer/subscription links.

        Links are written even when the flag write fails, so a later portal
        call can still find the customer. A failed flag write always raises:
        the event stays unmarked and the provider redelivers it.
        """
        client_key = event.data.client_reference_key
        if not client_key:
            return ApplyResult.skipped(event, SkipReason.UNATTRIBUTABLE)

        flag_error: Optional[StoreUnavailableError] = None
        try:
            await self.store.set_premium(client_key, True)
        except StoreUnavailableError as e:
            flag_error = e

        # Link writes never roll back the flag write.
        data = event.data
        link_error: Optional[StoreUnavailableError] = None
        try:
            if data.customer_id:
                await self.store.link_customer(data.customer_id, client_key)
            if data.subscription_id:
                await self.store.link_subscription(data.subscription_id, client_key)
        except StoreUnavailableError as e:
            link_error = e
            log_event(
                "warning",
                "billing.link_failed",
                client_key=client_key,
                event_type=event.type.value,
                error_code=e.code,
                extra={"event_id": event.id},
            )

        if flag_error is not None:
            log_event(
                "warning",
                "billing.flag_failed",
                client_key=client_key,
                event_type=event.type.value,
                error_code=flag_error.code,
                extra={"event_id": event.id, "linked": bool(data.customer_id or data.subscription_id) and link_error is None},
            )
            raise flag_error
        return ApplyResult.ok(event, client_key)

    async def _on_subscription_deleted(self, event: BillingEvent) -> ApplyResult:
        client_key = await self._resolve_key(event)
        if not client_key:
            return ApplyResult.skipped(event, SkipReason.UNATTRIBUTABLE)

        await self.store.set_premium(client_key, False)

        # Customer link is kept so the caller can still reach the portal.
        if event.data.subscription_id:
            try:
                await self.store.unlink_subscription(event.data.subscription_id)
            except StoreUnavailableError as e:
                log_event(
                    "warning",
                    "billing.unlink_failed",
                    client_key=client_key,
                    event_type=event.type.value,
                    error_code=e.code,
                    extra={"event_id": event.id},
                )
        return ApplyResult.ok(event, client_key)

    async def _on_invoice_paid(self, event: BillingEvent) -> ApplyResult:
        client_key = await self._resolve_key(event)
        if not client_key:
            return ApplyResult.skipped(event, SkipReason.UNATTRIBUTABLE)
        await self.store.set_premium(client_key, True)
        return ApplyResult.ok(event, client_key)

    def _record(self, result: ApplyResult) -> ApplyResult:
        outcome = "applied" if result.applied else result.reason.value
        billing_events_total.inc({"type": result.event_type.value, "outcome": outcome})
        level = "warning" if result.reason == SkipReason.UNATTRIBUTABLE else "info"
        log_event(
            level,
            "billing.event_applied" if result.applied else "billing.event_skipped",
            client_key=result.client_key,
            event_type=result.event_type.value,
            extra={"event_id": result.event_id, "outcome": outcome},
        )
        return result
