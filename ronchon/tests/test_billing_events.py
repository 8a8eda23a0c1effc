"""Tests for EntitlementEngine.apply_event: transitions, dedup, attribution."""

import pytest

from ronchon.tests.mocks import make_event
from ronchon.core.errors import StoreUnavailableError
from ronchon.core.metrics import billing_events_total
from ronchon.features.billing.dedup import event_key
from ronchon.features.store.service import customer_key, subscription_key
from ronchon.models.billing import BillingEventType, SkipReason

CHECKOUT = BillingEventType.CHECKOUT_COMPLETED
DELETED = BillingEventType.SUBSCRIPTION_DELETED


@pytest.mark.asyncio
async def test_checkout_twice_is_applied_once(engine, memory_backend):
    event = make_event("evt_1", CHECKOUT, key="cid:abc", customer="cus_1", subscription="sub_1")

    first = await engine.apply_event(event)
    second = await engine.apply_event(event)

    assert first.applied is True
    assert second.applied is False
    assert second.reason == SkipReason.DUPLICATE
    assert await engine.store.is_premium("cid:abc") is True
    links = [k for k in memory_backend._data if k.startswith("cust2key:")]
    assert links == [customer_key("cus_1")]
    assert await engine.store.resolve_key_by_subscription("sub_1") == "cid:abc"
    assert billing_events_total.value({"type": "checkout_completed", "outcome": "duplicate"}) == 1


@pytest.mark.asyncio
async def test_subscription_deleted_resolves_key_via_customer(engine):
    await engine.store.link_customer("cus_1", "cid:abc")
    await engine.store.set_premium("cid:abc", True)

    result = await engine.apply_event(make_event("evt_2", DELETED, customer="cus_1"))

    assert result.applied is True
    assert result.client_key == "cid:abc"
    assert await engine.store.is_premium("cid:abc") is False
    # customer link survives so the portal stays reachable
    assert await engine.store.resolve_customer_by_key("cid:abc") == "cus_1"


@pytest.mark.asyncio
async def test_subscription_deleted_resolves_key_via_subscription(engine, memory_backend):
    await engine.apply_event(make_event("evt_1", CHECKOUT, key="cid:abc", subscription="sub_9"))
    result = await engine.apply_event(make_event("evt_2", DELETED, subscription="sub_9"))
    assert result.applied is True
    assert await engine.store.is_premium("cid:abc") is False
    assert subscription_key("sub_9") not in memory_backend._data


@pytest.mark.asyncio
async def test_checkout_without_key_is_unattributable(engine, memory_backend):
    result = await engine.apply_event(make_event("evt_3", CHECKOUT, customer="cus_7"))
    assert result.applied is False
    assert result.reason == SkipReason.UNATTRIBUTABLE
    assert not [k for k in memory_backend._data if k.startswith("premium:")]
    assert await engine.store.resolve_key_by_customer("cus_7") is None


@pytest.mark.asyncio
async def test_deleted_without_resolvable_key_is_unattributable(engine):
    result = await engine.apply_event(make_event("evt_4", DELETED, customer="cus_unknown"))
    assert result.reason == SkipReason.UNATTRIBUTABLE


@pytest.mark.asyncio
async def test_invoice_paid_renews_premium(engine):
    await engine.store.link_customer("cus_1", "cid:abc")
    result = await engine.apply_event(make_event("evt_5", BillingEventType.INVOICE_PAID, customer="cus_1"))
    assert result.applied is True
    assert await engine.store.is_premium("cid:abc") is True


@pytest.mark.asyncio
async def test_unhandled_event_is_skipped_and_marked(engine, memory_backend):
    result = await engine.apply_event(make_event("evt_6", BillingEventType.UNHANDLED))
    assert result.reason == SkipReason.UNHANDLED
    assert event_key("evt_6") in memory_backend._data


@pytest.mark.asyncio
async def test_failed_flag_write_leaves_event_unmarked(engine, memory_backend, monkeypatch):
    async def broken_set_premium(client_key, premium):
        raise StoreUnavailableError("Backing store unavailable")

    monkeypatch.setattr(engine.store, "set_premium", broken_set_premium)
    event = make_event("evt_7", CHECKOUT, key="cid:abc")

    with pytest.raises(StoreUnavailableError):
        await engine.apply_event(event)
    assert await engine.dedup.should_process("evt_7") is True


@pytest.mark.asyncio
async def test_link_failure_keeps_flag(engine, monkeypatch):
    async def broken_link(customer_id, client_key):
        raise StoreUnavailableError("Backing store unavailable")

    monkeypatch.setattr(engine.store, "link_customer", broken_link)
    result = await engine.apply_event(make_event("evt_8", CHECKOUT, key="cid:abc", customer="cus_1"))

    assert result.applied is True
    assert await engine.store.is_premium("cid:abc") is True
    assert await engine.dedup.should_process("evt_8") is False


@pytest.mark.asyncio
async def test_flag_failure_raises_but_keeps_link(engine, monkeypatch):
    async def broken_set_premium(client_key, premium):
        raise StoreUnavailableError("Backing store unavailable")

    monkeypatch.setattr(engine.store, "set_premium", broken_set_premium)

    with pytest.raises(StoreUnavailableError):
        await engine.apply_event(make_event("evt_9", CHECKOUT, key="cid:abc", customer="cus_1"))

    assert await engine.store.resolve_key_by_customer("cus_1") == "cid:abc"
    assert await engine.dedup.should_process("evt_9") is True
