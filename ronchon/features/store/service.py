"""
ronchon/features/store/service.py

Entitlement store: premium flags and the ClientKey <-> payment-provider links.

Persisted layout (backend keys):
    premium:{ClientKey}        "1" when premium, absent otherwise
    cust2key:{CustomerId}      ClientKey
    key2cust:{ClientKey}       CustomerId (reverse index, keeps the link bidirectional)
    sub2key:{SubscriptionId}   ClientKey

Storage contract only; transitions are decided by the entitlement engine.
All writes are idempotent.
"""

from typing import Optional

from ronchon.features.store.backend import KeyValueBackend


def premium_key(client_key: str) -> str:
    return f"premium:{client_key}"


def customer_key(customer_id: str) -> str:
    return f"cust2key:{customer_id}"


def reverse_customer_key(client_key: str) -> str:
    return f"key2cust:{client_key}"


def subscription_key(subscription_id: str) -> str:
    return f"sub2key:{subscription_id}"


class EntitlementStore:
    def __init__(self, backend: KeyValueBackend):
        self.backend = backend

    async def is_premium(self, client_key: str) -> bool:
        return await self.backend.exists(premium_key(client_key))

    async def set_premium(self, client_key: str, premium: bool) -> None:
        if premium:
            await self.backend.set(premium_key(client_key), "1")
        else:
            await self.backend.delete(premium_key(client_key))

    async def link_customer(self, customer_id: str, client_key: str) -> None:
        """
        Associate customer_id <-> client_key, last write wins.

        Any previous partner of either side is detached so the mapping stays
        one-to-one in both directions.
        """
        previous_customer = await self.backend.get(reverse_customer_key(client_key))
        if previous_customer and previous_customer != customer_id:
            await self.backend.delete(customer_key(previous_customer))

        previous_key = await self.backend.get(customer_key(customer_id))
        if previous_key and previous_key != client_key:
            await self.backend.delete(reverse_customer_key(previous_key))

        await self.backend.set(customer_key(customer_id), client_key)
        await self.backend.set(reverse_customer_key(client_key), customer_id)

    async def resolve_key_by_customer(self, customer_id: str) -> Optional[str]:
        if not customer_id:
            return None
        return await self.backend.get(customer_key(customer_id))

    async def resolve_customer_by_key(self, client_key: str) -> Optional[str]:
        return await self.backend.get(reverse_customer_key(client_key))

    async def link_subscription(self, subscription_id: str, client_key: str) -> None:
        await self.backend.set(subscription_key(subscription_id), client_key)

    async def resolve_key_by_subscription(self, subscription_id: str) -> Optional[str]:
        if not subscription_id:
            return None
        return await self.backend.get(subscription_key(subscription_id))

    async def unlink_subscription(self, subscription_id: str) -> None:
        await self.backend.delete(subscription_key(subscription_id))
