"""License key registry.

Valid tokens come from LICENSE_KEYS (comma-separated). A caller presenting one
is served at the premium tier without any webhook-driven entitlement.
"""

import hmac
from typing import FrozenSet, Iterable, Optional


def parse_license_keys(raw: Optional[str]) -> FrozenSet[str]:
    return frozenset(k.strip() for k in (raw or "").split(",") if k.strip())


class LicenseRegistry:
    def __init__(self, keys: Iterable[str] = ()):
        self._keys: FrozenSet[str] = frozenset(k for k in keys if k)

    @classmethod
    def from_settings(cls, settings_obj) -> "LicenseRegistry":
        return cls(parse_license_keys(getattr(settings_obj, "LICENSE_KEYS", "")))

    def __len__(self) -> int:
        return len(self._keys)

    def is_valid(self, token: Optional[str]) -> bool:
        candidate = (token or "").strip()
        if not candidate:
            return False
        # compare bytes: headers arrive latin-1 decoded and may hold non-ASCII
        raw = candidate.encode("utf-8")
        return any(hmac.compare_digest(raw, key.encode("utf-8")) for key in self._keys)
