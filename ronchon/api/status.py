"""GET /api/status: tier and today's usage for the calling ClientKey."""
from fastapi import APIRouter, Depends

from ronchon.api.deps import Caller, get_engine, resolve_caller
from ronchon.features.entitlements.service import EntitlementEngine

router = APIRouter(prefix="/api", tags=["status"])


@router.get("/status")
async def get_status(caller: Caller = Depends(resolve_caller), engine: EntitlementEngine = Depends(get_engine)):
    report = await engine.get_status(caller.client_key, licensed=caller.licensed)
    return {
        "client_key": report.client_key,
        "tier": report.tier.value,
        "premium": report.tier.value == "premium",
        "used": report.used_count,
        "limit": report.limit,
        "remaining": report.remaining,
        "day": report.day,
        "degraded": report.degraded,
    }
