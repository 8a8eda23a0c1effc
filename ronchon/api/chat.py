"""
Chat API route.

POST /api/message: quota gate, then one LLM completion.

Order: validate history (no mutation on bad input) -> admission (increments
on admit) -> completion. An upstream failure after admission keeps the unit
spent.
"""

from fastapi import APIRouter, Depends

from ronchon.api.deps import (
    Caller,
    enforce_body_limit,
    get_completion_client,
    get_engine,
    get_settings,
    resolve_caller,
)
from ronchon.core.errors import QuotaExceededError
from ronchon.features.chat.service import clean_messages, generate_reply
from ronchon.features.entitlements.service import EntitlementEngine
from ronchon.models.chat import ChatRequest, ChatResponse, QuotaInfo
from ronchon.models.entitlement import Tier


router = APIRouter(prefix="/api", tags=["chat"])


@router.post("/message", response_model=ChatResponse, dependencies=[Depends(enforce_body_limit)])
async def post_message(
    body: ChatRequest,
    caller: Caller = Depends(resolve_caller),
    engine: EntitlementEngine = Depends(get_engine),
    client=Depends(get_completion_client),
    cfg=Depends(get_settings),
):
    cleaned = clean_messages(body.messages, cfg.LLM_MAX_CONTEXT_MESSAGES)

    decision = await engine.check_and_consume(caller.client_key, licensed=caller.licensed)
    if not decision.admitted:
        raise QuotaExceededError(
            "Quota gratuit atteint. Passe en premium pour continuer."
            if decision.tier == Tier.FREE
            else "Quota journalier atteint. Reviens demain.",
            used=decision.used_count,
            limit=decision.limit,
            tier=decision.tier.value,
        )

    reply = await generate_reply(client, cleaned, body.personality)
    return ChatResponse(
        response=reply,
        premium=decision.tier == Tier.PREMIUM,
        quota=QuotaInfo(used=decision.used_count, limit=decision.limit, tier=decision.tier.value),
    )
