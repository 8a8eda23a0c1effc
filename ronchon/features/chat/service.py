"""
ronchon/features/chat/service.py

LLM completion for admitted chat requests.

Handles:
- History cleanup (user/assistant roles only, last N messages)
- Personality system prompt
- Completion through a CompletionClient (Groq by default)
- Upstream failures mapped to UpstreamCallError (opaque to the caller)

The quota gate runs before any of this; nothing here touches the store.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import groq

from ronchon.core.errors import UpstreamCallError, ValidationError
from ronchon.core.metrics import upstream_errors_total
from ronchon.features.chat.prompts import system_prompt_for

logger = logging.getLogger("ronchon")

ALLOWED_ROLES = ("user", "assistant")
FALLBACK_RESPONSE = "Désolé, pas de réponse générée."


class CompletionClient(Protocol):
    """Prompt in, text out."""

    async def complete(self, messages: List[Dict[str, str]]) -> Optional[str]:
        """
        Args:
            messages: system message followed by the cleaned history

        Returns:
            Completion text, or None/empty when the model produced nothing

        Raises:
            UpstreamCallError: The upstream call failed
        """
        ...


def _field(message: Any, name: str) -> Any:
    if isinstance(message, dict):
        return message.get(name)
    return getattr(message, name, None)


def clean_messages(messages: Optional[Sequence[Any]], max_messages: int = 20) -> List[Dict[str, str]]:
    """
    Keep user/assistant messages with string content, last `max_messages` only.

    Raises:
        ValidationError: Nothing usable is left
    """
    if not messages:
        raise ValidationError("Messages invalides.")
    cleaned = []
    for message in messages:
        role = _field(message, "role")
        content = _field(message, "content")
        if role in ALLOWED_ROLES and isinstance(content, str):
            cleaned.append({"role": role, "content": content})
    cleaned = cleaned[-max_messages:] if max_messages > 0 else []
    if not cleaned:
        raise ValidationError("Messages invalides.")
    return cleaned


def build_prompt(messages: List[Dict[str, str]], personality: Optional[str]) -> List[Dict[str, str]]:
    return [{"role": "system", "content": system_prompt_for(personality)}] + messages


class GroqCompletionClient:
    """CompletionClient backed by groq.AsyncGroq."""

    def __init__(self, api_key: Optional[str], model: str, temperature: float = 0.7, client=None):
        self.model = model
        self.temperature = temperature
        self.client = client or groq.AsyncGroq(api_key=api_key)

    @classmethod
    def from_settings(cls, settings_obj) -> "GroqCompletionClient":
        return cls(settings_obj.GROQ_API_KEY, settings_obj.LLM_MODEL, settings_obj.LLM_TEMPERATURE)

    async def complete(self, messages: List[Dict[str, str]]) -> Optional[str]:
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
            )
        except groq.APIError as e:
            upstream_errors_total.inc()
            logger.error(f"[chat] groq completion failed: {e}")
            raise UpstreamCallError("Erreur serveur.")
        if not completion.choices:
            return None
        return completion.choices[0].message.content


async def generate_reply(
    client: CompletionClient,
    cleaned: List[Dict[str, str]],
    personality: Optional[str] = None,
) -> str:
    """Call the model on an already-cleaned history; fallback text when empty."""
    content = await client.complete(build_prompt(cleaned, personality))
    return content or FALLBACK_RESPONSE
