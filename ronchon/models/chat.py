"""Chat request/response shapes for POST /api/message."""

from typing import List, Optional

from pydantic import BaseModel


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    messages: Optional[List[ChatMessage]] = None
    personality: Optional[str] = None


class QuotaInfo(BaseModel):
    used: int
    limit: int
    tier: str


class ChatResponse(BaseModel):
    response: str
    premium: bool
    quota: QuotaInfo
