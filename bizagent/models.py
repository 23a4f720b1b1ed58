"""API models for the business-operations agent."""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys (businessId, sessionId, ...)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(CamelModel):
    """Request model for POST /agent/chat."""
    business_id: Optional[str] = None
    message: Optional[str] = None
    session_id: Optional[str] = None


class AiStatus(CamelModel):
    """Availability indicator shown next to the chat."""
    has_key: bool
    indicator: str  # "green" | "red"
    used_ai: bool
    reason: Optional[str] = None


class ChatResponse(CamelModel):
    """Response model for POST /agent/chat."""
    success: bool = True
    message: str
    action: Optional[dict[str, Any]] = None
    ai: AiStatus


class ChatMessageOut(CamelModel):
    """One persisted conversation turn."""
    id: int
    role: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class ChatHistoryResponse(CamelModel):
    """Response model for GET /agent/chat."""
    messages: list[ChatMessageOut]
    ai: AiStatus
