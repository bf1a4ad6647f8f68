from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class WidgetTokenRequest(BaseModel):
    origin: str = Field(min_length=1, max_length=300)
    session_id: str = Field(min_length=3, max_length=64)


class WidgetTokenResponse(BaseModel):
    token: str
    expires_in_seconds: int
    bot_id: str
    tenant_id: str


class PublicHandoffRequest(BaseModel):
    conversation_history: list[dict[str, Any]] = Field(default_factory=list)
    last_user_message: str | None = Field(default=None, max_length=4000)
    user_email: str | None = Field(default=None, max_length=255)
    reason: str | None = Field(default=None, min_length=1, max_length=255)


class PublicHandoffResponse(BaseModel):
    handoff_id: str
    tenant_id: str
    status: str
    created: bool


class PublicHandoffStatus(BaseModel):
    handoff_id: str
    status: str
    assigned_agent_id: str | None = None
    agent_name: str | None = None
    picked_up_at: datetime | None = None
    resolved_at: datetime | None = None


class PublicMessageRequest(BaseModel):
    content: str = Field(min_length=1, max_length=4000)


class PublicMessage(BaseModel):
    seq: int
    sender_type: str
    content: str
    created_at: datetime


class PublicMessagesResponse(BaseModel):
    handoff_id: str
    status: str
    next_cursor: int
    items: list[PublicMessage]
