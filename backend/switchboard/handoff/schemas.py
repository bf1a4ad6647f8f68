from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class HandoffCreateRequest(BaseModel):
    chat_id: str = Field(min_length=1, max_length=128)
    conversation_history: list[dict[str, Any]] = Field(default_factory=list)
    last_user_message: str | None = Field(default=None, max_length=4000)
    user_email: str | None = Field(default=None, max_length=255)
    reason: str | None = Field(default=None, min_length=1, max_length=255)


class HandoffClaimRequest(BaseModel):
    # admins may claim on behalf of another operator
    agent_id: str | None = Field(default=None, min_length=3, max_length=64)


class HandoffOut(BaseModel):
    id: str
    tenant_id: str
    chat_id: str
    status: str
    assigned_agent_id: str | None
    conversation_history: list[dict[str, Any]]
    last_user_message: str | None
    user_email: str | None
    reason: str | None
    requested_at: datetime
    picked_up_at: datetime | None
    resolved_at: datetime | None
    resolved_by: str | None


class HandoffListResponse(BaseModel):
    tenant_id: str
    count: int
    items: list[HandoffOut]


class MessageCreateRequest(BaseModel):
    content: str = Field(min_length=1, max_length=4000)


class HandoffMessageOut(BaseModel):
    id: str
    seq: int
    sender_type: str
    sender_id: str | None
    content: str
    created_at: datetime


class HandoffMessagesResponse(BaseModel):
    handoff_id: str
    status: str
    count: int
    # pass back as ?after= on the next poll
    next_cursor: int
    items: list[HandoffMessageOut]


class AgentRegisterRequest(BaseModel):
    user_id: str | None = Field(default=None, min_length=3, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    max_sessions: int | None = Field(default=None, ge=1, le=100)


class AgentStatusRequest(BaseModel):
    status: str = Field(min_length=4, max_length=16)


class AgentOut(BaseModel):
    id: str
    tenant_id: str
    user_id: str
    name: str
    email: str | None
    status: str
    active_sessions: int
    max_sessions: int
    last_seen_at: datetime | None


class AgentListResponse(BaseModel):
    tenant_id: str
    count: int
    items: list[AgentOut]


class AgentCorrection(BaseModel):
    agent_id: str
    before: int
    after: int


class ReconcileResponse(BaseModel):
    tenant_id: str
    corrected: list[AgentCorrection]
