from typing import Any

from pydantic import BaseModel, Field


class EventAck(BaseModel):
    received: bool = True
    tenant_resolved: bool
    event_type: str


class FunctionCallRequest(BaseModel):
    agent_id: str = Field(min_length=1, max_length=128)
    call_id: str | None = Field(default=None, max_length=128)
    args: dict[str, Any] = Field(default_factory=dict)
