from datetime import datetime

from pydantic import BaseModel, Field


class SubscriptionCreateRequest(BaseModel):
    kind: str = Field(default="event", min_length=5, max_length=16)
    name: str = Field(min_length=1, max_length=255)
    endpoint_url: str = Field(min_length=8, max_length=2048)
    event_type: str | None = Field(default=None, min_length=2, max_length=64)
    function_name: str | None = Field(default=None, min_length=1, max_length=128)
    auth_token: str | None = Field(default=None, min_length=1, max_length=2048)
    timeout_ms: int | None = Field(default=None, ge=100, le=120_000)
    is_active: bool = True


class SubscriptionPatchRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    endpoint_url: str | None = Field(default=None, min_length=8, max_length=2048)
    auth_token: str | None = Field(default=None, min_length=1, max_length=2048)
    clear_auth_token: bool = False
    timeout_ms: int | None = Field(default=None, ge=100, le=120_000)
    is_active: bool | None = None


class SubscriptionOut(BaseModel):
    id: str
    tenant_id: str
    kind: str
    name: str
    event_type: str | None
    function_name: str | None
    endpoint_url: str
    has_auth_token: bool
    is_active: bool
    timeout_ms: int
    total_calls: int
    success_calls: int
    last_called_at: datetime | None
    created_at: datetime
    updated_at: datetime


class SubscriptionListResponse(BaseModel):
    tenant_id: str
    count: int
    items: list[SubscriptionOut]


class SubscriptionStatsOut(BaseModel):
    subscription_id: str
    total_calls: int
    success_calls: int
    failed_calls: int
    success_rate: float
    last_called_at: datetime | None


class DeliveryAttemptOut(BaseModel):
    id: str
    topic: str
    outcome: str
    status_code: int | None
    latency_ms: int
    error: str | None
    created_at: datetime


class DeliveryAttemptsResponse(BaseModel):
    subscription_id: str
    count: int
    items: list[DeliveryAttemptOut]
