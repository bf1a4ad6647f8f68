from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from switchboard.db.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "event_type", name="uq_subscriptions_tenant_event"),
        UniqueConstraint("tenant_id", "function_name", name="uq_subscriptions_tenant_function"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # event | function
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="event")
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # exactly one of these is set, depending on kind
    event_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    function_name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    endpoint_url: Mapped[str] = mapped_column(Text, nullable=False)
    auth_token_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    timeout_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=10_000)

    total_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_called_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class DeliveryAttempt(Base):
    __tablename__ = "delivery_attempts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subscription_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # event type for fan-out deliveries, function name for function calls
    topic: Mapped[str] = mapped_column(String(128), nullable=False)

    # success | upstream_error | timeout | network_failure
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


Index("ix_delivery_attempts_sub_created", DeliveryAttempt.subscription_id, DeliveryAttempt.created_at)
