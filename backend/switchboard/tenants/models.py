from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from switchboard.db.base import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class TenantAgentBinding(Base):
    """Maps an automated (chat/voice provider) agent id to its tenant."""

    __tablename__ = "tenant_agent_bindings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # provider-side agent identifier, e.g. agent_5f2c...
    agent_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    agent_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # web | whatsapp | voice-inbound | voice-outbound | sms
    channel: Mapped[str] = mapped_column(String(32), nullable=False, default="web")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
