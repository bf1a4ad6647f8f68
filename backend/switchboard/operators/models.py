from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from switchboard.db.base import Base


class HumanAgent(Base):
    """A tenant user acting as a live-chat operator."""

    __tablename__ = "human_agents"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_human_agents_tenant_user"),
        CheckConstraint("active_sessions >= 0", name="ck_human_agents_active_sessions_nonneg"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # available | busy | offline
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="offline")
    # equals the number of active handoff sessions assigned to this agent
    active_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
