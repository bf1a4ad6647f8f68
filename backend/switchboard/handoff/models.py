from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, JSON, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from switchboard.db.base import Base


class HandoffSession(Base):
    __tablename__ = "handoff_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    chat_id: Mapped[str] = mapped_column(String(128), nullable=False)

    # pending -> active -> resolved, or pending -> resolved
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    assigned_agent_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    conversation_history: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    last_user_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    picked_up_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # last seq handed out to a HandoffMessage of this session
    message_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


Index("ix_handoff_sessions_tenant_status", HandoffSession.tenant_id, HandoffSession.status)
Index("ix_handoff_sessions_tenant_chat", HandoffSession.tenant_id, HandoffSession.chat_id)
# a chat has at most one open (pending or active) session
_OPEN_STATUS = text("status IN ('pending', 'active')")
Index(
    "uq_handoff_sessions_open_chat",
    HandoffSession.tenant_id,
    HandoffSession.chat_id,
    unique=True,
    postgresql_where=_OPEN_STATUS,
    sqlite_where=_OPEN_STATUS,
)


class HandoffMessage(Base):
    __tablename__ = "handoff_messages"
    __table_args__ = (UniqueConstraint("handoff_id", "seq", name="uq_handoff_messages_handoff_seq"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    handoff_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    # user | agent | system
    sender_type: Mapped[str] = mapped_column(String(16), nullable=False)
    sender_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
