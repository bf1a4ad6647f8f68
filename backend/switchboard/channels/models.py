from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from switchboard.db.base import Base


class TenantChannelAccount(Base):
    __tablename__ = "tenant_channel_accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # whatsapp | messenger | instagram | facebook
    channel_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    verify_token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    app_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # messaging-channel number the provider reports on every callback
    phone_number_id: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    last_webhook_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
