from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from switchboard.db.base import Base


class User(Base):
    """Tenant staff account. Provisioned and authenticated outside this service."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)          # e.g. u_support1
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="support")
