import enum
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from switchboard.channels.models import TenantChannelAccount
from switchboard.core.errors import TenantNotFound
from switchboard.tenants.models import Tenant, TenantAgentBinding

logger = logging.getLogger(__name__)


class IdentifierKind(str, enum.Enum):
    CHANNEL = "channel"
    AGENT = "agent"


class SqlTenantDirectory:
    """
    Read-only tenant lookup by denormalized identifier.

    Both lookups hit a unique index on the identifier column; inactive
    bindings never resolve.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_by_channel_identifier(self, value: str) -> Tenant | None:
        return self.db.execute(
            select(Tenant)
            .join(TenantChannelAccount, TenantChannelAccount.tenant_id == Tenant.id)
            .where(
                TenantChannelAccount.phone_number_id == value,
                TenantChannelAccount.is_active.is_(True),
            )
        ).scalar_one_or_none()

    def find_by_agent_identifier(self, value: str) -> Tenant | None:
        return self.db.execute(
            select(Tenant)
            .join(TenantAgentBinding, TenantAgentBinding.tenant_id == Tenant.id)
            .where(
                TenantAgentBinding.agent_id == value,
                TenantAgentBinding.is_active.is_(True),
            )
        ).scalar_one_or_none()


def resolve_tenant(db: Session, kind: IdentifierKind | str, value: str | None) -> Tenant:
    kind = IdentifierKind(kind)
    value = (value or "").strip()
    if not value:
        raise TenantNotFound(f"Empty {kind.value} identifier")

    directory = SqlTenantDirectory(db)
    if kind is IdentifierKind.CHANNEL:
        tenant = directory.find_by_channel_identifier(value)
    else:
        tenant = directory.find_by_agent_identifier(value)

    if tenant is None:
        logger.warning("Tenant resolution failed: kind=%s value=%s", kind.value, value)
        raise TenantNotFound(f"No tenant for {kind.value} identifier {value}")
    return tenant
