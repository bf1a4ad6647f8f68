import pytest
from sqlalchemy import update

from switchboard.core.errors import TenantNotFound
from switchboard.tenants.models import TenantAgentBinding
from switchboard.tenants.resolver import IdentifierKind, resolve_tenant


def test_resolves_channel_and_agent_identifiers(db, tenant):
    assert resolve_tenant(db, IdentifierKind.CHANNEL, "pn_acme").id == "t_acme"
    assert resolve_tenant(db, "agent", " agent_acme ").id == "t_acme"


@pytest.mark.parametrize(
    "kind,value",
    [
        (IdentifierKind.CHANNEL, "pn_unknown"),
        (IdentifierKind.AGENT, "agent_unknown"),
        (IdentifierKind.AGENT, ""),
        (IdentifierKind.CHANNEL, None),
        # identifiers are not interchangeable between kinds
        (IdentifierKind.CHANNEL, "agent_acme"),
    ],
)
def test_unresolvable_identifiers(db, tenant, kind, value):
    with pytest.raises(TenantNotFound):
        resolve_tenant(db, kind, value)


def test_inactive_binding_does_not_resolve(db, tenant):
    db.execute(update(TenantAgentBinding).where(TenantAgentBinding.agent_id == "agent_acme").values(is_active=False))
    db.commit()

    with pytest.raises(TenantNotFound) as exc_info:
        resolve_tenant(db, IdentifierKind.AGENT, "agent_acme")

    assert exc_info.value.reason == "tenant_not_found"
