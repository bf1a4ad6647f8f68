from fastapi import HTTPException

from switchboard.auth.models import User


ROLE_SCOPES: dict[str, set[str]] = {
    "admin": {
        "handoff:read",
        "handoff:write",
        "handoff:admin",
        "subscriptions:read",
        "subscriptions:write",
    },
    "support": {"handoff:read", "handoff:write"},
    "auditor": {"handoff:read", "subscriptions:read"},
    "user": set(),
}


def is_tenant_admin(user: User) -> bool:
    return (getattr(user, "role", "") or "").strip().lower() == "admin"


def require_scope(user: User, scope: str) -> None:
    role = (user.role or "user").lower()
    allowed = ROLE_SCOPES.get(role, set())
    if scope not in allowed:
        raise HTTPException(status_code=403, detail=f"Missing required scope: {scope}")
