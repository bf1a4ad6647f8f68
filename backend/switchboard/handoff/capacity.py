"""
Operator capacity accounting.

Both operations are single conditional UPDATE statements executed inside
the caller's transaction; the caller decides whether to commit or roll
back. No check-then-reserve API is exposed.
"""

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from switchboard.operators.models import HumanAgent


def try_reserve(db: Session, tenant_id: str, agent_id: str) -> bool:
    result = db.execute(
        update(HumanAgent)
        .where(
            HumanAgent.id == agent_id,
            HumanAgent.tenant_id == tenant_id,
            HumanAgent.status != "offline",
            HumanAgent.active_sessions < HumanAgent.max_sessions,
        )
        .values(active_sessions=HumanAgent.active_sessions + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def release(db: Session, tenant_id: str, agent_id: str) -> bool:
    result = db.execute(
        update(HumanAgent)
        .where(
            HumanAgent.id == agent_id,
            HumanAgent.tenant_id == tenant_id,
            HumanAgent.active_sessions > 0,
        )
        .values(active_sessions=HumanAgent.active_sessions - 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def reservation_failure_reason(db: Session, tenant_id: str, agent_id: str) -> str:
    """Explain a failed reservation after the fact; advisory only."""
    status = db.execute(
        select(HumanAgent.status).where(HumanAgent.id == agent_id, HumanAgent.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if status is None:
        return "agent_not_found"
    if status == "offline":
        return "agent_offline"
    return "at_capacity"
