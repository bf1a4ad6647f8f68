import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from switchboard.core.config import settings
from switchboard.core.errors import AgentNotFound
from switchboard.handoff.models import HandoffSession
from switchboard.operators.models import HumanAgent

logger = logging.getLogger(__name__)

AGENT_STATUSES = {"available", "busy", "offline"}


def get_agent(db: Session, *, tenant_id: str, agent_id: str) -> HumanAgent:
    row = db.execute(
        select(HumanAgent).where(HumanAgent.id == agent_id, HumanAgent.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if not row:
        raise AgentNotFound(f"Operator {agent_id} not found")
    return row


def get_agent_for_user(db: Session, *, tenant_id: str, user_id: str) -> HumanAgent | None:
    return db.execute(
        select(HumanAgent).where(HumanAgent.tenant_id == tenant_id, HumanAgent.user_id == user_id)
    ).scalar_one_or_none()


def list_agents(db: Session, *, tenant_id: str) -> list[HumanAgent]:
    return list(
        db.execute(select(HumanAgent).where(HumanAgent.tenant_id == tenant_id).order_by(HumanAgent.name))
        .scalars()
        .all()
    )


def register_agent(
    db: Session,
    *,
    tenant_id: str,
    user_id: str,
    name: str,
    email: str | None = None,
    max_sessions: int | None = None,
) -> HumanAgent:
    row = get_agent_for_user(db, tenant_id=tenant_id, user_id=user_id)
    if row:
        row.name = name
        if email is not None:
            row.email = email
        if max_sessions is not None:
            row.max_sessions = max_sessions
    else:
        row = HumanAgent(
            id=f"ha_{secrets.token_hex(12)}",
            tenant_id=tenant_id,
            user_id=user_id,
            name=name,
            email=email,
            status="offline",
            active_sessions=0,
            max_sessions=max_sessions or settings.HANDOFF_DEFAULT_MAX_SESSIONS,
            created_at=datetime.utcnow(),
        )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def heartbeat(db: Session, *, tenant_id: str, agent_id: str) -> HumanAgent:
    """Stamp presence. An offline operator comes back as available; busy stays busy."""
    row = get_agent(db, tenant_id=tenant_id, agent_id=agent_id)
    row.last_seen_at = datetime.utcnow()
    if row.status == "offline":
        row.status = "available"
        logger.info("Operator online: id=%s tenant=%s", agent_id, tenant_id)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def set_status(db: Session, *, tenant_id: str, agent_id: str, status: str) -> HumanAgent:
    status = (status or "").strip().lower()
    if status not in AGENT_STATUSES:
        raise ValueError(f"Invalid status. Allowed: {sorted(AGENT_STATUSES)}")
    row = get_agent(db, tenant_id=tenant_id, agent_id=agent_id)
    row.status = status
    row.last_seen_at = datetime.utcnow()
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Operator status: id=%s tenant=%s status=%s", agent_id, tenant_id, status)
    return row


def mark_stale_offline(db: Session, *, threshold_seconds: int | None = None) -> int:
    """Flip available operators without a recent heartbeat to offline. Their sessions stay as they are."""
    threshold_seconds = threshold_seconds or settings.OPERATOR_OFFLINE_AFTER_SECONDS
    cutoff = datetime.utcnow() - timedelta(seconds=threshold_seconds)
    result = db.execute(
        update(HumanAgent)
        .where(
            HumanAgent.status == "available",
            (HumanAgent.last_seen_at.is_(None)) | (HumanAgent.last_seen_at < cutoff),
        )
        .values(status="offline")
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("Marked %s stale operator(s) offline", result.rowcount)
    return result.rowcount


def reconcile_active_sessions(db: Session, *, tenant_id: str) -> list[tuple[str, int, int]]:
    """
    Recompute every operator's ``active_sessions`` from the session rows.

    Administrative repair only; returns ``(agent_id, before, after)`` for
    each operator whose counter was corrected.
    """
    counts = dict(
        db.execute(
            select(HandoffSession.assigned_agent_id, func.count(HandoffSession.id))
            .where(
                HandoffSession.tenant_id == tenant_id,
                HandoffSession.status == "active",
                HandoffSession.assigned_agent_id.is_not(None),
            )
            .group_by(HandoffSession.assigned_agent_id)
        ).all()
    )

    corrected: list[tuple[str, int, int]] = []
    for agent in list_agents(db, tenant_id=tenant_id):
        expected = int(counts.get(agent.id, 0))
        if agent.active_sessions != expected:
            corrected.append((agent.id, agent.active_sessions, expected))
            agent.active_sessions = expected
            db.add(agent)
    db.commit()

    for agent_id, before, after in corrected:
        logger.warning("Reconciled operator %s active_sessions %s -> %s", agent_id, before, after)
    return corrected
