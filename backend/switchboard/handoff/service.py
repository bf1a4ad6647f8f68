import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import desc, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from switchboard.core.config import settings
from switchboard.core.errors import (
    AgentNotFound,
    ClaimConflict,
    HandoffNotFound,
    NotAssignedOperator,
    StoreUnavailable,
)
from switchboard.handoff import capacity
from switchboard.handoff.models import HandoffSession
from switchboard.handoff.relay import add_system_notice

logger = logging.getLogger(__name__)

HANDOFF_STATUSES = {"pending", "active", "resolved"}
RESOLVE_ATTEMPTS = 3
EXPIRED_BY = "system:expired"


def get_session(db: Session, *, tenant_id: str, handoff_id: str) -> HandoffSession:
    row = db.execute(
        select(HandoffSession).where(
            HandoffSession.id == handoff_id,
            HandoffSession.tenant_id == tenant_id,
        )
    ).scalar_one_or_none()
    if not row:
        raise HandoffNotFound(f"Handoff {handoff_id} not found")
    return row


def find_open_session(db: Session, *, tenant_id: str, chat_id: str) -> HandoffSession | None:
    return db.execute(
        select(HandoffSession)
        .where(
            HandoffSession.tenant_id == tenant_id,
            HandoffSession.chat_id == chat_id,
            HandoffSession.status.in_(["pending", "active"]),
        )
        .order_by(desc(HandoffSession.requested_at))
        .limit(1)
    ).scalar_one_or_none()


def list_sessions(
    db: Session,
    *,
    tenant_id: str,
    status: str | None = None,
    assigned_agent_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[HandoffSession]:
    stmt = select(HandoffSession).where(HandoffSession.tenant_id == tenant_id)
    if status:
        stmt = stmt.where(HandoffSession.status == status)
    if assigned_agent_id:
        stmt = stmt.where(HandoffSession.assigned_agent_id == assigned_agent_id)
    return list(
        db.execute(stmt.order_by(desc(HandoffSession.requested_at)).limit(limit).offset(offset)).scalars().all()
    )


def create_session(
    db: Session,
    *,
    tenant_id: str,
    chat_id: str,
    conversation_history: list[dict] | None = None,
    last_user_message: str | None = None,
    user_email: str | None = None,
    reason: str | None = None,
) -> tuple[HandoffSession, bool]:
    """
    Open a pending handoff for a chat. Returns ``(session, created)``; an
    unresolved session for the same chat is returned as-is.
    """
    existing = find_open_session(db, tenant_id=tenant_id, chat_id=chat_id)
    if existing:
        return existing, False

    history = list(conversation_history or [])
    if not last_user_message:
        for turn in reversed(history):
            if isinstance(turn, dict) and turn.get("role") == "user" and turn.get("content"):
                last_user_message = str(turn["content"])
                break

    row = HandoffSession(
        id=f"ho_{secrets.token_hex(12)}",
        tenant_id=tenant_id,
        chat_id=chat_id,
        status="pending",
        conversation_history=history,
        last_user_message=last_user_message,
        user_email=user_email,
        reason=reason,
        requested_at=datetime.utcnow(),
        message_seq=0,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent request opened the session first
        db.rollback()
        existing = find_open_session(db, tenant_id=tenant_id, chat_id=chat_id)
        if existing is None:
            raise
        logger.info("Handoff already open: id=%s tenant=%s chat=%s", existing.id, tenant_id, chat_id)
        return existing, False
    db.refresh(row)
    logger.info("Handoff requested: id=%s tenant=%s chat=%s", row.id, tenant_id, chat_id)
    return row, True


def claim(db: Session, *, tenant_id: str, handoff_id: str, agent_id: str) -> HandoffSession:
    """
    Assign a pending session to an operator.

    The status flip and the capacity reservation run in one transaction;
    if either conditional UPDATE matches no row, both are rolled back and
    ClaimConflict carries which condition failed.
    """
    now = datetime.utcnow()
    try:
        flipped = db.execute(
            update(HandoffSession)
            .where(
                HandoffSession.id == handoff_id,
                HandoffSession.tenant_id == tenant_id,
                HandoffSession.status == "pending",
            )
            .values(status="active", assigned_agent_id=agent_id, picked_up_at=now)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            db.rollback()
            exists = db.execute(
                select(HandoffSession.id).where(
                    HandoffSession.id == handoff_id,
                    HandoffSession.tenant_id == tenant_id,
                )
            ).scalar_one_or_none()
            db.rollback()
            if not exists:
                raise HandoffNotFound(f"Handoff {handoff_id} not found")
            logger.warning("Claim lost: handoff=%s agent=%s reason=already_claimed", handoff_id, agent_id)
            raise ClaimConflict("This session was already picked up", reason="already_claimed")

        if not capacity.try_reserve(db, tenant_id, agent_id):
            db.rollback()
            reason = capacity.reservation_failure_reason(db, tenant_id, agent_id)
            db.rollback()
            if reason == "agent_not_found":
                raise AgentNotFound(f"Operator {agent_id} not found")
            logger.warning("Claim refused: handoff=%s agent=%s reason=%s", handoff_id, agent_id, reason)
            if reason == "agent_offline":
                raise ClaimConflict("Operator is offline", reason=reason)
            raise ClaimConflict("Operator has no free chat slots", reason=reason)

        db.commit()
    except OperationalError as exc:
        db.rollback()
        logger.exception("Claim failed on store error: handoff=%s agent=%s", handoff_id, agent_id)
        raise StoreUnavailable("Handoff store is unavailable, try again") from exc

    row = get_session(db, tenant_id=tenant_id, handoff_id=handoff_id)
    logger.info("Handoff claimed: id=%s tenant=%s agent=%s", handoff_id, tenant_id, agent_id)
    return row


def resolve(
    db: Session,
    *,
    tenant_id: str,
    handoff_id: str,
    resolved_by: str,
    ended_by_label: str | None = None,
    expected_agent_id: str | None = None,
) -> tuple[HandoffSession, bool]:
    """
    Move a session to ``resolved``. Returns ``(session, changed)``; resolving
    an already resolved session changes nothing.

    The transition is a compare-and-swap on the status read just before. An
    active session releases its operator slot and gets a closing system
    message in the same transaction.

    With ``expected_agent_id`` set, an active session is only resolved while
    it is still assigned to that operator, otherwise ``NotAssignedOperator``.
    """
    try:
        for _ in range(RESOLVE_ATTEMPTS):
            observed = db.execute(
                select(HandoffSession.status, HandoffSession.assigned_agent_id).where(
                    HandoffSession.id == handoff_id,
                    HandoffSession.tenant_id == tenant_id,
                )
            ).one_or_none()
            if observed is None:
                db.rollback()
                raise HandoffNotFound(f"Handoff {handoff_id} not found")

            status, assigned_agent_id = observed
            if status == "resolved":
                db.rollback()
                return get_session(db, tenant_id=tenant_id, handoff_id=handoff_id), False

            if status == "active" and expected_agent_id is not None and assigned_agent_id != expected_agent_id:
                db.rollback()
                raise NotAssignedOperator("This chat is assigned to another operator")

            if assigned_agent_id is None:
                same_assignee = HandoffSession.assigned_agent_id.is_(None)
            else:
                same_assignee = HandoffSession.assigned_agent_id == assigned_agent_id
            swapped = db.execute(
                update(HandoffSession)
                .where(
                    HandoffSession.id == handoff_id,
                    HandoffSession.tenant_id == tenant_id,
                    HandoffSession.status == status,
                    same_assignee,
                )
                .values(status="resolved", resolved_at=datetime.utcnow(), resolved_by=resolved_by)
                .execution_options(synchronize_session=False)
            )
            if swapped.rowcount != 1:
                db.rollback()
                continue

            if status == "active" and assigned_agent_id:
                if not capacity.release(db, tenant_id, assigned_agent_id):
                    logger.warning("Release found no reserved slot: agent=%s handoff=%s", assigned_agent_id, handoff_id)
                add_system_notice(
                    db,
                    tenant_id=tenant_id,
                    handoff_id=handoff_id,
                    content=f"Chat ended by {ended_by_label or resolved_by}",
                )
            db.commit()
            logger.info("Handoff resolved: id=%s tenant=%s from=%s by=%s", handoff_id, tenant_id, status, resolved_by)
            return get_session(db, tenant_id=tenant_id, handoff_id=handoff_id), True
    except OperationalError as exc:
        db.rollback()
        logger.exception("Resolve failed on store error: handoff=%s", handoff_id)
        raise StoreUnavailable("Handoff store is unavailable, try again") from exc

    raise StoreUnavailable(f"Handoff {handoff_id} kept changing, try again")


def expire_stale_pending(db: Session, *, older_than: datetime | None = None) -> int:
    """Resolve pending sessions nobody picked up. Active sessions are never expired."""
    if older_than is None:
        older_than = datetime.utcnow() - timedelta(minutes=settings.HANDOFF_PENDING_TTL_MINUTES)
    result = db.execute(
        update(HandoffSession)
        .where(
            HandoffSession.status == "pending",
            HandoffSession.requested_at < older_than,
        )
        .values(status="resolved", resolved_at=datetime.utcnow(), resolved_by=EXPIRED_BY)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("Expired %s stale pending handoff(s) requested before %s", result.rowcount, older_than.isoformat())
    return result.rowcount


def lifecycle_event_data(row: HandoffSession, *, agent_name: str | None = None) -> dict:
    """Payload ``data`` for handoff_requested / handoff_picked_up / handoff_resolved."""
    return {
        "handoff_id": row.id,
        "chat_id": row.chat_id,
        "status": row.status,
        "assigned_agent_id": row.assigned_agent_id,
        "agent_name": agent_name,
        "reason": row.reason,
        "user_email": row.user_email,
        "last_user_message": row.last_user_message,
        "requested_at": row.requested_at.isoformat() if row.requested_at else None,
        "picked_up_at": row.picked_up_at.isoformat() if row.picked_up_at else None,
        "resolved_at": row.resolved_at.isoformat() if row.resolved_at else None,
        "resolved_by": row.resolved_by,
    }
