"""
Ordered message relay between the end user and the operator.

Each append bumps ``handoff_sessions.message_seq`` with a conditional UPDATE
and inserts the message with the new value in the same transaction. The
UPDATE takes the session row lock, so concurrent appends to one session
commit in seq order and a reader polling with ``seq > cursor`` never skips
a message that commits later with a smaller seq.
"""

import logging
import secrets
from collections.abc import Iterator
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from switchboard.core.config import settings
from switchboard.core.errors import HandoffNotFound, InvalidTransition, NotAssignedOperator, StoreUnavailable
from switchboard.handoff.models import HandoffMessage, HandoffSession

logger = logging.getLogger(__name__)

SENDER_TYPES = {"user", "agent", "system"}


def _allocate_seq(
    db: Session,
    tenant_id: str,
    handoff_id: str,
    *,
    only_if_active: bool = True,
    assigned_agent_id: str | None = None,
) -> int | None:
    stmt = update(HandoffSession).where(
        HandoffSession.id == handoff_id,
        HandoffSession.tenant_id == tenant_id,
    )
    if only_if_active:
        stmt = stmt.where(HandoffSession.status == "active")
    if assigned_agent_id is not None:
        stmt = stmt.where(HandoffSession.assigned_agent_id == assigned_agent_id)
    result = db.execute(
        stmt.values(message_seq=HandoffSession.message_seq + 1).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    return db.execute(select(HandoffSession.message_seq).where(HandoffSession.id == handoff_id)).scalar_one()


def _new_message(tenant_id: str, handoff_id: str, seq: int, sender_type: str, sender_id: str | None, content: str) -> HandoffMessage:
    return HandoffMessage(
        id=f"hm_{secrets.token_hex(12)}",
        handoff_id=handoff_id,
        tenant_id=tenant_id,
        seq=seq,
        sender_type=sender_type,
        sender_id=sender_id,
        content=content,
        created_at=datetime.utcnow(),
    )


def add_system_notice(db: Session, *, tenant_id: str, handoff_id: str, content: str) -> HandoffMessage:
    """Append a system message inside the caller's transaction, whatever the session status."""
    seq = _allocate_seq(db, tenant_id, handoff_id, only_if_active=False)
    if seq is None:
        raise HandoffNotFound(f"Handoff {handoff_id} not found")
    msg = _new_message(tenant_id, handoff_id, seq, "system", None, content)
    db.add(msg)
    return msg


def append(
    db: Session,
    *,
    tenant_id: str,
    handoff_id: str,
    sender_type: str,
    sender_id: str | None,
    content: str,
    agent_id: str | None = None,
) -> HandoffMessage:
    """
    Append a message to an active session. With ``agent_id`` set the session
    must also still be assigned to that operator.
    """
    if sender_type not in SENDER_TYPES:
        raise ValueError(f"Unknown sender_type {sender_type}")
    content = (content or "").strip()
    if not content:
        raise ValueError("Message content is empty")

    try:
        seq = _allocate_seq(db, tenant_id, handoff_id, assigned_agent_id=agent_id)
        if seq is None:
            db.rollback()
            observed = db.execute(
                select(HandoffSession.status, HandoffSession.assigned_agent_id).where(
                    HandoffSession.id == handoff_id,
                    HandoffSession.tenant_id == tenant_id,
                )
            ).one_or_none()
            db.rollback()
            if observed is None:
                raise HandoffNotFound(f"Handoff {handoff_id} not found")
            status, assigned = observed
            if status == "resolved":
                raise InvalidTransition("This chat has ended", reason="session_resolved")
            if status == "active" and agent_id is not None and assigned != agent_id:
                raise NotAssignedOperator("This chat is assigned to another operator")
            raise InvalidTransition("No operator has joined this chat yet", reason="not_active")

        msg = _new_message(tenant_id, handoff_id, seq, sender_type, sender_id, content)
        db.add(msg)
        db.commit()
    except OperationalError as exc:
        db.rollback()
        logger.exception("Message append failed: handoff=%s", handoff_id)
        raise StoreUnavailable("Message store is unavailable, try again") from exc

    db.refresh(msg)
    return msg


def list_since(
    db: Session,
    *,
    tenant_id: str,
    handoff_id: str,
    cursor: int = 0,
    page_size: int | None = None,
) -> Iterator[HandoffMessage]:
    """Yield messages with ``seq > cursor`` in seq order, fetching lazily page by page."""
    page_size = page_size or settings.RELAY_PAGE_SIZE
    while True:
        rows = (
            db.execute(
                select(HandoffMessage)
                .where(
                    HandoffMessage.handoff_id == handoff_id,
                    HandoffMessage.tenant_id == tenant_id,
                    HandoffMessage.seq > cursor,
                )
                .order_by(HandoffMessage.seq.asc())
                .limit(page_size)
            )
            .scalars()
            .all()
        )
        yield from rows
        if len(rows) < page_size:
            return
        cursor = rows[-1].seq
