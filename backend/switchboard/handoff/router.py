from itertools import islice

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from switchboard.admin.rbac import is_tenant_admin, require_scope
from switchboard.auth.deps import get_current_user
from switchboard.auth.models import User
from switchboard.core.errors import SwitchboardError, to_http_exception
from switchboard.db.session import get_db
from switchboard.dispatch.dispatcher import dispatch_in_background
from switchboard.dispatch.events import EventType
from switchboard.handoff import relay, service
from switchboard.handoff.models import HandoffMessage, HandoffSession
from switchboard.handoff.schemas import (
    AgentCorrection,
    AgentListResponse,
    AgentOut,
    AgentRegisterRequest,
    AgentStatusRequest,
    HandoffClaimRequest,
    HandoffCreateRequest,
    HandoffListResponse,
    HandoffMessageOut,
    HandoffMessagesResponse,
    HandoffOut,
    MessageCreateRequest,
    ReconcileResponse,
)
from switchboard.operators import service as operators
from switchboard.operators.models import HumanAgent

admin_router = APIRouter()


def _to_out(row: HandoffSession) -> HandoffOut:
    return HandoffOut(
        id=row.id,
        tenant_id=row.tenant_id,
        chat_id=row.chat_id,
        status=row.status,
        assigned_agent_id=row.assigned_agent_id,
        conversation_history=row.conversation_history or [],
        last_user_message=row.last_user_message,
        user_email=row.user_email,
        reason=row.reason,
        requested_at=row.requested_at,
        picked_up_at=row.picked_up_at,
        resolved_at=row.resolved_at,
        resolved_by=row.resolved_by,
    )


def _to_message_out(row: HandoffMessage) -> HandoffMessageOut:
    return HandoffMessageOut(
        id=row.id,
        seq=row.seq,
        sender_type=row.sender_type,
        sender_id=row.sender_id,
        content=row.content,
        created_at=row.created_at,
    )


def _to_agent_out(row: HumanAgent) -> AgentOut:
    return AgentOut(
        id=row.id,
        tenant_id=row.tenant_id,
        user_id=row.user_id,
        name=row.name,
        email=row.email,
        status=row.status,
        active_sessions=row.active_sessions,
        max_sessions=row.max_sessions,
        last_seen_at=row.last_seen_at,
    )


def _current_agent(db: Session, user: User) -> HumanAgent:
    agent = operators.get_agent_for_user(db, tenant_id=user.tenant_id, user_id=user.id)
    if not agent:
        raise HTTPException(status_code=403, detail="You are not registered as an operator")
    return agent


def _assert_session_operator(db: Session, row: HandoffSession, user: User) -> HumanAgent | None:
    """
    Only the assigned operator (or a tenant admin) may act on an active session.
    Returns the caller's operator record, if any.
    """
    agent = operators.get_agent_for_user(db, tenant_id=user.tenant_id, user_id=user.id)
    if is_tenant_admin(user):
        return agent
    if not agent:
        raise HTTPException(status_code=403, detail="Register as an operator first")
    if row.status == "active" and agent.id != row.assigned_agent_id:
        raise HTTPException(status_code=403, detail="This chat is assigned to another operator")
    return agent


def _load(db: Session, tenant_id: str, handoff_id: str) -> HandoffSession:
    try:
        return service.get_session(db, tenant_id=tenant_id, handoff_id=handoff_id)
    except SwitchboardError as exc:
        raise to_http_exception(exc) from exc


@admin_router.get("/agents", response_model=AgentListResponse)
def list_operators(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "handoff:read")
    rows = operators.list_agents(db, tenant_id=current_user.tenant_id)
    return {
        "tenant_id": current_user.tenant_id,
        "count": len(rows),
        "items": [_to_agent_out(r) for r in rows],
    }


@admin_router.post("/agents", response_model=AgentOut)
def register_operator(
    payload: AgentRegisterRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "handoff:write")
    user_id = payload.user_id or current_user.id
    if user_id != current_user.id:
        require_scope(current_user, "handoff:admin")
        target = db.get(User, user_id)
        if not target or target.tenant_id != current_user.tenant_id:
            raise HTTPException(status_code=404, detail="User not found")
    row = operators.register_agent(
        db,
        tenant_id=current_user.tenant_id,
        user_id=user_id,
        name=payload.name,
        email=payload.email,
        max_sessions=payload.max_sessions,
    )
    return _to_agent_out(row)


@admin_router.post("/agents/heartbeat", response_model=AgentOut)
def operator_heartbeat(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "handoff:write")
    agent = _current_agent(db, current_user)
    return _to_agent_out(operators.heartbeat(db, tenant_id=agent.tenant_id, agent_id=agent.id))


@admin_router.patch("/agents/me/status", response_model=AgentOut)
def update_operator_status(
    payload: AgentStatusRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "handoff:write")
    agent = _current_agent(db, current_user)
    try:
        row = operators.set_status(db, tenant_id=agent.tenant_id, agent_id=agent.id, status=payload.status)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _to_agent_out(row)


@admin_router.post("/agents/reconcile", response_model=ReconcileResponse)
def reconcile_operator_counters(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "handoff:admin")
    corrected = operators.reconcile_active_sessions(db, tenant_id=current_user.tenant_id)
    return ReconcileResponse(
        tenant_id=current_user.tenant_id,
        corrected=[AgentCorrection(agent_id=a, before=b, after=c) for a, b, c in corrected],
    )


@admin_router.post("", response_model=HandoffOut)
def create_handoff(
    payload: HandoffCreateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "handoff:write")
    row, created = service.create_session(
        db,
        tenant_id=current_user.tenant_id,
        chat_id=payload.chat_id,
        conversation_history=payload.conversation_history,
        last_user_message=payload.last_user_message,
        user_email=payload.user_email,
        reason=payload.reason,
    )
    if created:
        background_tasks.add_task(
            dispatch_in_background, row.tenant_id, EventType.HANDOFF_REQUESTED, service.lifecycle_event_data(row)
        )
    return _to_out(row)


@admin_router.get("", response_model=HandoffListResponse)
def list_handoffs(
    status: str | None = Query(default=None, min_length=6, max_length=16),
    mine: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0, le=100_000),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "handoff:read")
    if status and status not in service.HANDOFF_STATUSES:
        raise HTTPException(status_code=422, detail=f"Invalid status. Allowed: {sorted(service.HANDOFF_STATUSES)}")

    assigned_agent_id = None
    if mine:
        assigned_agent_id = _current_agent(db, current_user).id

    rows = service.list_sessions(
        db,
        tenant_id=current_user.tenant_id,
        status=status,
        assigned_agent_id=assigned_agent_id,
        limit=limit,
        offset=offset,
    )
    return {
        "tenant_id": current_user.tenant_id,
        "count": len(rows),
        "items": [_to_out(r) for r in rows],
    }


@admin_router.get("/{handoff_id}", response_model=HandoffOut)
def get_handoff(
    handoff_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "handoff:read")
    return _to_out(_load(db, current_user.tenant_id, handoff_id))


@admin_router.post("/{handoff_id}/claim", response_model=HandoffOut)
def claim_handoff(
    handoff_id: str,
    background_tasks: BackgroundTasks,
    payload: HandoffClaimRequest | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "handoff:write")

    if payload and payload.agent_id:
        require_scope(current_user, "handoff:admin")
        agent_id = payload.agent_id
    else:
        agent_id = _current_agent(db, current_user).id

    try:
        row = service.claim(db, tenant_id=current_user.tenant_id, handoff_id=handoff_id, agent_id=agent_id)
        agent = operators.get_agent(db, tenant_id=current_user.tenant_id, agent_id=agent_id)
    except SwitchboardError as exc:
        raise to_http_exception(exc) from exc

    background_tasks.add_task(
        dispatch_in_background,
        row.tenant_id,
        EventType.HANDOFF_PICKED_UP,
        service.lifecycle_event_data(row, agent_name=agent.name),
    )
    return _to_out(row)


@admin_router.post("/{handoff_id}/resolve", response_model=HandoffOut)
def resolve_handoff(
    handoff_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "handoff:write")
    row = _load(db, current_user.tenant_id, handoff_id)
    agent = _assert_session_operator(db, row, current_user)

    resolved_by = agent.id if agent else current_user.id
    label = agent.name if agent else (current_user.name or current_user.email)
    try:
        row, changed = service.resolve(
            db,
            tenant_id=current_user.tenant_id,
            handoff_id=handoff_id,
            resolved_by=resolved_by,
            ended_by_label=label,
            expected_agent_id=None if is_tenant_admin(current_user) else agent.id,
        )
    except SwitchboardError as exc:
        raise to_http_exception(exc) from exc

    if changed:
        background_tasks.add_task(
            dispatch_in_background, row.tenant_id, EventType.HANDOFF_RESOLVED, service.lifecycle_event_data(row)
        )
    return _to_out(row)


@admin_router.post("/{handoff_id}/messages", response_model=HandoffMessageOut)
def send_operator_message(
    handoff_id: str,
    payload: MessageCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "handoff:write")
    row = _load(db, current_user.tenant_id, handoff_id)
    agent = _assert_session_operator(db, row, current_user)

    try:
        msg = relay.append(
            db,
            tenant_id=current_user.tenant_id,
            handoff_id=handoff_id,
            sender_type="agent",
            sender_id=agent.id if agent else current_user.id,
            content=payload.content,
            agent_id=None if is_tenant_admin(current_user) else agent.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except SwitchboardError as exc:
        raise to_http_exception(exc) from exc
    return _to_message_out(msg)


@admin_router.get("/{handoff_id}/messages", response_model=HandoffMessagesResponse)
def list_operator_messages(
    handoff_id: str,
    after: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "handoff:read")
    row = _load(db, current_user.tenant_id, handoff_id)
    items = list(
        islice(relay.list_since(db, tenant_id=row.tenant_id, handoff_id=row.id, cursor=after), limit)
    )
    return HandoffMessagesResponse(
        handoff_id=row.id,
        status=row.status,
        count=len(items),
        next_cursor=items[-1].seq if items else after,
        items=[_to_message_out(m) for m in items],
    )
