from datetime import datetime
from itertools import islice

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from switchboard.core.errors import SwitchboardError, to_http_exception
from switchboard.db.session import get_db
from switchboard.dispatch.dispatcher import dispatch_in_background
from switchboard.dispatch.events import EventType
from switchboard.embed.models import TenantBotCredential
from switchboard.embed.schemas import (
    PublicHandoffRequest,
    PublicHandoffResponse,
    PublicHandoffStatus,
    PublicMessage,
    PublicMessageRequest,
    PublicMessagesResponse,
    WidgetTokenRequest,
    WidgetTokenResponse,
)
from switchboard.embed.security import (
    WidgetTokenValidationError,
    create_widget_token,
    decode_widget_token,
    hash_bot_key,
    normalize_origin,
    origin_allowed,
)
from switchboard.handoff import relay, service
from switchboard.handoff.models import HandoffMessage, HandoffSession
from switchboard.operators.models import HumanAgent

public_router = APIRouter()

widget_bearer = HTTPBearer(auto_error=False)


def get_widget_claims(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(widget_bearer),
    db: Session = Depends(get_db),
) -> dict:
    if not creds:
        raise HTTPException(status_code=401, detail="Missing widget token")
    try:
        claims = decode_widget_token(creds.credentials)
    except WidgetTokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    bot = db.execute(
        select(TenantBotCredential).where(
            TenantBotCredential.id == claims["bot_id"],
            TenantBotCredential.tenant_id == claims["tenant_id"],
            TenantBotCredential.is_active.is_(True),
        )
    ).scalar_one_or_none()
    if not bot:
        raise HTTPException(status_code=401, detail="Bot credential inactive")

    request_origin = normalize_origin(request.headers.get("origin"))
    token_origin = normalize_origin(str(claims["origin"]))
    if request_origin and request_origin != token_origin:
        raise HTTPException(status_code=403, detail="Origin mismatch")
    if not origin_allowed(token_origin, bot.allowed_origins):
        raise HTTPException(status_code=403, detail="Origin not allowed")

    return claims


def _own_session(db: Session, claims: dict, handoff_id: str) -> HandoffSession:
    try:
        row = service.get_session(db, tenant_id=claims["tenant_id"], handoff_id=handoff_id)
    except SwitchboardError as exc:
        raise to_http_exception(exc) from exc
    # a widget session only sees the handoff it opened
    if row.chat_id != claims["session_id"]:
        raise HTTPException(status_code=404, detail="Handoff not found")
    return row


def _to_public_message(row: HandoffMessage) -> PublicMessage:
    return PublicMessage(seq=row.seq, sender_type=row.sender_type, content=row.content, created_at=row.created_at)


@public_router.post("/token", response_model=WidgetTokenResponse)
def issue_widget_token(
    payload: WidgetTokenRequest,
    db: Session = Depends(get_db),
    x_bot_key: str | None = Header(default=None),
):
    if not x_bot_key:
        raise HTTPException(status_code=401, detail="Missing bot key")

    bot = db.execute(
        select(TenantBotCredential).where(TenantBotCredential.key_hash == hash_bot_key(x_bot_key))
    ).scalar_one_or_none()
    if not bot or not bot.is_active:
        raise HTTPException(status_code=401, detail="Invalid bot key")

    origin = normalize_origin(payload.origin)
    if not origin_allowed(origin, bot.allowed_origins):
        raise HTTPException(status_code=403, detail="Origin not allowed")

    token, ttl_seconds = create_widget_token(
        tenant_id=bot.tenant_id,
        bot_id=bot.id,
        session_id=payload.session_id,
        origin=origin,
    )

    bot.last_used_at = datetime.utcnow()
    db.add(bot)
    db.commit()

    return WidgetTokenResponse(
        token=token,
        expires_in_seconds=ttl_seconds,
        bot_id=bot.id,
        tenant_id=bot.tenant_id,
    )


@public_router.post("/handoff", response_model=PublicHandoffResponse)
def request_handoff(
    payload: PublicHandoffRequest,
    background_tasks: BackgroundTasks,
    claims: dict = Depends(get_widget_claims),
    db: Session = Depends(get_db),
):
    row, created = service.create_session(
        db,
        tenant_id=claims["tenant_id"],
        chat_id=claims["session_id"],
        conversation_history=payload.conversation_history,
        last_user_message=payload.last_user_message,
        user_email=payload.user_email,
        reason=payload.reason,
    )
    if created:
        background_tasks.add_task(
            dispatch_in_background, row.tenant_id, EventType.HANDOFF_REQUESTED, service.lifecycle_event_data(row)
        )
    return PublicHandoffResponse(handoff_id=row.id, tenant_id=row.tenant_id, status=row.status, created=created)


@public_router.get("/handoff/{handoff_id}/status", response_model=PublicHandoffStatus)
def handoff_status(
    handoff_id: str,
    claims: dict = Depends(get_widget_claims),
    db: Session = Depends(get_db),
):
    row = _own_session(db, claims, handoff_id)
    agent_name = None
    if row.assigned_agent_id:
        agent_name = db.execute(
            select(HumanAgent.name).where(
                HumanAgent.id == row.assigned_agent_id,
                HumanAgent.tenant_id == row.tenant_id,
            )
        ).scalar_one_or_none()
    return PublicHandoffStatus(
        handoff_id=row.id,
        status=row.status,
        assigned_agent_id=row.assigned_agent_id,
        agent_name=agent_name,
        picked_up_at=row.picked_up_at,
        resolved_at=row.resolved_at,
    )


@public_router.get("/handoff/{handoff_id}/messages", response_model=PublicMessagesResponse)
def poll_messages(
    handoff_id: str,
    after: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    claims: dict = Depends(get_widget_claims),
    db: Session = Depends(get_db),
):
    row = _own_session(db, claims, handoff_id)
    items = list(islice(relay.list_since(db, tenant_id=row.tenant_id, handoff_id=row.id, cursor=after), limit))
    return PublicMessagesResponse(
        handoff_id=row.id,
        status=row.status,
        next_cursor=items[-1].seq if items else after,
        items=[_to_public_message(m) for m in items],
    )


@public_router.post("/handoff/{handoff_id}/messages", response_model=PublicMessage)
def send_user_message(
    handoff_id: str,
    payload: PublicMessageRequest,
    claims: dict = Depends(get_widget_claims),
    db: Session = Depends(get_db),
):
    row = _own_session(db, claims, handoff_id)
    try:
        msg = relay.append(
            db,
            tenant_id=row.tenant_id,
            handoff_id=row.id,
            sender_type="user",
            sender_id=claims["session_id"],
            content=payload.content,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except SwitchboardError as exc:
        raise to_http_exception(exc) from exc
    return _to_public_message(msg)


@public_router.post("/handoff/{handoff_id}/end", response_model=PublicHandoffStatus)
def end_handoff(
    handoff_id: str,
    background_tasks: BackgroundTasks,
    claims: dict = Depends(get_widget_claims),
    db: Session = Depends(get_db),
):
    row = _own_session(db, claims, handoff_id)
    try:
        row, changed = service.resolve(
            db,
            tenant_id=row.tenant_id,
            handoff_id=row.id,
            resolved_by="user",
            ended_by_label="the customer",
        )
    except SwitchboardError as exc:
        raise to_http_exception(exc) from exc

    if changed:
        background_tasks.add_task(
            dispatch_in_background, row.tenant_id, EventType.HANDOFF_RESOLVED, service.lifecycle_event_data(row)
        )
    return PublicHandoffStatus(
        handoff_id=row.id,
        status=row.status,
        assigned_agent_id=row.assigned_agent_id,
        picked_up_at=row.picked_up_at,
        resolved_at=row.resolved_at,
    )
