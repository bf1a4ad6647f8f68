import logging

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from switchboard.core.errors import (
    DispatchUpstreamError,
    SwitchboardError,
    TenantNotFound,
    to_http_exception,
)
from switchboard.db.session import get_db
from switchboard.dispatch.dispatcher import dispatch_in_background
from switchboard.dispatch.envelopes import extract_agent_id
from switchboard.dispatch.events import PROVIDER_EVENTS, EventType
from switchboard.dispatch.functions import call_function
from switchboard.dispatch.schemas import EventAck, FunctionCallRequest
from switchboard.tenants.resolver import IdentifierKind, resolve_tenant

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/events/{event_type}", response_model=EventAck, status_code=202)
def receive_event(
    event_type: EventType,
    background_tasks: BackgroundTasks,
    payload: dict = Body(...),
    db: Session = Depends(get_db),
):
    if event_type not in PROVIDER_EVENTS:
        raise HTTPException(status_code=400, detail=f"Event type {event_type.value} is not accepted here")

    agent_id = extract_agent_id(payload)
    if not agent_id:
        raise HTTPException(status_code=400, detail="Missing agent_id")

    try:
        tenant = resolve_tenant(db, IdentifierKind.AGENT, agent_id)
    except TenantNotFound:
        logger.warning("Dropping %s event for unknown agent %s", event_type.value, agent_id)
        return EventAck(tenant_resolved=False, event_type=event_type.value)

    background_tasks.add_task(dispatch_in_background, tenant.id, event_type, payload)
    return EventAck(tenant_resolved=True, event_type=event_type.value)


@router.post("/functions/{function_name}")
async def invoke_function(
    function_name: str,
    payload: FunctionCallRequest,
    db: Session = Depends(get_db),
):
    try:
        tenant = await run_in_threadpool(resolve_tenant, db, IdentifierKind.AGENT, payload.agent_id)
        reply = await call_function(tenant, function_name, payload.model_dump())
    except DispatchUpstreamError as exc:
        return JSONResponse(status_code=exc.status_code, content=exc.body)
    except SwitchboardError as exc:
        raise to_http_exception(exc) from exc

    return JSONResponse(status_code=reply.status_code, content=reply.body)
