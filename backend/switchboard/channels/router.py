import json

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from switchboard.channels.schemas import MetaWebhookResponse
from switchboard.channels.service import (
    active_app_secrets,
    find_account_by_verify_token,
    process_meta_webhook_payload,
    verify_meta_signature,
)
from switchboard.db.session import get_db
from switchboard.dispatch.dispatcher import dispatch_in_background
from switchboard.dispatch.events import EventType

webhook_router = APIRouter()


@webhook_router.get("/meta/webhook")
def verify_meta_webhook(
    mode: str | None = Query(default=None, alias="hub.mode"),
    verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
    db: Session = Depends(get_db),
):
    if mode != "subscribe" or not verify_token:
        raise HTTPException(status_code=400, detail="Invalid verification request")

    if not find_account_by_verify_token(db, verify_token):
        raise HTTPException(status_code=403, detail="Verification token mismatch")

    return PlainTextResponse(challenge or "")


@webhook_router.post("/meta/webhook", response_model=MetaWebhookResponse)
async def handle_meta_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    x_hub_signature_256: str | None = Header(default=None),
):
    raw = await request.body()

    if x_hub_signature_256:
        app_secrets = active_app_secrets(db)
        if app_secrets and not verify_meta_signature(raw, x_hub_signature_256, app_secrets):
            raise HTTPException(status_code=403, detail="Invalid webhook signature")

    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    messages, ignored = process_meta_webhook_payload(db, payload)
    for msg in messages:
        background_tasks.add_task(dispatch_in_background, msg.tenant_id, EventType.MESSAGE_RECEIVED, msg.data)
    return MetaWebhookResponse(received=True, processed_messages=len(messages), ignored_events=ignored)
