import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from switchboard.channels.models import TenantChannelAccount
from switchboard.core.errors import TenantNotFound
from switchboard.tenants.resolver import IdentifierKind, resolve_tenant

logger = logging.getLogger(__name__)


@dataclass
class InboundMessage:
    tenant_id: str
    data: dict


def verify_meta_signature(payload_bytes: bytes, header_value: str, secrets_list: list[str]) -> bool:
    if not header_value or not header_value.startswith("sha256="):
        return False

    sent_sig = header_value.split("=", 1)[1].strip()
    if not sent_sig:
        return False

    for secret in secrets_list:
        digest = hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha256).hexdigest()
        if hmac.compare_digest(digest, sent_sig):
            return True
    return False


def active_app_secrets(db: Session) -> list[str]:
    return [
        s
        for s in db.execute(
            select(TenantChannelAccount.app_secret).where(TenantChannelAccount.is_active.is_(True))
        ).scalars().all()
        if s
    ]


def find_account_by_verify_token(db: Session, verify_token: str) -> TenantChannelAccount | None:
    return db.execute(
        select(TenantChannelAccount).where(
            TenantChannelAccount.verify_token == verify_token,
            TenantChannelAccount.is_active.is_(True),
        )
    ).scalar_one_or_none()


def _stamp_webhook(db: Session, phone_number_id: str) -> None:
    now = datetime.utcnow()
    db.execute(
        update(TenantChannelAccount)
        .where(TenantChannelAccount.phone_number_id == phone_number_id)
        .values(last_webhook_at=now, updated_at=now)
    )


def process_meta_webhook_payload(db: Session, payload: dict) -> tuple[list[InboundMessage], int]:
    """
    Turn a messaging-provider webhook body into per-tenant ``message_received``
    payloads. Returns the messages to dispatch and the number of ignored
    entries (unknown numbers, non-text messages, status callbacks).
    """
    messages: list[InboundMessage] = []
    ignored = 0

    obj = (payload.get("object") or "").strip().lower()
    if obj != "whatsapp_business_account":
        return messages, 1

    for entry in payload.get("entry", []) or []:
        for change in entry.get("changes", []) or []:
            value = change.get("value") or {}
            phone_number_id = ((value.get("metadata") or {}).get("phone_number_id") or "").strip()
            if not phone_number_id:
                ignored += 1
                continue

            try:
                tenant = resolve_tenant(db, IdentifierKind.CHANNEL, phone_number_id)
            except TenantNotFound:
                ignored += 1
                continue

            _stamp_webhook(db, phone_number_id)
            contacts = {
                (c.get("wa_id") or ""): ((c.get("profile") or {}).get("name"))
                for c in value.get("contacts", []) or []
            }

            for msg in value.get("messages", []) or []:
                if msg.get("type") != "text":
                    ignored += 1
                    continue

                text = ((msg.get("text") or {}).get("body") or "").strip()
                sender = (msg.get("from") or "").strip()
                if not text or not sender:
                    ignored += 1
                    continue

                messages.append(
                    InboundMessage(
                        tenant_id=tenant.id,
                        data={
                            "channel": "whatsapp",
                            "phone_number_id": phone_number_id,
                            "message_id": msg.get("id"),
                            "from": sender,
                            "from_name": contacts.get(sender),
                            "text": text,
                            "timestamp": msg.get("timestamp"),
                        },
                    )
                )

    db.commit()
    if messages:
        logger.info("Meta webhook accepted %s message(s), ignored %s", len(messages), ignored)
    return messages, ignored
