import logging
import secrets
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import desc, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from switchboard.core.config import settings
from switchboard.core.errors import SubscriptionAbsent
from switchboard.dispatch.events import EventType
from switchboard.subscriptions.credentials import CredentialStore, encrypt_text
from switchboard.subscriptions.models import DeliveryAttempt, Subscription
from switchboard.tenants.models import Tenant

logger = logging.getLogger(__name__)

SUBSCRIPTION_KINDS = {"event", "function"}


@dataclass(frozen=True)
class DeliveryTarget:
    subscription_id: str
    tenant_id: str
    tenant_name: str | None
    topic: str
    endpoint_url: str
    auth_token: str | None
    timeout_ms: int

    @property
    def timeout_seconds(self) -> float:
        return max(1, self.timeout_ms) / 1000.0


class DuplicateSubscription(ValueError):
    pass


def _to_target(db: Session, row: Subscription, tenant_name: str | None, topic: str) -> DeliveryTarget:
    return DeliveryTarget(
        subscription_id=row.id,
        tenant_id=row.tenant_id,
        tenant_name=tenant_name,
        topic=topic,
        endpoint_url=row.endpoint_url,
        auth_token=CredentialStore(db).get_outbound_auth(row.id),
        timeout_ms=row.timeout_ms or settings.DISPATCH_DEFAULT_TIMEOUT_MS,
    )


def load_event_targets(db: Session, *, tenant_id: str, event_type: EventType) -> list[DeliveryTarget]:
    rows = db.execute(
        select(Subscription, Tenant.name)
        .outerjoin(Tenant, Tenant.id == Subscription.tenant_id)
        .where(
            Subscription.tenant_id == tenant_id,
            Subscription.kind == "event",
            Subscription.event_type == event_type.value,
            Subscription.is_active.is_(True),
        )
    ).all()
    return [_to_target(db, row, tenant_name, event_type.value) for row, tenant_name in rows]


def load_function_target(db: Session, *, tenant_id: str, function_name: str) -> DeliveryTarget:
    found = db.execute(
        select(Subscription, Tenant.name)
        .outerjoin(Tenant, Tenant.id == Subscription.tenant_id)
        .where(
            Subscription.tenant_id == tenant_id,
            Subscription.kind == "function",
            Subscription.function_name == function_name,
        )
    ).one_or_none()
    if found is None:
        raise SubscriptionAbsent(f"No function route configured for {function_name}")
    row, tenant_name = found
    if not row.is_active:
        raise SubscriptionAbsent(f"Function route {function_name} is disabled", reason="subscription_disabled")
    return _to_target(db, row, tenant_name, function_name)


def record_delivery(
    db: Session,
    *,
    target: DeliveryTarget,
    outcome: str,
    status_code: int | None,
    latency_ms: int,
    error: str | None = None,
) -> None:
    success = outcome == "success"
    now = datetime.utcnow()
    db.execute(
        update(Subscription)
        .where(Subscription.id == target.subscription_id)
        .values(
            total_calls=Subscription.total_calls + 1,
            success_calls=Subscription.success_calls + (1 if success else 0),
            last_called_at=now,
        )
    )
    db.add(
        DeliveryAttempt(
            id=f"da_{secrets.token_hex(12)}",
            subscription_id=target.subscription_id,
            tenant_id=target.tenant_id,
            topic=target.topic,
            outcome=outcome,
            status_code=status_code,
            latency_ms=max(0, int(latency_ms)),
            error=(error or None) and error[:2000],
            created_at=now,
        )
    )
    db.commit()


def get_subscription(db: Session, *, tenant_id: str, subscription_id: str) -> Subscription | None:
    return db.execute(
        select(Subscription).where(
            Subscription.id == subscription_id,
            Subscription.tenant_id == tenant_id,
        )
    ).scalar_one_or_none()


def list_subscriptions(db: Session, *, tenant_id: str, kind: str | None = None) -> list[Subscription]:
    stmt = select(Subscription).where(Subscription.tenant_id == tenant_id)
    if kind:
        stmt = stmt.where(Subscription.kind == kind)
    return list(db.execute(stmt.order_by(Subscription.created_at.desc())).scalars().all())


def create_subscription(
    db: Session,
    *,
    tenant_id: str,
    kind: str,
    name: str,
    endpoint_url: str,
    event_type: str | None = None,
    function_name: str | None = None,
    auth_token: str | None = None,
    timeout_ms: int | None = None,
    is_active: bool = True,
) -> Subscription:
    kind = (kind or "").strip().lower()
    if kind not in SUBSCRIPTION_KINDS:
        raise ValueError("kind must be 'event' or 'function'")
    if kind == "event":
        if not event_type:
            raise ValueError("event_type is required for event subscriptions")
        event_type = EventType(event_type).value
        function_name = None
    else:
        if not function_name:
            raise ValueError("function_name is required for function subscriptions")
        event_type = None

    now = datetime.utcnow()
    row = Subscription(
        id=f"sub_{secrets.token_hex(12)}",
        tenant_id=tenant_id,
        kind=kind,
        name=name,
        event_type=event_type,
        function_name=function_name,
        endpoint_url=endpoint_url,
        auth_token_enc=encrypt_text(auth_token) if auth_token else None,
        is_active=is_active,
        timeout_ms=timeout_ms or settings.DISPATCH_DEFAULT_TIMEOUT_MS,
        total_calls=0,
        success_calls=0,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateSubscription(
            f"Tenant already has a subscription for {event_type or function_name}"
        ) from exc
    db.refresh(row)
    logger.info("Subscription created: id=%s tenant=%s kind=%s topic=%s", row.id, tenant_id, kind, event_type or function_name)
    return row


def update_subscription(
    db: Session,
    row: Subscription,
    *,
    name: str | None = None,
    endpoint_url: str | None = None,
    auth_token: str | None = None,
    clear_auth_token: bool = False,
    timeout_ms: int | None = None,
    is_active: bool | None = None,
) -> Subscription:
    if name is not None:
        row.name = name
    if endpoint_url is not None:
        row.endpoint_url = endpoint_url
    if clear_auth_token:
        row.auth_token_enc = None
    elif auth_token is not None:
        row.auth_token_enc = encrypt_text(auth_token)
    if timeout_ms is not None:
        row.timeout_ms = timeout_ms
    if is_active is not None:
        row.is_active = is_active
    row.updated_at = datetime.utcnow()
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_attempts(db: Session, *, tenant_id: str, subscription_id: str, limit: int = 50) -> list[DeliveryAttempt]:
    return list(
        db.execute(
            select(DeliveryAttempt)
            .where(
                DeliveryAttempt.subscription_id == subscription_id,
                DeliveryAttempt.tenant_id == tenant_id,
            )
            .order_by(desc(DeliveryAttempt.created_at))
            .limit(limit)
        )
        .scalars()
        .all()
    )
