from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from switchboard.admin.rbac import require_scope
from switchboard.auth.deps import get_current_user
from switchboard.auth.models import User
from switchboard.db.session import get_db
from switchboard.subscriptions.models import DeliveryAttempt, Subscription
from switchboard.subscriptions.schemas import (
    DeliveryAttemptOut,
    DeliveryAttemptsResponse,
    SubscriptionCreateRequest,
    SubscriptionListResponse,
    SubscriptionOut,
    SubscriptionPatchRequest,
    SubscriptionStatsOut,
)
from switchboard.subscriptions.service import (
    DuplicateSubscription,
    create_subscription,
    get_subscription,
    list_attempts,
    list_subscriptions,
    update_subscription,
)

admin_router = APIRouter()


def _to_out(row: Subscription) -> SubscriptionOut:
    return SubscriptionOut(
        id=row.id,
        tenant_id=row.tenant_id,
        kind=row.kind,
        name=row.name,
        event_type=row.event_type,
        function_name=row.function_name,
        endpoint_url=row.endpoint_url,
        has_auth_token=bool(row.auth_token_enc),
        is_active=row.is_active,
        timeout_ms=row.timeout_ms,
        total_calls=row.total_calls,
        success_calls=row.success_calls,
        last_called_at=row.last_called_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_stats(row: Subscription) -> SubscriptionStatsOut:
    total = int(row.total_calls or 0)
    success = int(row.success_calls or 0)
    return SubscriptionStatsOut(
        subscription_id=row.id,
        total_calls=total,
        success_calls=success,
        failed_calls=max(0, total - success),
        success_rate=round(success / total, 4) if total else 0.0,
        last_called_at=row.last_called_at,
    )


def _to_attempt_out(row: DeliveryAttempt) -> DeliveryAttemptOut:
    return DeliveryAttemptOut(
        id=row.id,
        topic=row.topic,
        outcome=row.outcome,
        status_code=row.status_code,
        latency_ms=row.latency_ms,
        error=row.error,
        created_at=row.created_at,
    )


def _get_or_404(db: Session, tenant_id: str, subscription_id: str) -> Subscription:
    row = get_subscription(db, tenant_id=tenant_id, subscription_id=subscription_id)
    if not row:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return row


@admin_router.get("", response_model=SubscriptionListResponse)
def list_tenant_subscriptions(
    kind: str | None = Query(default=None, min_length=5, max_length=16),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "subscriptions:read")
    rows = list_subscriptions(db, tenant_id=current_user.tenant_id, kind=kind)
    return {
        "tenant_id": current_user.tenant_id,
        "count": len(rows),
        "items": [_to_out(r) for r in rows],
    }


@admin_router.post("", response_model=SubscriptionOut)
def create_tenant_subscription(
    payload: SubscriptionCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "subscriptions:write")
    try:
        row = create_subscription(
            db,
            tenant_id=current_user.tenant_id,
            kind=payload.kind,
            name=payload.name,
            endpoint_url=payload.endpoint_url,
            event_type=payload.event_type,
            function_name=payload.function_name,
            auth_token=payload.auth_token,
            timeout_ms=payload.timeout_ms,
            is_active=payload.is_active,
        )
    except DuplicateSubscription as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _to_out(row)


@admin_router.patch("/{subscription_id}", response_model=SubscriptionOut)
def patch_tenant_subscription(
    subscription_id: str,
    payload: SubscriptionPatchRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "subscriptions:write")
    row = _get_or_404(db, current_user.tenant_id, subscription_id)
    row = update_subscription(
        db,
        row,
        name=payload.name,
        endpoint_url=payload.endpoint_url,
        auth_token=payload.auth_token,
        clear_auth_token=payload.clear_auth_token,
        timeout_ms=payload.timeout_ms,
        is_active=payload.is_active,
    )
    return _to_out(row)


@admin_router.get("/{subscription_id}/stats", response_model=SubscriptionStatsOut)
def subscription_stats(
    subscription_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "subscriptions:read")
    return _to_stats(_get_or_404(db, current_user.tenant_id, subscription_id))


@admin_router.get("/{subscription_id}/attempts", response_model=DeliveryAttemptsResponse)
def subscription_attempts(
    subscription_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_scope(current_user, "subscriptions:read")
    _get_or_404(db, current_user.tenant_id, subscription_id)
    rows = list_attempts(db, tenant_id=current_user.tenant_id, subscription_id=subscription_id, limit=limit)
    return {
        "subscription_id": subscription_id,
        "count": len(rows),
        "items": [_to_attempt_out(r) for r in rows],
    }
