import pytest

from conftest import add_user, auth_headers
from switchboard.subscriptions import service as subscriptions
from switchboard.subscriptions.credentials import CredentialStore
from switchboard.subscriptions.models import Subscription
from switchboard.subscriptions.service import DeliveryTarget, DuplicateSubscription


def _target(sub: Subscription) -> DeliveryTarget:
    return DeliveryTarget(
        subscription_id=sub.id,
        tenant_id=sub.tenant_id,
        tenant_name="Acme",
        topic=sub.event_type or sub.function_name,
        endpoint_url=sub.endpoint_url,
        auth_token=None,
        timeout_ms=sub.timeout_ms,
    )


def test_auth_token_is_encrypted_at_rest(db, tenant):
    sub = subscriptions.create_subscription(
        db,
        tenant_id="t_acme",
        kind="event",
        name="crm",
        event_type="chat_ended",
        endpoint_url="https://crm.example/hook",
        auth_token="s3cret-token",
    )

    assert sub.auth_token_enc
    assert "s3cret-token" not in sub.auth_token_enc
    assert CredentialStore(db).get_outbound_auth(sub.id) == "s3cret-token"


def test_one_subscription_per_event_and_per_function(db, tenant):
    subscriptions.create_subscription(
        db, tenant_id="t_acme", kind="event", name="a", event_type="chat_ended", endpoint_url="https://a.example"
    )
    subscriptions.create_subscription(
        db, tenant_id="t_acme", kind="function", name="f", function_name="lookup", endpoint_url="https://f.example"
    )
    # another tenant may subscribe to the same event
    subscriptions.create_subscription(
        db, tenant_id="t_other", kind="event", name="b", event_type="chat_ended", endpoint_url="https://b.example"
    )

    with pytest.raises(DuplicateSubscription):
        subscriptions.create_subscription(
            db, tenant_id="t_acme", kind="event", name="dup", event_type="chat_ended", endpoint_url="https://c.example"
        )
    with pytest.raises(DuplicateSubscription):
        subscriptions.create_subscription(
            db, tenant_id="t_acme", kind="function", name="dup", function_name="lookup", endpoint_url="https://c.example"
        )


@pytest.mark.parametrize(
    "kwargs",
    [
        {"kind": "webhook", "event_type": "chat_ended"},
        {"kind": "event"},
        {"kind": "event", "event_type": "chat_exploded"},
        {"kind": "function"},
    ],
)
def test_invalid_subscription_definitions(db, tenant, kwargs):
    with pytest.raises(ValueError):
        subscriptions.create_subscription(db, tenant_id="t_acme", name="x", endpoint_url="https://x.example", **kwargs)


def test_counters_only_grow(db, tenant):
    sub = subscriptions.create_subscription(
        db, tenant_id="t_acme", kind="event", name="a", event_type="call_ended", endpoint_url="https://a.example"
    )
    target = _target(sub)

    for outcome in ("success", "timeout", "success", "upstream_error"):
        subscriptions.record_delivery(db, target=target, outcome=outcome, status_code=None, latency_ms=5)

    db.expire_all()
    row = db.get(Subscription, sub.id)
    assert (row.total_calls, row.success_calls) == (4, 2)
    attempts = subscriptions.list_attempts(db, tenant_id="t_acme", subscription_id=sub.id)
    assert sorted(a.outcome for a in attempts) == ["success", "success", "timeout", "upstream_error"]


def test_admin_api_manages_subscriptions(client, db, tenant):
    admin = add_user(db, user_id="u_admin", role="admin")
    headers = auth_headers(admin)

    created = client.post(
        "/api/v1/admin/subscriptions",
        json={
            "kind": "event",
            "name": "CRM",
            "event_type": "handoff_resolved",
            "endpoint_url": "https://crm.example/hook",
            "auth_token": "s3cret",
            "timeout_ms": 2500,
        },
        headers=headers,
    )
    assert created.status_code == 200
    body = created.json()
    assert body["has_auth_token"] is True
    assert "auth_token" not in body
    assert body["timeout_ms"] == 2500

    duplicate = client.post(
        "/api/v1/admin/subscriptions",
        json={"kind": "event", "name": "again", "event_type": "handoff_resolved", "endpoint_url": "https://x.example"},
        headers=headers,
    )
    assert duplicate.status_code == 409

    patched = client.patch(
        f"/api/v1/admin/subscriptions/{body['id']}",
        json={"is_active": False, "clear_auth_token": True},
        headers=headers,
    )
    assert patched.json()["is_active"] is False
    assert patched.json()["has_auth_token"] is False

    stats = client.get(f"/api/v1/admin/subscriptions/{body['id']}/stats", headers=headers).json()
    assert stats == {
        "subscription_id": body["id"],
        "total_calls": 0,
        "success_calls": 0,
        "failed_calls": 0,
        "success_rate": 0.0,
        "last_called_at": None,
    }


def test_support_role_cannot_manage_subscriptions(client, db, tenant):
    support = add_user(db, user_id="u_support")

    res = client.get("/api/v1/admin/subscriptions", headers=auth_headers(support))
    anonymous = client.get("/api/v1/admin/subscriptions")

    assert res.status_code == 403
    assert anonymous.status_code == 401


def test_subscriptions_are_tenant_scoped(client, db, tenant):
    sub = subscriptions.create_subscription(
        db, tenant_id="t_other", kind="event", name="theirs", event_type="chat_ended", endpoint_url="https://t.example"
    )
    admin = add_user(db, user_id="u_admin", role="admin")

    res = client.get(f"/api/v1/admin/subscriptions/{sub.id}/stats", headers=auth_headers(admin))

    assert res.status_code == 404
