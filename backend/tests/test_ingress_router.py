from types import SimpleNamespace

from switchboard.core.errors import DispatchTimeout, DispatchUpstreamError, SubscriptionAbsent
from switchboard.dispatch.envelopes import extract_agent_id
from switchboard.dispatch.functions import FunctionReply


def test_extract_agent_id_checks_known_locations():
    assert extract_agent_id({"agent_id": " a1 "}) == "a1"
    assert extract_agent_id({"chat": {"agent_id": "a2"}}) == "a2"
    assert extract_agent_id({"call": {"agent_id": "a3"}}) == "a3"
    assert extract_agent_id({"body": {"agent_id": "a4"}}) == "a4"
    assert extract_agent_id({"agent_id": "", "call": {"agent_id": "a5"}}) == "a5"
    assert extract_agent_id({"chat": "not-a-dict"}) is None
    assert extract_agent_id({}) is None


def test_event_is_acknowledged_then_dispatched(client, tenant, dispatched):
    res = client.post("/api/v1/events/chat_ended", json={"chat": {"agent_id": "agent_acme", "chat_id": "c1"}})

    assert res.status_code == 202
    assert res.json() == {"received": True, "tenant_resolved": True, "event_type": "chat_ended"}
    assert dispatched == [("t_acme", "chat_ended", {"chat": {"agent_id": "agent_acme", "chat_id": "c1"}})]


def test_unknown_agent_is_acknowledged_without_dispatch(client, tenant, dispatched):
    res = client.post("/api/v1/events/call_started", json={"agent_id": "agent_nobody"})

    assert res.status_code == 202
    assert res.json()["tenant_resolved"] is False
    assert dispatched == []


def test_event_without_agent_id_is_rejected(client, tenant, dispatched):
    res = client.post("/api/v1/events/chat_started", json={"chat": {}})

    assert res.status_code == 400
    assert dispatched == []


def test_internal_event_types_are_not_accepted_from_providers(client, tenant, dispatched):
    res = client.post("/api/v1/events/handoff_requested", json={"agent_id": "agent_acme"})
    unknown = client.post("/api/v1/events/chat_exploded", json={"agent_id": "agent_acme"})

    assert res.status_code == 400
    assert unknown.status_code == 422
    assert dispatched == []


def test_function_reply_is_passed_through(client, tenant, monkeypatch):
    seen = {}

    async def fake_call(tenant_row, function_name, payload):
        seen.update(tenant=tenant_row.id, function=function_name, payload=payload)
        return FunctionReply(subscription_id="sub_1", status_code=201, body={"slot": "10:00"}, latency_ms=12)

    monkeypatch.setattr("switchboard.dispatch.router.call_function", fake_call)

    res = client.post(
        "/api/v1/functions/book_appointment",
        json={"agent_id": "agent_acme", "call_id": "call_1", "args": {"day": "mon"}},
    )

    assert res.status_code == 201
    assert res.json() == {"slot": "10:00"}
    assert seen["tenant"] == "t_acme"
    assert seen["function"] == "book_appointment"
    assert seen["payload"]["args"] == {"day": "mon"}


def test_function_errors_map_to_status_codes(client, tenant, monkeypatch):
    errors = iter(
        [
            SubscriptionAbsent("No function route configured for lookup"),
            DispatchTimeout("Function lookup did not respond within 100ms"),
            DispatchUpstreamError("Function lookup returned 418", status_code=418, body={"error": "teapot"}),
        ]
    )

    async def fake_call(*_args, **_kwargs):
        raise next(errors)

    monkeypatch.setattr("switchboard.dispatch.router.call_function", fake_call)

    absent = client.post("/api/v1/functions/lookup", json={"agent_id": "agent_acme"})
    timed_out = client.post("/api/v1/functions/lookup", json={"agent_id": "agent_acme"})
    upstream = client.post("/api/v1/functions/lookup", json={"agent_id": "agent_acme"})

    assert absent.status_code == 404
    assert absent.json()["detail"]["reason"] == "subscription_absent"
    assert timed_out.status_code == 504
    assert upstream.status_code == 418
    assert upstream.json() == {"error": "teapot"}


def test_function_call_for_unknown_agent(client, tenant, monkeypatch):
    monkeypatch.setattr(
        "switchboard.dispatch.router.call_function",
        lambda *_args, **_kwargs: SimpleNamespace(),
    )

    res = client.post("/api/v1/functions/lookup", json={"agent_id": "agent_nobody"})

    assert res.status_code == 404
    assert res.json()["detail"]["reason"] == "tenant_not_found"
