import pytest
from fastapi import BackgroundTasks, HTTPException

from conftest import add_agent, add_user
from switchboard.dispatch.events import EventType
from switchboard.handoff import router, service
from switchboard.handoff.router import (
    claim_handoff,
    list_handoffs,
    list_operator_messages,
    reconcile_operator_counters,
    register_operator,
    resolve_handoff,
    send_operator_message,
)
from switchboard.handoff.schemas import AgentRegisterRequest, HandoffClaimRequest, MessageCreateRequest
from switchboard.operators.models import HumanAgent


@pytest.fixture
def staff(db, tenant):
    dana = add_user(db, user_id="u_dana", name="Dana")
    lee = add_user(db, user_id="u_lee", name="Lee")
    boss = add_user(db, user_id="u_boss", role="admin", name="Boss")
    viewer = add_user(db, user_id="u_viewer", role="auditor")
    add_agent(db, agent_id="ha_dana", user_id="u_dana", name="Dana", max_sessions=2)
    add_agent(db, agent_id="ha_lee", user_id="u_lee", name="Lee", max_sessions=2)
    return {"dana": dana, "lee": lee, "boss": boss, "viewer": viewer}


@pytest.fixture
def pending(db, tenant):
    row, _ = service.create_session(db, tenant_id="t_acme", chat_id="chat_1", reason="refund")
    return row


def test_claim_returns_active_session_and_announces_pickup(db, staff, pending):
    tasks = BackgroundTasks()

    out = claim_handoff(pending.id, tasks, None, db=db, current_user=staff["dana"])

    assert out.status == "active"
    assert out.assigned_agent_id == "ha_dana"
    assert len(tasks.tasks) == 1
    task = tasks.tasks[0]
    assert task.args[0] == "t_acme"
    assert task.args[1] is EventType.HANDOFF_PICKED_UP
    assert task.args[2]["agent_name"] == "Dana"


def test_losing_claim_gets_conflict_with_reason(db, staff, pending):
    claim_handoff(pending.id, BackgroundTasks(), None, db=db, current_user=staff["dana"])
    tasks = BackgroundTasks()

    with pytest.raises(HTTPException) as exc_info:
        claim_handoff(pending.id, tasks, None, db=db, current_user=staff["lee"])

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == {"reason": "already_claimed", "message": "This session was already picked up"}
    assert tasks.tasks == []


def test_claim_on_behalf_needs_admin(db, staff, pending):
    with pytest.raises(HTTPException) as denied:
        claim_handoff(pending.id, BackgroundTasks(), HandoffClaimRequest(agent_id="ha_lee"), db=db, current_user=staff["dana"])
    out = claim_handoff(pending.id, BackgroundTasks(), HandoffClaimRequest(agent_id="ha_lee"), db=db, current_user=staff["boss"])

    assert denied.value.status_code == 403
    assert out.assigned_agent_id == "ha_lee"


def test_claim_requires_operator_registration(db, staff, pending):
    stranger = add_user(db, user_id="u_new")

    with pytest.raises(HTTPException) as exc_info:
        claim_handoff(pending.id, BackgroundTasks(), None, db=db, current_user=stranger)

    assert exc_info.value.status_code == 403


def test_only_assigned_operator_can_write_or_resolve(db, staff, pending):
    claim_handoff(pending.id, BackgroundTasks(), None, db=db, current_user=staff["dana"])

    with pytest.raises(HTTPException) as write_denied:
        send_operator_message(pending.id, MessageCreateRequest(content="hi"), db=db, current_user=staff["lee"])
    with pytest.raises(HTTPException) as resolve_denied:
        resolve_handoff(pending.id, BackgroundTasks(), db=db, current_user=staff["lee"])

    assert write_denied.value.status_code == 403
    assert resolve_denied.value.status_code == 403

    msg = send_operator_message(pending.id, MessageCreateRequest(content="Hi, I'm Dana"), db=db, current_user=staff["dana"])
    assert (msg.seq, msg.sender_type, msg.sender_id) == (1, "agent", "ha_dana")


def _dana_claims_right_after_check(monkeypatch):
    real_check = router._assert_session_operator

    def check_then_claim(session, row, user):
        agent = real_check(session, row, user)
        service.claim(session, tenant_id="t_acme", handoff_id=row.id, agent_id="ha_dana")
        return agent

    monkeypatch.setattr(router, "_assert_session_operator", check_then_claim)


def _assert_still_with_dana(db, handoff_id: str) -> None:
    db.expire_all()
    row = service.get_session(db, tenant_id="t_acme", handoff_id=handoff_id)
    assert (row.status, row.assigned_agent_id, row.message_seq) == ("active", "ha_dana", 0)


def test_resolve_refused_when_claimed_between_check_and_write(db, staff, pending, monkeypatch):
    _dana_claims_right_after_check(monkeypatch)
    tasks = BackgroundTasks()

    with pytest.raises(HTTPException) as exc_info:
        resolve_handoff(pending.id, tasks, db=db, current_user=staff["lee"])

    assert exc_info.value.status_code == 403
    assert exc_info.value.detail["reason"] == "not_assigned"
    assert tasks.tasks == []
    _assert_still_with_dana(db, pending.id)


def test_message_refused_when_claimed_between_check_and_write(db, staff, pending, monkeypatch):
    _dana_claims_right_after_check(monkeypatch)

    with pytest.raises(HTTPException) as exc_info:
        send_operator_message(pending.id, MessageCreateRequest(content="I'll take it"), db=db, current_user=staff["lee"])

    assert exc_info.value.status_code == 403
    assert exc_info.value.detail["reason"] == "not_assigned"
    _assert_still_with_dana(db, pending.id)


def test_support_user_without_operator_record_cannot_resolve(db, staff, pending):
    stranger = add_user(db, user_id="u_new")

    with pytest.raises(HTTPException) as exc_info:
        resolve_handoff(pending.id, BackgroundTasks(), db=db, current_user=stranger)

    assert exc_info.value.status_code == 403
    assert service.get_session(db, tenant_id="t_acme", handoff_id=pending.id).status == "pending"


def test_admin_can_resolve_any_active_session(db, staff, pending):
    claim_handoff(pending.id, BackgroundTasks(), None, db=db, current_user=staff["dana"])

    out = resolve_handoff(pending.id, BackgroundTasks(), db=db, current_user=staff["boss"])

    assert out.status == "resolved"
    assert out.resolved_by == "u_boss"


def test_resolve_announces_once(db, staff, pending):
    claim_handoff(pending.id, BackgroundTasks(), None, db=db, current_user=staff["dana"])
    first_tasks = BackgroundTasks()
    second_tasks = BackgroundTasks()

    out = resolve_handoff(pending.id, first_tasks, db=db, current_user=staff["dana"])
    again = resolve_handoff(pending.id, second_tasks, db=db, current_user=staff["dana"])

    assert out.status == "resolved"
    assert out.resolved_by == "ha_dana"
    assert again.resolved_at == out.resolved_at
    assert [t.args[1] for t in first_tasks.tasks] == [EventType.HANDOFF_RESOLVED]
    assert second_tasks.tasks == []

    page = list_operator_messages(pending.id, after=0, limit=100, db=db, current_user=staff["viewer"])
    assert [m.content for m in page.items] == ["Chat ended by Dana"]


def test_auditor_cannot_claim(db, staff, pending):
    with pytest.raises(HTTPException) as exc_info:
        claim_handoff(pending.id, BackgroundTasks(), None, db=db, current_user=staff["viewer"])

    assert exc_info.value.status_code == 403


def test_queue_listing_filters(db, staff, pending):
    service.create_session(db, tenant_id="t_acme", chat_id="chat_2")
    claim_handoff(pending.id, BackgroundTasks(), None, db=db, current_user=staff["dana"])

    waiting = list_handoffs(status="pending", mine=False, limit=50, offset=0, db=db, current_user=staff["lee"])
    mine = list_handoffs(status=None, mine=True, limit=50, offset=0, db=db, current_user=staff["dana"])

    assert [i.chat_id for i in waiting["items"]] == ["chat_2"]
    assert [i.id for i in mine["items"]] == [pending.id]
    with pytest.raises(HTTPException) as bad_status:
        list_handoffs(status="closed", mine=False, limit=50, offset=0, db=db, current_user=staff["lee"])
    assert bad_status.value.status_code == 422


def test_register_operator_is_idempotent_per_user(db, tenant):
    user = add_user(db, user_id="u_sam")

    first = register_operator(AgentRegisterRequest(name="Sam", max_sessions=3), db=db, current_user=user)
    again = register_operator(AgentRegisterRequest(name="Sam B."), db=db, current_user=user)

    assert first.id == again.id
    assert first.status == "offline"
    assert again.name == "Sam B."
    assert again.max_sessions == 3


def test_reconcile_fixes_drifted_counter(db, staff, pending):
    claim_handoff(pending.id, BackgroundTasks(), None, db=db, current_user=staff["dana"])
    drifted = db.get(HumanAgent, "ha_lee")
    drifted.active_sessions = 2
    db.commit()

    res = reconcile_operator_counters(db=db, current_user=staff["boss"])

    assert [(c.agent_id, c.before, c.after) for c in res.corrected] == [("ha_lee", 2, 0)]
    with pytest.raises(HTTPException):
        reconcile_operator_counters(db=db, current_user=staff["dana"])
