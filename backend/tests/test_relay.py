import threading

import pytest

from conftest import add_agent
from switchboard.core.errors import HandoffNotFound, InvalidTransition, NotAssignedOperator
from switchboard.handoff import relay, service


def _active_session(db, chat_id: str = "chat_1"):
    add_agent(db, agent_id=f"ha_{chat_id}", max_sessions=1)
    row, _ = service.create_session(db, tenant_id="t_acme", chat_id=chat_id)
    return service.claim(db, tenant_id="t_acme", handoff_id=row.id, agent_id=f"ha_{chat_id}")


def test_append_refused_before_pickup(db, tenant):
    row, _ = service.create_session(db, tenant_id="t_acme", chat_id="chat_1")

    with pytest.raises(InvalidTransition) as exc_info:
        relay.append(db, tenant_id="t_acme", handoff_id=row.id, sender_type="user", sender_id="chat_1", content="hello?")

    assert exc_info.value.reason == "not_active"


def test_append_refused_after_resolution(db, tenant):
    row = _active_session(db)
    service.resolve(db, tenant_id="t_acme", handoff_id=row.id, resolved_by="user")

    with pytest.raises(InvalidTransition) as exc_info:
        relay.append(db, tenant_id="t_acme", handoff_id=row.id, sender_type="agent", sender_id="ha_chat_1", content="bye")

    assert exc_info.value.reason == "session_resolved"


def test_append_refused_for_operator_no_longer_assigned(db, tenant):
    row = _active_session(db)
    add_agent(db, agent_id="ha_other", max_sessions=1)

    with pytest.raises(NotAssignedOperator):
        relay.append(
            db,
            tenant_id="t_acme",
            handoff_id=row.id,
            sender_type="agent",
            sender_id="ha_other",
            content="taking over",
            agent_id="ha_other",
        )

    assert list(relay.list_since(db, tenant_id="t_acme", handoff_id=row.id)) == []
    msg = relay.append(
        db,
        tenant_id="t_acme",
        handoff_id=row.id,
        sender_type="agent",
        sender_id="ha_chat_1",
        content="still here",
        agent_id="ha_chat_1",
    )
    assert msg.seq == 1


def test_append_unknown_session(db, tenant):
    with pytest.raises(HandoffNotFound):
        relay.append(db, tenant_id="t_acme", handoff_id="ho_missing", sender_type="user", sender_id=None, content="hi")


def test_append_validates_sender_and_content(db, tenant):
    row = _active_session(db)

    with pytest.raises(ValueError):
        relay.append(db, tenant_id="t_acme", handoff_id=row.id, sender_type="bot", sender_id=None, content="hi")
    with pytest.raises(ValueError):
        relay.append(db, tenant_id="t_acme", handoff_id=row.id, sender_type="user", sender_id=None, content="   ")


def test_sequence_numbers_have_no_gaps(db, tenant):
    row = _active_session(db)

    seqs = [
        relay.append(db, tenant_id="t_acme", handoff_id=row.id, sender_type=sender, sender_id=None, content=f"m{i}").seq
        for i, sender in enumerate(["user", "agent", "user", "agent"])
    ]

    assert seqs == [1, 2, 3, 4]


def test_concurrent_appends_get_distinct_consecutive_seqs(session_factory, db, tenant):
    row = _active_session(db)
    writers = 6
    per_writer = 5
    barrier = threading.Barrier(writers)
    errors: list[Exception] = []

    def worker(n: int) -> None:
        session = session_factory()
        try:
            barrier.wait()
            for i in range(per_writer):
                relay.append(
                    session,
                    tenant_id="t_acme",
                    handoff_id=row.id,
                    sender_type="user" if n % 2 else "agent",
                    sender_id=None,
                    content=f"writer {n} message {i}",
                )
        except Exception as exc:  # surfaced by the assertion below
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(writers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    db.expire_all()
    seqs = [m.seq for m in relay.list_since(db, tenant_id="t_acme", handoff_id=row.id)]
    assert seqs == list(range(1, writers * per_writer + 1))


def test_list_since_pages_through_everything_after_cursor(db, tenant):
    row = _active_session(db)
    for i in range(7):
        relay.append(db, tenant_id="t_acme", handoff_id=row.id, sender_type="user", sender_id=None, content=f"m{i}")

    after_two = list(relay.list_since(db, tenant_id="t_acme", handoff_id=row.id, cursor=2, page_size=2))
    at_end = list(relay.list_since(db, tenant_id="t_acme", handoff_id=row.id, cursor=7, page_size=2))

    assert [m.seq for m in after_two] == [3, 4, 5, 6, 7]
    assert [m.content for m in after_two][0] == "m2"
    assert at_end == []


def test_list_since_is_scoped_to_tenant(db, tenant):
    row = _active_session(db)
    relay.append(db, tenant_id="t_acme", handoff_id=row.id, sender_type="user", sender_id=None, content="private")

    assert list(relay.list_since(db, tenant_id="t_other", handoff_id=row.id)) == []


def test_closing_notice_follows_conversation(db, tenant):
    row = _active_session(db)
    relay.append(db, tenant_id="t_acme", handoff_id=row.id, sender_type="user", sender_id=None, content="thanks")
    service.resolve(db, tenant_id="t_acme", handoff_id=row.id, resolved_by="user", ended_by_label="the customer")

    items = list(relay.list_since(db, tenant_id="t_acme", handoff_id=row.id, cursor=1))

    assert [(m.seq, m.sender_type, m.content) for m in items] == [(2, "system", "Chat ended by the customer")]
