import enum
from datetime import datetime, timezone
from typing import Any


class EventType(str, enum.Enum):
    CHAT_STARTED = "chat_started"
    CHAT_ENDED = "chat_ended"
    CHAT_ANALYZED = "chat_analyzed"
    CALL_STARTED = "call_started"
    CALL_ENDED = "call_ended"
    CALL_ANALYZED = "call_analyzed"
    MESSAGE_RECEIVED = "message_received"
    HANDOFF_REQUESTED = "handoff_requested"
    HANDOFF_PICKED_UP = "handoff_picked_up"
    HANDOFF_RESOLVED = "handoff_resolved"


# events accepted from chat/voice provider callbacks
PROVIDER_EVENTS = {
    EventType.CHAT_STARTED,
    EventType.CHAT_ENDED,
    EventType.CHAT_ANALYZED,
    EventType.CALL_STARTED,
    EventType.CALL_ENDED,
    EventType.CALL_ANALYZED,
}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_event_payload(
    event_type: EventType,
    *,
    tenant_id: str,
    tenant_name: str | None,
    data: dict[str, Any],
) -> dict[str, Any]:
    return {
        "event": event_type.value,
        "tenant": {"id": tenant_id, "name": tenant_name or "Unknown"},
        "timestamp": utc_timestamp(),
        "data": data,
    }


def build_function_payload(
    function_name: str,
    *,
    tenant_id: str,
    tenant_name: str | None,
    agent_id: str,
    call_id: str | None,
    args: dict[str, Any] | None,
    original: dict[str, Any],
) -> dict[str, Any]:
    return {
        "function": function_name,
        "tenant": {"id": tenant_id, "name": tenant_name or "Unknown"},
        "call": {"id": call_id, "agent_id": agent_id},
        "args": args or {},
        "timestamp": utc_timestamp(),
        "original_payload": original,
    }
