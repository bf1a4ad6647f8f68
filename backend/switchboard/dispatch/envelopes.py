from typing import Any

# where chat/voice providers put the automated-agent id, checked in order
_AGENT_ID_PATHS = (
    ("agent_id",),
    ("chat", "agent_id"),
    ("call", "agent_id"),
    ("body", "agent_id"),
)


def _dig(payload: Any, path: tuple[str, ...]) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def extract_agent_id(payload: dict[str, Any]) -> str | None:
    for path in _AGENT_ID_PATHS:
        value = _dig(payload, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None

