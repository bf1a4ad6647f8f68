from datetime import datetime, timedelta
from hashlib import sha256
from typing import Any

from jose import JWTError, jwt

from switchboard.auth.security import JWT_ALG, JWT_SECRET
from switchboard.core.config import settings


class WidgetTokenValidationError(ValueError):
    pass


def hash_bot_key(raw_key: str) -> str:
    return sha256(raw_key.encode("utf-8")).hexdigest()


def normalize_origin(origin: str | None) -> str:
    return (origin or "").strip().rstrip("/").lower()


def origin_allowed(origin: str, allowed_origins: list[str] | None) -> bool:
    allowed = {normalize_origin(o) for o in (allowed_origins or []) if normalize_origin(o)}
    return not allowed or normalize_origin(origin) in allowed


def create_widget_token(*, tenant_id: str, bot_id: str, session_id: str, origin: str) -> tuple[str, int]:
    exp_minutes = max(1, int(settings.WIDGET_TOKEN_EXP_MINUTES))
    payload = {
        "typ": "widget",
        "tenant_id": tenant_id,
        "bot_id": bot_id,
        "session_id": session_id,
        "origin": origin,
        "exp": datetime.utcnow() + timedelta(minutes=exp_minutes),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG), exp_minutes * 60


def decode_widget_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError as exc:
        raise WidgetTokenValidationError("Invalid widget token") from exc

    if payload.get("typ") != "widget":
        raise WidgetTokenValidationError("Invalid widget token type")

    for key in ("tenant_id", "bot_id", "session_id", "origin"):
        if not payload.get(key):
            raise WidgetTokenValidationError("Invalid widget token payload")

    return payload
