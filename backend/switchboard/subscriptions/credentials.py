import base64
import hashlib
import logging

from nacl import secret, utils
from nacl.exceptions import CryptoError
from sqlalchemy import select
from sqlalchemy.orm import Session

from switchboard.core.config import settings
from switchboard.subscriptions.models import Subscription

logger = logging.getLogger(__name__)


def _box() -> secret.SecretBox:
    key_str = settings.SECRET_KEY
    if not key_str and settings.ENV != "dev":
        raise RuntimeError("SECRET_KEY is not set")
    # 32-byte key derived via SHA-256
    key = hashlib.sha256((key_str or "dev-change-me").encode("utf-8")).digest()
    return secret.SecretBox(key)


def encrypt_text(plain: str) -> str:
    nonce = utils.random(secret.SecretBox.NONCE_SIZE)
    ct = _box().encrypt(plain.encode("utf-8"), nonce)
    return base64.b64encode(ct).decode("utf-8")


def decrypt_text(enc_b64: str) -> str | None:
    try:
        pt = _box().decrypt(base64.b64decode(enc_b64))
    except (CryptoError, ValueError):
        return None
    return pt.decode("utf-8")


class CredentialStore:
    """Resolves the outbound secret for a subscription; plaintext is never persisted."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_outbound_auth(self, subscription_id: str) -> str | None:
        enc = self.db.execute(
            select(Subscription.auth_token_enc).where(Subscription.id == subscription_id)
        ).scalar_one_or_none()
        if not enc:
            return None
        token = decrypt_text(enc)
        if token is None:
            logger.warning("Could not decrypt auth token for subscription %s; sending without auth", subscription_id)
        return token
