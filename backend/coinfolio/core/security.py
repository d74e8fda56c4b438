"""
Password hashing, session token signing and token-at-rest hashing.

Passwords and session tokens are hashed differently on purpose: passwords are
low-entropy and get bcrypt with a configurable cost, tokens are random and get
a fast keyed PBKDF2 whose iteration count is tuned separately.
"""
import base64
import hashlib
import hmac
import json
import logging
import secrets
from typing import Optional

import bcrypt

from coinfolio.core.config import (
    PASSWORD_BCRYPT_ROUNDS,
    SESSION_SECRET,
    TOKEN_HASH_ITERATIONS,
)

logger = logging.getLogger(__name__)

_DEV_SECRET = "coinfolio-dev-secret-change-in-prod"


def _secret() -> bytes:
    return (SESSION_SECRET or _DEV_SECRET).encode()


def hash_password(password: str, rounds: int = PASSWORD_BCRYPT_ROUNDS) -> str:
    """Hash password using bcrypt."""
    password_bytes = password.encode("utf-8")
    return bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Verify password against hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Checked against when the account does not exist, so an unknown email costs a bcrypt round too
DUMMY_PASSWORD_HASH = hash_password(secrets.token_urlsafe(16))


def hash_session_token(token: str, iterations: int = TOKEN_HASH_ITERATIONS) -> str:
    """Deterministic one-way hash of a raw session token, used as the lookup key."""
    digest = hashlib.pbkdf2_hmac("sha256", token.encode("utf-8"), _secret(), max(iterations, 1))
    return digest.hex()


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _signature(body: str) -> str:
    return hmac.new(_secret(), body.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_payload(payload: dict) -> str:
    """Serialize and sign a payload as ``<base64url json>.<hex hmac>``."""
    body = _b64encode(json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8"))
    return f"{body}.{_signature(body)}"


def unsign_token(token: str) -> Optional[dict]:
    """Return the payload of a correctly signed token, or None."""
    if not token or token.count(".") != 1:
        return None
    body, signature = token.split(".", 1)
    if not hmac.compare_digest(signature.encode("utf-8"), _signature(body).encode("utf-8")):
        return None
    try:
        payload = json.loads(_b64decode(body))
    except (ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def new_token_id() -> str:
    """Random nonce so two tokens issued in the same second never collide."""
    return secrets.token_urlsafe(16)


def warn_if_default_secret() -> None:
    if not SESSION_SECRET:
        logger.warning("SESSION_SECRET is not set; using the development signing secret")
