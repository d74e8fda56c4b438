"""
Session lifecycle and authentication dependencies.

A session token is valid only while both hold:
  1. its HMAC signature verifies and its embedded expiry is in the future;
  2. a hash of the raw token matches an unexpired ``user_sessions`` row.
Deleting the row revokes the token before its natural expiry.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from coinfolio.core.config import (
    SESSION_COOKIE_NAME,
    SESSION_COOKIE_SECURE,
    SESSION_EXPIRY_HOURS,
    SESSION_REMEMBER_ME_DAYS,
)
from coinfolio.core.database import get_db
from coinfolio.core.errors import AuthInvalidError, AuthRequiredError
from coinfolio.core.security import hash_session_token, new_token_id, sign_payload, unsign_token
from coinfolio.models.user import User
from coinfolio.models.user_session import UserSession

logger = logging.getLogger(__name__)

__all__ = [
    'IssuedSession',
    'issue_session',
    'decode_session_token',
    'verify_session',
    'revoke_session',
    'revoke_user_sessions',
    'cleanup_expired_sessions',
    'get_session_tokens',
    'get_session_token',
    'get_current_user_dependency',
    'set_session_cookie',
    'clear_session_cookie',
]

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class IssuedSession:
    """Raw token handed to the client, plus its expiry."""
    token: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def issue_session(
    db: Session,
    user: User,
    remember_me: bool = False,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> IssuedSession:
    """Create a signed session token and persist its hash."""
    issued_at = _utcnow()
    if remember_me:
        lifetime = timedelta(days=SESSION_REMEMBER_ME_DAYS)
    else:
        lifetime = timedelta(hours=SESSION_EXPIRY_HOURS)
    expires_at = issued_at + lifetime

    token = sign_payload({
        'sub': user.id,
        'iat': int(issued_at.timestamp()),
        'exp': int(expires_at.timestamp()),
        'jti': new_token_id(),
    })

    db.add(UserSession(
        user_id=user.id,
        token_hash=hash_session_token(token),
        expires_at=expires_at,
        ip_address=ip_address,
        user_agent=user_agent[:500] if user_agent else None,
    ))
    db.commit()

    logger.info(f"Issued session for user {user.id} (expires {expires_at.isoformat()})")
    return IssuedSession(token=token, expires_at=expires_at)


def decode_session_token(session_token: str) -> Optional[dict]:
    """Check signature and embedded expiry. No storage access."""
    payload = unsign_token(session_token)
    if not payload:
        return None

    subject = payload.get('sub')
    expires = payload.get('exp')
    if not isinstance(subject, int) or not isinstance(expires, (int, float)):
        return None
    if expires <= _utcnow().timestamp():
        return None
    return payload


def verify_session(db: Session, session_token: str) -> Optional[User]:
    """Resolve a raw session token to its active user, or None."""
    if not session_token:
        return None

    payload = decode_session_token(session_token)
    if payload is None:
        return None

    session_row = db.query(UserSession).filter(
        UserSession.token_hash == hash_session_token(session_token),
        UserSession.expires_at > _utcnow(),
    ).first()
    if not session_row or session_row.user_id != payload['sub']:
        return None

    user = session_row.user
    if not user or not user.is_active:
        return None
    return user


def revoke_session(db: Session, session_token: str) -> bool:
    """Delete the server-side row for a token. Returns True if one existed."""
    if not session_token:
        return False
    deleted = db.query(UserSession).filter(
        UserSession.token_hash == hash_session_token(session_token)
    ).delete(synchronize_session=False)
    db.commit()
    return deleted > 0


def revoke_user_sessions(db: Session, user_id: int, keep_token: Optional[str] = None) -> int:
    """Delete every session of a user, optionally keeping the current one."""
    query = db.query(UserSession).filter(UserSession.user_id == user_id)
    if keep_token:
        query = query.filter(UserSession.token_hash != hash_session_token(keep_token))
    deleted = query.delete(synchronize_session=False)
    db.commit()
    if deleted:
        logger.info(f"Revoked {deleted} session(s) for user {user_id}")
    return deleted


def cleanup_expired_sessions(db: Session) -> int:
    """Delete session rows whose expiry has passed."""
    deleted = db.query(UserSession).filter(
        UserSession.expires_at <= _utcnow()
    ).delete(synchronize_session=False)
    db.commit()
    return deleted


def get_session_tokens(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> List[str]:
    """Candidate raw tokens: the session cookie first, then an ``Authorization: Bearer`` header."""
    tokens = []
    cookie_token = request.cookies.get(SESSION_COOKIE_NAME)
    if cookie_token:
        tokens.append(cookie_token)
    if credentials and credentials.credentials and credentials.credentials not in tokens:
        tokens.append(credentials.credentials)
    return tokens


def get_current_user_dependency(
    request: Request,
    response: Response,
    session_tokens: List[str] = Depends(get_session_tokens),
    db: Session = Depends(get_db),
) -> User:
    """
    Dependency to get current authenticated user.

    A stale cookie does not shadow a valid bearer token: each candidate is
    tried in order and the first valid one wins. The stale cookie is cleared.
    """
    if not session_tokens:
        raise AuthRequiredError()

    for session_token in session_tokens:
        user = verify_session(db, session_token)
        if user:
            break
    else:
        # Same error whatever the cause: bad signature, expiry or revocation
        raise AuthInvalidError()

    cookie_token = request.cookies.get(SESSION_COOKIE_NAME)
    if cookie_token and cookie_token != session_token:
        clear_session_cookie(response)

    request.state.user = user
    request.state.session_token = session_token
    return user


def get_session_token(
    request: Request,
    current_user: User = Depends(get_current_user_dependency),
) -> str:
    """The raw token that authenticated the current request."""
    return request.state.session_token


def set_session_cookie(response: Response, issued: IssuedSession) -> None:
    max_age = max(int((issued.expires_at - _utcnow()).total_seconds()), 0)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=issued.token,
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite="strict",
        max_age=max_age,
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite="strict",
    )
