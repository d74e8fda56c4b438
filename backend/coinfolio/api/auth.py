"""
Authentication endpoints.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coinfolio.core.auth import (
    clear_session_cookie,
    get_current_user_dependency,
    get_session_token,
    issue_session,
    revoke_session,
    revoke_user_sessions,
    set_session_cookie,
)
from coinfolio.core.database import get_db
from coinfolio.core.errors import AuthRequiredError, ConflictError, InvalidInputError
from coinfolio.core.rate_limit import auth_rate_limit, get_client_ip
from coinfolio.core.security import DUMMY_PASSWORD_HASH, hash_password, verify_password
from coinfolio.models.user import User
from coinfolio.services.activity import log_activity
from coinfolio.services.user_settings import get_or_create_settings

logger = logging.getLogger(__name__)

router = APIRouter()

# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


class RegisterRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=8, max_length=MAX_PASSWORD_BYTES)
    full_name: str = Field(min_length=1, max_length=255)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_BYTES)
    remember_me: bool = False


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    current_password: str = Field(min_length=1, max_length=MAX_PASSWORD_BYTES)
    new_password: str = Field(min_length=8, max_length=MAX_PASSWORD_BYTES)

    @field_validator("new_password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    full_name: str
    created_at: Optional[datetime] = None


def _session_payload(user: User, issued) -> dict:
    return {
        "user": UserResponse.model_validate(user).model_dump(mode="json"),
        "token": issued.token,
        "expires_at": issued.expires_at.isoformat(),
    }


@router.post("/register", response_model=dict, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    _: None = Depends(auth_rate_limit),
):
    """Create an account and start a session for it."""
    email = body.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise ConflictError("An account with this email already exists")

    user = User(
        email=email,
        hashed_password=hash_password(body.password),
        full_name=body.full_name,
        is_active=True,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("An account with this email already exists")
    db.refresh(user)

    get_or_create_settings(db, user.id)

    ip_address = get_client_ip(request)
    user_agent = request.headers.get("user-agent")
    issued = issue_session(db, user, ip_address=ip_address, user_agent=user_agent)
    log_activity(db, user.id, "register", ip_address=ip_address, user_agent=user_agent)
    set_session_cookie(response, issued)

    logger.info(f"Registered user {user.id}")
    return {
        "success": True,
        "message": "Account created successfully",
        "data": _session_payload(user, issued),
    }


@router.post("/login", response_model=dict)
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    _: None = Depends(auth_rate_limit),
):
    """Login with email and password."""
    user = db.query(User).filter(User.email == body.email.lower()).first()

    password_ok = verify_password(body.password, user.hashed_password if user else DUMMY_PASSWORD_HASH)
    if not user or not user.is_active or not password_ok:
        raise AuthRequiredError("Invalid email or password")

    ip_address = get_client_ip(request)
    user_agent = request.headers.get("user-agent")
    issued = issue_session(
        db,
        user,
        remember_me=body.remember_me,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    log_activity(
        db,
        user.id,
        "login",
        details={"remember_me": body.remember_me},
        ip_address=ip_address,
        user_agent=user_agent,
    )
    set_session_cookie(response, issued)

    return {
        "success": True,
        "message": "Login successful",
        "data": _session_payload(user, issued),
    }


@router.post("/logout", response_model=dict)
def logout(
    response: Response,
    current_user: User = Depends(get_current_user_dependency),
    session_token: str = Depends(get_session_token),
    db: Session = Depends(get_db),
):
    """Revoke the current session and clear the cookie."""
    revoke_session(db, session_token)
    log_activity(db, current_user.id, "logout")
    clear_session_cookie(response)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me", response_model=dict)
def get_me(current_user: User = Depends(get_current_user_dependency)):
    """Get current user info."""
    return {
        "success": True,
        "data": UserResponse.model_validate(current_user).model_dump(mode="json"),
    }


@router.post("/change-password", response_model=dict)
def change_password(
    body: ChangePasswordRequest,
    request: Request,
    current_user: User = Depends(get_current_user_dependency),
    session_token: str = Depends(get_session_token),
    db: Session = Depends(get_db),
):
    """Change password. Every other session of the user is revoked."""
    if not verify_password(body.current_password, current_user.hashed_password):
        raise InvalidInputError("Current password is incorrect")
    if body.current_password == body.new_password:
        raise InvalidInputError("New password must be different from the current password")

    current_user.hashed_password = hash_password(body.new_password)
    db.commit()

    revoked = revoke_user_sessions(db, current_user.id, keep_token=session_token)
    log_activity(
        db,
        current_user.id,
        "password_changed",
        details={"revoked_sessions": revoked},
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return {"success": True, "message": "Password changed successfully"}
