"""
User settings endpoints.
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from coinfolio.core.auth import get_current_user_dependency
from coinfolio.core.database import get_db
from coinfolio.models.user import User
from coinfolio.services.activity import log_activity
from coinfolio.services.user_settings import get_or_create_settings, update_settings

router = APIRouter()


class UpdatePreferencesRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    theme: Optional[Literal["light", "dark", "auto"]] = None
    currency: Optional[Literal["USD", "EUR", "GBP", "JPY", "CAD", "AUD", "CHF"]] = None
    notifications_enabled: Optional[bool] = None


class UpdateSecurityRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    two_factor_enabled: Optional[bool] = None
    email_notifications: Optional[bool] = None
    price_alerts: Optional[bool] = None


@router.get("", response_model=dict)
def get_user_settings(
    current_user: User = Depends(get_current_user_dependency),
    db: Session = Depends(get_db),
):
    """Get current user's settings."""
    settings = get_or_create_settings(db, current_user.id)
    return {
        "success": True,
        "data": {
            "profile": current_user.to_public_dict(),
            "preferences": settings.to_dict(),
        },
    }


@router.put("/preferences", response_model=dict)
def update_preferences(
    body: UpdatePreferencesRequest,
    current_user: User = Depends(get_current_user_dependency),
    db: Session = Depends(get_db),
):
    settings = update_settings(db, current_user.id, **body.model_dump())
    log_activity(db, current_user.id, "settings_updated", details=body.model_dump(exclude_none=True))
    return {"success": True, "message": "Preferences updated", "data": settings.to_dict()}


@router.put("/security", response_model=dict)
def update_security(
    body: UpdateSecurityRequest,
    current_user: User = Depends(get_current_user_dependency),
    db: Session = Depends(get_db),
):
    settings = update_settings(db, current_user.id, **body.model_dump())
    log_activity(db, current_user.id, "security_updated", details=body.model_dump(exclude_none=True))
    return {"success": True, "message": "Security settings updated", "data": settings.to_dict()}
