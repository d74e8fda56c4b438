"""
User preferences service.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coinfolio.core.errors import InvalidInputError
from coinfolio.models.user_settings import CURRENCIES, THEMES, UserSettings

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "theme",
    "currency",
    "notifications_enabled",
    "two_factor_enabled",
    "email_notifications",
    "price_alerts",
)


def get_or_create_settings(db: Session, user_id: int) -> UserSettings:
    """Return the user's settings row, creating it with defaults if missing."""
    settings = db.query(UserSettings).filter(UserSettings.user_id == user_id).first()
    if settings:
        return settings

    settings = UserSettings(
        user_id=user_id,
        theme="light",
        currency="USD",
        notifications_enabled=True,
        two_factor_enabled=False,
        email_notifications=True,
        price_alerts=True,
    )
    db.add(settings)
    try:
        db.commit()
    except IntegrityError:
        # Created concurrently
        db.rollback()
        return db.query(UserSettings).filter(UserSettings.user_id == user_id).one()
    db.refresh(settings)
    return settings


def update_settings(db: Session, user_id: int, **fields) -> UserSettings:
    """Update the given settings fields. Fields passed as None are left unchanged."""
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise InvalidInputError(f"Unknown settings field(s): {', '.join(sorted(unknown))}")

    changes = {key: value for key, value in fields.items() if value is not None}
    if not changes:
        raise InvalidInputError("No settings to update")
    if "theme" in changes and changes["theme"] not in THEMES:
        raise InvalidInputError(f"Theme must be one of: {', '.join(THEMES)}")
    if "currency" in changes:
        changes["currency"] = str(changes["currency"]).upper()
        if changes["currency"] not in CURRENCIES:
            raise InvalidInputError(f"Currency must be one of: {', '.join(CURRENCIES)}")

    settings = get_or_create_settings(db, user_id)
    for key, value in changes.items():
        setattr(settings, key, value)
    db.commit()
    db.refresh(settings)
    logger.info(f"Updated settings for user {user_id}: {', '.join(sorted(changes))}")
    return settings
