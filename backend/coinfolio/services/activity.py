"""
User activity log.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from coinfolio.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)

MAX_ACTIVITY_LIMIT = 100


def log_activity(
    db: Session,
    user_id: int,
    action_type: str,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    commit: bool = True,
) -> ActivityLog:
    """Record an action performed by (or on behalf of) a user."""
    entry = ActivityLog(
        user_id=user_id,
        action_type=action_type,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent[:500] if user_agent else None,
    )
    db.add(entry)
    if commit:
        db.commit()
    return entry


def get_user_activity(db: Session, user_id: int, limit: int = 20) -> List[ActivityLog]:
    """Most recent activity first. ``limit`` is clamped to 1..100."""
    limit = max(1, min(limit, MAX_ACTIVITY_LIMIT))
    return (
        db.query(ActivityLog)
        .filter(ActivityLog.user_id == user_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
        .all()
    )
