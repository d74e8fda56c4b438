"""
Price alerts: CRUD and evaluation against fresh prices.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Set

from sqlalchemy.orm import Session

from coinfolio.core.errors import InvalidInputError, NotFoundError
from coinfolio.models.alert import AlertType, PriceAlert
from coinfolio.services.activity import log_activity

logger = logging.getLogger(__name__)


def create_alert(
    db: Session,
    user_id: int,
    coin_id: str,
    alert_type: str,
    target_price: Decimal,
    name: Optional[str] = None,
    notification_enabled: bool = True,
    email_alert_enabled: bool = False,
) -> PriceAlert:
    try:
        alert_type = AlertType(alert_type).value
    except ValueError:
        raise InvalidInputError(f"Invalid alert type: {alert_type}")
    if target_price <= 0:
        raise InvalidInputError("Target price must be positive")

    alert = PriceAlert(
        user_id=user_id,
        coin_id=coin_id,
        name=name,
        alert_type=alert_type,
        target_price=target_price,
        notification_enabled=notification_enabled,
        email_alert_enabled=email_alert_enabled,
        is_active=True,
    )
    db.add(alert)
    db.commit()
    db.refresh(alert)
    logger.info(f"User {user_id} created {alert_type} alert {alert.id} on {coin_id} at {target_price}")
    return alert


def list_alerts(db: Session, user_id: int, active_only: bool = False) -> List[PriceAlert]:
    query = db.query(PriceAlert).filter(PriceAlert.user_id == user_id)
    if active_only:
        query = query.filter(PriceAlert.is_active.is_(True))
    return query.order_by(PriceAlert.created_at.desc(), PriceAlert.id.desc()).all()


def delete_alert(db: Session, user_id: int, alert_id: int) -> None:
    alert = db.query(PriceAlert).filter(
        PriceAlert.id == alert_id,
        PriceAlert.user_id == user_id,
    ).first()
    if not alert:
        raise NotFoundError("Alert not found")
    db.delete(alert)
    db.commit()


def alerted_coin_ids(db: Session) -> Set[str]:
    """Coins with at least one active alert."""
    rows = db.query(PriceAlert.coin_id).filter(PriceAlert.is_active.is_(True)).distinct().all()
    return {row[0] for row in rows}


def _condition_met(alert: PriceAlert, price: Decimal) -> bool:
    target = Decimal(alert.target_price)
    if alert.alert_type == AlertType.PRICE_ABOVE.value:
        return price >= target
    if alert.alert_type == AlertType.PRICE_BELOW.value:
        return price <= target
    return False


def evaluate_alerts(db: Session, prices: Dict[str, Decimal]) -> List[PriceAlert]:
    """
    Trigger active alerts whose condition holds at the given prices.

    A triggered alert records the time and price, is deactivated and logged as
    ``alert_triggered`` activity. Coins priced at 0 (unknown) are skipped.

    Returns:
        Alerts triggered by this call
    """
    known = {coin_id: Decimal(price) for coin_id, price in prices.items() if price}
    if not known:
        return []

    candidates = db.query(PriceAlert).filter(
        PriceAlert.is_active.is_(True),
        PriceAlert.coin_id.in_(list(known.keys())),
    ).all()

    triggered = []
    now = datetime.now(timezone.utc)
    for alert in candidates:
        price = known[alert.coin_id]
        if not _condition_met(alert, price):
            continue
        alert.is_active = False
        alert.triggered_at = now
        alert.triggered_price = price
        log_activity(
            db,
            alert.user_id,
            "alert_triggered",
            details={
                "alert_id": alert.id,
                "coin_id": alert.coin_id,
                "alert_type": alert.alert_type,
                "target_price": str(alert.target_price),
                "triggered_price": str(price),
            },
            commit=False,
        )
        triggered.append(alert)

    if triggered:
        db.commit()
        logger.info(f"Triggered {len(triggered)} price alert(s)")
    return triggered
