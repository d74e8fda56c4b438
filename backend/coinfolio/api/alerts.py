"""
Price alert endpoints.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from coinfolio.core.auth import get_current_user_dependency
from coinfolio.core.database import get_db
from coinfolio.core.errors import CoinNotFoundError, GatewayError
from coinfolio.models.alert import AlertType, PriceAlert
from coinfolio.models.user import User
from coinfolio.services.activity import log_activity
from coinfolio.services.alerts import create_alert, delete_alert, list_alerts
from coinfolio.services.market_data import MarketDataGateway, get_market_data_gateway

router = APIRouter()


class CreateAlertRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    coin_id: str = Field(min_length=1, max_length=100)
    alert_type: AlertType
    target_price: Decimal = Field(gt=0, max_digits=20, decimal_places=8)
    name: Optional[str] = Field(default=None, max_length=200)
    notification_enabled: bool = True
    email_alert_enabled: bool = False


class AlertResponse(BaseModel):
    id: int
    coin_id: str
    name: Optional[str] = None
    alert_type: str
    target_price: float
    notification_enabled: bool
    email_alert_enabled: bool
    is_active: bool
    triggered_at: Optional[datetime] = None
    triggered_price: Optional[float] = None
    created_at: Optional[datetime] = None


def _render_alert(alert: PriceAlert) -> dict:
    return AlertResponse(
        id=alert.id,
        coin_id=alert.coin_id,
        name=alert.name,
        alert_type=alert.alert_type,
        target_price=float(alert.target_price),
        notification_enabled=alert.notification_enabled,
        email_alert_enabled=alert.email_alert_enabled,
        is_active=alert.is_active,
        triggered_at=alert.triggered_at,
        triggered_price=float(alert.triggered_price) if alert.triggered_price is not None else None,
        created_at=alert.created_at,
    ).model_dump(mode="json")


@router.get("", response_model=dict)
def get_alerts(
    current_user: User = Depends(get_current_user_dependency),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": [_render_alert(alert) for alert in list_alerts(db, current_user.id)]}


def _create_and_log(db: Session, user_id: int, coin_id: str, body: CreateAlertRequest) -> dict:
    alert = create_alert(
        db,
        user_id,
        coin_id,
        body.alert_type.value,
        body.target_price,
        name=body.name,
        notification_enabled=body.notification_enabled,
        email_alert_enabled=body.email_alert_enabled,
    )
    log_activity(
        db,
        user_id,
        "alert_created",
        details={"alert_id": alert.id, "coin_id": coin_id, "alert_type": alert.alert_type},
    )
    return _render_alert(alert)


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def add_alert(
    body: CreateAlertRequest,
    current_user: User = Depends(get_current_user_dependency),
    db: Session = Depends(get_db),
    gateway: MarketDataGateway = Depends(get_market_data_gateway),
):
    """Create a price alert on a coin the provider knows about."""
    try:
        ticker = await gateway.get_ticker(body.coin_id)
    except GatewayError:
        raise CoinNotFoundError(body.coin_id)

    data = await run_in_threadpool(_create_and_log, db, current_user.id, ticker.id, body)
    return {"success": True, "message": "Price alert created", "data": data}


@router.delete("/{alert_id}", response_model=dict)
def remove_alert(
    alert_id: int,
    current_user: User = Depends(get_current_user_dependency),
    db: Session = Depends(get_db),
):
    delete_alert(db, current_user.id, alert_id)
    return {"success": True, "message": "Price alert deleted"}
