"""
Portfolio endpoints.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from coinfolio.core.auth import get_current_user_dependency
from coinfolio.core.database import get_db
from coinfolio.core.errors import CoinNotFoundError, GatewayError
from coinfolio.core.rate_limit import get_client_ip
from coinfolio.models.user import User
from coinfolio.services.activity import get_user_activity, log_activity
from coinfolio.services.coins import upsert_coin
from coinfolio.services.market_data import MarketDataGateway, get_market_data_gateway
from coinfolio.services.portfolio import (
    PortfolioValuation,
    add_holding,
    apply_prices,
    list_holdings,
    remove_holding,
    store_prices,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class AddCoinRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    coin_id: str = Field(min_length=1, max_length=100)
    amount: Decimal = Field(gt=0, max_digits=20, decimal_places=8)
    purchase_price: Decimal = Field(gt=0, max_digits=20, decimal_places=8)
    purchase_date: Optional[datetime] = None


class HoldingResponse(BaseModel):
    id: int
    coin_id: str
    coin_symbol: str
    coin_name: str
    amount: float
    purchase_price: float
    purchase_date: Optional[datetime] = None
    current_price: float
    current_value: float
    gain_loss_value: float
    gain_loss_percentage: float


class PortfolioSummaryResponse(BaseModel):
    total_value: float
    total_cost: float
    total_gain_loss_value: float
    total_gain_loss_percentage: float
    currency: str


def _render_valuation(valuation: PortfolioValuation) -> Dict[str, Any]:
    summary = valuation.summary
    return {
        "holdings": [
            HoldingResponse(
                id=h.id,
                coin_id=h.coin_id,
                coin_symbol=h.coin_symbol,
                coin_name=h.coin_name,
                amount=float(h.amount),
                purchase_price=float(h.purchase_price),
                purchase_date=h.purchase_date,
                current_price=float(h.current_price),
                current_value=float(h.current_value),
                gain_loss_value=float(h.gain_loss_value),
                gain_loss_percentage=float(h.gain_loss_percentage),
            ).model_dump(mode="json")
            for h in valuation.holdings
        ],
        "summary": PortfolioSummaryResponse(
            total_value=float(summary.total_value),
            total_cost=float(summary.total_cost),
            total_gain_loss_value=float(summary.total_gain_loss_value),
            total_gain_loss_percentage=float(summary.total_gain_loss_percentage),
            currency=summary.currency,
        ).model_dump(),
    }


@router.get("", response_model=dict)
async def get_portfolio(
    current_user: User = Depends(get_current_user_dependency),
    db: Session = Depends(get_db),
    gateway: MarketDataGateway = Depends(get_market_data_gateway),
):
    """Holdings valued at current prices, with a portfolio summary.

    Fresh prices are written back to the stored holdings.
    """
    holdings = await run_in_threadpool(list_holdings, db, current_user.id)
    if not holdings:
        return {"success": True, "data": _render_valuation(PortfolioValuation())}

    prices = await gateway.get_current_prices({h.coin_id for h in holdings})
    valuation = apply_prices(holdings, prices)
    await run_in_threadpool(store_prices, db, current_user.id, prices)

    return {"success": True, "data": _render_valuation(valuation)}


def _record_purchase(db: Session, user_id: int, ticker, body: AddCoinRequest, request: Request):
    holding = add_holding(
        db,
        user_id,
        ticker,
        amount=body.amount,
        purchase_price=body.purchase_price,
        purchase_date=body.purchase_date,
    )
    upsert_coin(db, ticker.id, ticker.symbol, ticker.name, rank=ticker.rank, last_price=ticker.price)
    log_activity(
        db,
        user_id,
        "coin_added",
        details={
            "coin_id": ticker.id,
            "amount": str(body.amount),
            "purchase_price": str(body.purchase_price),
        },
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return apply_prices([holding], {})


@router.post("", response_model=dict)
async def add_coin(
    body: AddCoinRequest,
    request: Request,
    current_user: User = Depends(get_current_user_dependency),
    db: Session = Depends(get_db),
    gateway: MarketDataGateway = Depends(get_market_data_gateway),
):
    """Add coins to the portfolio. Repeated adds accumulate the amount."""
    try:
        ticker = await gateway.get_ticker(body.coin_id)
    except GatewayError:
        raise CoinNotFoundError(body.coin_id)

    valuation = await run_in_threadpool(_record_purchase, db, current_user.id, ticker, body, request)
    return {
        "success": True,
        "message": f"{ticker.name} added to portfolio",
        "data": _render_valuation(valuation)["holdings"][0],
    }


@router.delete("/{coin_id}", response_model=dict)
def delete_coin(
    coin_id: str,
    current_user: User = Depends(get_current_user_dependency),
    db: Session = Depends(get_db),
):
    """Remove a coin from the portfolio."""
    remove_holding(db, current_user.id, coin_id)
    log_activity(db, current_user.id, "coin_removed", details={"coin_id": coin_id})
    return {"success": True, "message": "Coin removed from portfolio"}


@router.get("/activity", response_model=dict)
def get_activity(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user_dependency),
    db: Session = Depends(get_db),
):
    """Recent account activity, newest first."""
    entries = get_user_activity(db, current_user.id, limit=limit)
    return {
        "success": True,
        "data": [
            {
                "id": entry.id,
                "action_type": entry.action_type,
                "details": entry.details,
                "ip_address": entry.ip_address,
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in entries
        ],
    }
