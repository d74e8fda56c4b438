"""
Portfolio holdings: add, remove, list and value against current prices.

All arithmetic is done on Decimal. A fresh price of 0 means "unknown" (the
gateway maps failed lookups to 0), so valuation falls back to the last stored
price for that holding.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coinfolio.core.errors import InvalidInputError, NotFoundError
from coinfolio.models.holding import PortfolioHolding
from coinfolio.services.market_data.models import Ticker

logger = logging.getLogger(__name__)

ZERO = Decimal(0)
CENT = Decimal("0.01")


@dataclass
class ValuedHolding:
    """A holding priced for display."""
    id: int
    coin_id: str
    coin_symbol: str
    coin_name: str
    amount: Decimal
    purchase_price: Decimal
    purchase_date: Optional[datetime]
    current_price: Decimal
    current_value: Decimal
    gain_loss_value: Decimal
    gain_loss_percentage: Decimal


@dataclass
class PortfolioSummary:
    total_value: Decimal = ZERO
    total_cost: Decimal = ZERO
    total_gain_loss_value: Decimal = ZERO
    total_gain_loss_percentage: Decimal = ZERO
    currency: str = "USD"


@dataclass
class PortfolioValuation:
    holdings: List[ValuedHolding] = field(default_factory=list)
    summary: PortfolioSummary = field(default_factory=PortfolioSummary)


def percentage_change(current: Decimal, reference: Decimal) -> Decimal:
    """Percent change from ``reference`` to ``current``, rounded to 2 places. 0 if reference is 0."""
    if not reference:
        return ZERO.quantize(CENT)
    return ((current - reference) / reference * 100).quantize(CENT, rounding=ROUND_HALF_UP)


def _effective_price(holding: PortfolioHolding, prices: Dict[str, Decimal]) -> Decimal:
    fresh = prices.get(holding.coin_id)
    if fresh:
        return Decimal(fresh)
    return Decimal(holding.current_price or 0)


def list_holdings(db: Session, user_id: int) -> List[PortfolioHolding]:
    return (
        db.query(PortfolioHolding)
        .filter(PortfolioHolding.user_id == user_id)
        .order_by(PortfolioHolding.current_value.desc(), PortfolioHolding.coin_id)
        .all()
    )


def held_coin_ids(db: Session, user_id: Optional[int] = None) -> Set[str]:
    """Distinct coin ids held by one user, or by anyone."""
    query = db.query(PortfolioHolding.coin_id).distinct()
    if user_id is not None:
        query = query.filter(PortfolioHolding.user_id == user_id)
    return {row[0] for row in query.all()}


def add_holding(
    db: Session,
    user_id: int,
    ticker: Ticker,
    amount: Decimal,
    purchase_price: Decimal,
    purchase_date: Optional[datetime] = None,
) -> PortfolioHolding:
    """
    Add coins to a user's portfolio.

    The first add for a coin creates the holding. Later adds accumulate the
    amount and replace the purchase price and date with the latest purchase.

    Args:
        db: Database session
        user_id: Owner
        ticker: Current ticker for the coin (identity and price)
        amount: Number of coins bought, > 0
        purchase_price: USD price per coin, > 0
        purchase_date: When the coins were bought

    Returns:
        The created or updated holding
    """
    if amount <= 0 or purchase_price <= 0:
        raise InvalidInputError("Amount and purchase price must be positive")

    for attempt in range(2):
        holding = db.query(PortfolioHolding).filter(
            PortfolioHolding.user_id == user_id,
            PortfolioHolding.coin_id == ticker.id,
        ).first()

        if holding:
            holding.amount = Decimal(holding.amount) + amount
            holding.purchase_price = purchase_price
            if purchase_date is not None:
                holding.purchase_date = purchase_date
        else:
            holding = PortfolioHolding(
                user_id=user_id,
                coin_id=ticker.id,
                amount=amount,
                purchase_price=purchase_price,
                purchase_date=purchase_date,
            )
            db.add(holding)

        holding.coin_symbol = ticker.symbol.upper()
        holding.coin_name = ticker.name
        if ticker.price:
            holding.current_price = ticker.price
        holding.current_value = Decimal(holding.amount) * Decimal(holding.current_price or 0)

        try:
            db.commit()
        except IntegrityError:
            # Another request created the same (user, coin) row first; merge into it
            db.rollback()
            if attempt:
                raise
            continue

        db.refresh(holding)
        logger.info(f"User {user_id} added {amount} {ticker.id} (holding {holding.id})")
        return holding


def remove_holding(db: Session, user_id: int, coin_id: str) -> PortfolioHolding:
    holding = db.query(PortfolioHolding).filter(
        PortfolioHolding.user_id == user_id,
        PortfolioHolding.coin_id == coin_id,
    ).first()
    if not holding:
        raise NotFoundError(f"Coin {coin_id} is not in your portfolio")

    db.delete(holding)
    db.commit()
    logger.info(f"User {user_id} removed {coin_id} from portfolio")
    return holding


def apply_prices(holdings: Iterable[PortfolioHolding], prices: Dict[str, Decimal]) -> PortfolioValuation:
    """Value holdings at current prices and build the portfolio summary. Does not write."""
    valuation = PortfolioValuation()
    summary = valuation.summary

    for holding in holdings:
        amount = Decimal(holding.amount)
        purchase_price = Decimal(holding.purchase_price)
        price = _effective_price(holding, prices)
        current_value = amount * price
        cost = amount * purchase_price

        valuation.holdings.append(ValuedHolding(
            id=holding.id,
            coin_id=holding.coin_id,
            coin_symbol=holding.coin_symbol,
            coin_name=holding.coin_name,
            amount=amount,
            purchase_price=purchase_price,
            purchase_date=holding.purchase_date,
            current_price=price,
            current_value=current_value,
            gain_loss_value=current_value - cost,
            gain_loss_percentage=percentage_change(price, purchase_price),
        ))
        summary.total_value += current_value
        summary.total_cost += cost

    summary.total_gain_loss_value = summary.total_value - summary.total_cost
    summary.total_gain_loss_percentage = percentage_change(summary.total_value, summary.total_cost)
    valuation.holdings.sort(key=lambda h: h.current_value, reverse=True)
    return valuation


def _write_back(holdings: Iterable[PortfolioHolding], prices: Dict[str, Decimal]) -> int:
    updated = 0
    for holding in holdings:
        fresh = prices.get(holding.coin_id)
        if not fresh:
            continue
        holding.current_price = Decimal(fresh)
        holding.current_value = Decimal(holding.amount) * Decimal(fresh)
        updated += 1
    return updated


def store_prices(db: Session, user_id: int, prices: Dict[str, Decimal]) -> int:
    """Persist fresh prices on one user's holdings. Zero prices are skipped."""
    updated = _write_back(list_holdings(db, user_id), prices)
    if updated:
        db.commit()
    return updated


def refresh_all_holdings(db: Session, prices: Dict[str, Decimal]) -> int:
    """Persist fresh prices on every holding that has one."""
    holdings = db.query(PortfolioHolding).filter(
        PortfolioHolding.coin_id.in_(list(prices.keys()))
    ).all() if prices else []
    updated = _write_back(holdings, prices)
    if updated:
        db.commit()
    logger.info(f"Refreshed prices on {updated} holding(s)")
    return updated
