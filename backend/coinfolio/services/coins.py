"""
Local coin catalogue, filled in as users look coins up.
"""
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from coinfolio.models.coin import Coin


def upsert_coin(
    db: Session,
    coin_id: str,
    symbol: str,
    name: str,
    rank: Optional[int] = None,
    logo_url: Optional[str] = None,
    last_price: Optional[Decimal] = None,
) -> Coin:
    coin = db.get(Coin, coin_id)
    if coin is None:
        coin = Coin(id=coin_id)
        db.add(coin)
    coin.symbol = symbol.upper()
    coin.name = name
    if rank is not None:
        coin.rank = rank
    if logo_url:
        coin.logo_url = logo_url
    if last_price:
        coin.last_price = last_price
    db.commit()
    return coin


def search_local_coins(db: Session, query: str, limit: int = 20) -> List[Coin]:
    """Known coins whose name, symbol or id contains ``query`` (case-insensitive)."""
    pattern = f"%{query.strip().lower()}%"
    return (
        db.query(Coin)
        .filter(or_(
            Coin.name.ilike(pattern),
            Coin.symbol.ilike(pattern),
            Coin.id.ilike(pattern),
        ))
        .order_by(Coin.rank.is_(None), Coin.rank, Coin.name)
        .limit(limit)
        .all()
    )
