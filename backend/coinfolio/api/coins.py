"""
Coin discovery endpoints: search, trending, details and chart history.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from coinfolio.core.auth import get_current_user_dependency
from coinfolio.core.database import get_db
from coinfolio.core.errors import InvalidInputError
from coinfolio.models.user import User
from coinfolio.services.coins import search_local_coins, upsert_coin
from coinfolio.services.market_data import (
    TIMEFRAME_DAYS,
    MarketDataGateway,
    get_market_data_gateway,
    is_valid_timeframe,
)

logger = logging.getLogger(__name__)

router = APIRouter()

SEARCH_LIMIT = 20


def _check_timeframe(timeframe: str) -> None:
    if not is_valid_timeframe(timeframe):
        raise InvalidInputError(f"Invalid timeframe. Use one of: {', '.join(TIMEFRAME_DAYS)}")


@router.get("/search", response_model=dict)
async def search_coins(
    q: str = Query("", max_length=100),
    current_user: User = Depends(get_current_user_dependency),
    db: Session = Depends(get_db),
    gateway: MarketDataGateway = Depends(get_market_data_gateway),
):
    """Search known coins first, then the provider. At most 20 results, no duplicates."""
    query = q.strip()
    if len(query) < 2:
        raise InvalidInputError("Search query must be at least 2 characters long")

    local = await run_in_threadpool(search_local_coins, db, query, SEARCH_LIMIT)
    results = [
        {"id": coin.id, "symbol": coin.symbol, "name": coin.name, "rank": coin.rank, "source": "local"}
        for coin in local
    ]

    seen = {coin["id"] for coin in results}
    for coin in await gateway.search_coins(query, limit=SEARCH_LIMIT):
        if len(results) >= SEARCH_LIMIT:
            break
        if coin.id in seen:
            continue
        seen.add(coin.id)
        results.append({**coin.model_dump(), "source": "provider"})

    return {"success": True, "data": results[:SEARCH_LIMIT]}


@router.get("/trending", response_model=dict)
async def get_trending(
    current_user: User = Depends(get_current_user_dependency),
    gateway: MarketDataGateway = Depends(get_market_data_gateway),
):
    """Trending categories plus a global market overview (null when unavailable)."""
    trending, overview = await asyncio.gather(
        gateway.get_trending_coins(),
        gateway.get_global_market_data(),
        return_exceptions=True,
    )
    if isinstance(trending, BaseException):
        raise trending
    if isinstance(overview, BaseException):
        logger.warning(f"Global market overview unavailable: {overview}")
        market_overview = None
    else:
        market_overview = overview.model_dump()

    return {
        "success": True,
        "data": {
            **trending.model_dump(),
            "market_overview": market_overview,
        },
    }


@router.get("/global", response_model=dict)
async def get_global(
    current_user: User = Depends(get_current_user_dependency),
    gateway: MarketDataGateway = Depends(get_market_data_gateway),
):
    data = await gateway.get_global_market_data()
    return {"success": True, "data": data.model_dump()}


@router.get("/by-symbol/{symbol}", response_model=dict)
async def get_by_symbol(
    symbol: str,
    current_user: User = Depends(get_current_user_dependency),
    gateway: MarketDataGateway = Depends(get_market_data_gateway),
):
    coin = await gateway.get_coin_by_symbol(symbol)
    return {"success": True, "data": coin.model_dump()}


@router.get("/{coin_id}", response_model=dict)
async def get_coin(
    coin_id: str,
    timeframe: str = Query("7d"),
    current_user: User = Depends(get_current_user_dependency),
    db: Session = Depends(get_db),
    gateway: MarketDataGateway = Depends(get_market_data_gateway),
):
    """Coin profile, market metrics and chart data."""
    _check_timeframe(timeframe)
    detail = await gateway.get_coin_details(coin_id, timeframe)

    await run_in_threadpool(
        upsert_coin,
        db,
        detail.id,
        detail.symbol,
        detail.name,
        rank=detail.rank,
        logo_url=detail.logo,
    )
    return {"success": True, "data": detail.model_dump(mode="json")}


@router.get("/{coin_id}/history", response_model=dict)
async def get_coin_history(
    coin_id: str,
    timeframe: str = Query("7d"),
    current_user: User = Depends(get_current_user_dependency),
    gateway: MarketDataGateway = Depends(get_market_data_gateway),
):
    """OHLCV chart points. Empty when the provider has no data."""
    _check_timeframe(timeframe)
    points = await gateway.get_coin_ohlcv(coin_id, timeframe)
    return {
        "success": True,
        "data": {
            "coin_id": coin_id,
            "timeframe": timeframe,
            "points": [point.model_dump(mode="json") for point in points],
        },
    }
