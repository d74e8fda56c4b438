"""
Normalized market data structures returned by the gateway.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CoinSummary(BaseModel):
    """Coin identity as listed by search and the coin catalogue."""
    id: str
    symbol: str
    name: str
    rank: Optional[int] = None
    is_new: Optional[bool] = None
    is_active: Optional[bool] = None
    type: Optional[str] = None


class Ticker(BaseModel):
    """Current USD quote for one coin."""
    id: str
    symbol: str
    name: str
    rank: Optional[int] = None
    price: Decimal = Decimal(0)
    quotes: Dict[str, Any] = Field(default_factory=dict)
    total_supply: Optional[float] = None
    max_supply: Optional[float] = None
    circulating_supply: Optional[float] = None
    last_updated: Optional[datetime] = None


class TrendingCoin(BaseModel):
    id: str
    symbol: str
    name: str
    rank: Optional[int] = None
    price: float = 0
    change_24h: float = 0
    market_cap: float = 0


class TrendingCoins(BaseModel):
    """Trending categories. A category the provider failed to return is empty."""
    popular: List[TrendingCoin] = Field(default_factory=list)
    top_gainers: List[TrendingCoin] = Field(default_factory=list)
    top_losers: List[TrendingCoin] = Field(default_factory=list)
    recently_added: List[TrendingCoin] = Field(default_factory=list)


class OHLCVPoint(BaseModel):
    """Normalized OHLCV candle."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0


class CoinMetrics(BaseModel):
    """Market metrics for a coin. Price fields are None when no ticker was available."""
    price: Optional[float] = None
    volume_24h: Optional[float] = None
    market_cap: Optional[float] = None
    percent_change_1h: Optional[float] = None
    percent_change_24h: Optional[float] = None
    percent_change_7d: Optional[float] = None
    percent_change_30d: Optional[float] = None
    ath_price: Optional[float] = None
    ath_date: Optional[datetime] = None
    percent_from_ath: Optional[float] = None
    total_supply: Optional[float] = None
    max_supply: Optional[float] = None
    circulating_supply: Optional[float] = None


class CoinDetail(BaseModel):
    """Coin profile assembled from coin info, ticker and chart history."""
    id: str
    symbol: str
    name: str
    description: str = "No description available"
    rank: Optional[int] = None
    is_active: Optional[bool] = None
    is_new: Optional[bool] = None
    type: Optional[str] = None
    logo: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    team: List[Dict[str, Any]] = Field(default_factory=list)
    links: Dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    development_status: Optional[str] = None
    hardware_wallet: Optional[bool] = None
    org_structure: Optional[str] = None
    hash_algorithm: Optional[str] = None
    metrics: CoinMetrics = Field(default_factory=CoinMetrics)
    timeframe: str = "7d"
    chart_data: List[OHLCVPoint] = Field(default_factory=list)


class GlobalMarketData(BaseModel):
    total_market_cap: Optional[float] = None
    total_volume_24h: Optional[float] = None
    bitcoin_dominance: Optional[float] = None
    cryptocurrencies_count: Optional[int] = None
    market_cap_change_24h: Optional[float] = None
    volume_change_24h: Optional[float] = None
