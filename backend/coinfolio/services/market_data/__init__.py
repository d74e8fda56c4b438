"""
Market data gateway: cached, rate-limited access to the price provider.
"""
from coinfolio.services.market_data.cache import TTLCache
from coinfolio.services.market_data.rate_limiter import TokenBucketRateLimiter
from coinfolio.services.market_data.gateway import (
    MarketDataGateway,
    get_market_data_gateway,
    close_market_data_gateway,
    is_valid_timeframe,
    TIMEFRAME_DAYS,
)
from coinfolio.services.market_data.models import (
    CoinSummary,
    Ticker,
    TrendingCoin,
    TrendingCoins,
    CoinMetrics,
    CoinDetail,
    OHLCVPoint,
    GlobalMarketData,
)

__all__ = [
    "TTLCache",
    "TokenBucketRateLimiter",
    "MarketDataGateway",
    "get_market_data_gateway",
    "close_market_data_gateway",
    "is_valid_timeframe",
    "TIMEFRAME_DAYS",
    "CoinSummary",
    "Ticker",
    "TrendingCoin",
    "TrendingCoins",
    "CoinMetrics",
    "CoinDetail",
    "OHLCVPoint",
    "GlobalMarketData",
]
