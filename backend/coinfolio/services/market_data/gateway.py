"""
Market data gateway.

Every outbound call to the market data provider goes through
``MarketDataGateway.request``, which serves cached bodies while they are fresh
and otherwise spends one rate-limiter token on an HTTP GET. The higher level
methods shape provider payloads into the models in ``models.py`` and decide
which failures degrade to partial results and which propagate.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

import httpx

from coinfolio.core.config import (
    APP_VERSION,
    MARKET_DATA_BASE_URL,
    MARKET_DATA_CACHE_MAX_ENTRIES,
    MARKET_DATA_CACHE_TTL_SECONDS,
    MARKET_DATA_RATE_BURST,
    MARKET_DATA_RATE_MAX_WAIT_SECONDS,
    MARKET_DATA_RATE_PER_MINUTE,
    MARKET_DATA_TIMEOUT_SECONDS,
)
from coinfolio.core.errors import (
    CoinNotFoundError,
    GatewayError,
    InvalidInputError,
    RateLimitedError,
)
from coinfolio.services.market_data.cache import TTLCache
from coinfolio.services.market_data.models import (
    CoinDetail,
    CoinMetrics,
    CoinSummary,
    GlobalMarketData,
    OHLCVPoint,
    Ticker,
    TrendingCoin,
    TrendingCoins,
)
from coinfolio.services.market_data.rate_limiter import TokenBucketRateLimiter

logger = logging.getLogger(__name__)

ENDPOINTS = {
    'global': '/global',
    'coins': '/coins',
    'coin': '/coins/{coin_id}',
    'tickers': '/tickers',
    'ticker': '/tickers/{coin_id}',
    'search': '/search',
    'popular': '/coins/most-viewed',
    'top_gainers': '/coins/top-gainers',
    'top_losers': '/coins/top-losers',
    'recently_added': '/coins/new',
    'ohlcv_today': '/coins/{coin_id}/ohlcv/today',
    'ohlcv_historical': '/coins/{coin_id}/ohlcv/historical',
}

# Caller-facing timeframe -> days of history. None means "as far back as allowed".
TIMEFRAME_DAYS: Dict[str, Optional[float]] = {
    '1h': 1 / 24,
    '4h': 4 / 24,
    '12h': 0.5,
    '1d': 1,
    '3d': 3,
    '7d': 7,
    '14d': 14,
    '30d': 30,
    '90d': 90,
    '180d': 180,
    '365d': 365,
    'max': None,
}
DEFAULT_TIMEFRAME_DAYS = 7
MAX_OHLCV_POINTS = 365
TRENDING_LIMIT = 10
SEARCH_MIN_LENGTH = 2


def is_valid_timeframe(timeframe: Optional[str]) -> bool:
    return timeframe in TIMEFRAME_DAYS


def _usd_quote(payload: Dict[str, Any]) -> Dict[str, Any]:
    quotes = payload.get('quotes') or {}
    return quotes.get('USD') or {}


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(0)


def _to_float(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


class MarketDataGateway:
    """Cached, rate-limited client for the market data provider."""

    def __init__(
        self,
        base_url: str = MARKET_DATA_BASE_URL,
        timeout: float = MARKET_DATA_TIMEOUT_SECONDS,
        cache: Optional[TTLCache] = None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.cache = cache or TTLCache(
            max_entries=MARKET_DATA_CACHE_MAX_ENTRIES,
            ttl_seconds=MARKET_DATA_CACHE_TTL_SECONDS,
        )
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter(
            rate_per_minute=MARKET_DATA_RATE_PER_MINUTE,
            burst=MARKET_DATA_RATE_BURST,
            max_wait_seconds=MARKET_DATA_RATE_MAX_WAIT_SECONDS,
        )
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            'Accept': 'application/json',
            'User-Agent': f'Coinfolio/{APP_VERSION}',
        }

    def build_url(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Canonical request URL. Parameters are sorted so equal requests share a cache key."""
        url = f"{self.base_url}{endpoint}"
        if params:
            url = f"{url}?{urlencode(sorted((key, str(value)) for key, value in params.items()))}"
        return url

    async def request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``endpoint`` from the provider and return the parsed JSON body.

        Raises:
            GatewayError: transport failure, timeout, non-2xx status or invalid JSON
            RateLimitedError: the outbound request budget is exhausted
        """
        url = self.build_url(endpoint, params)

        cached = self.cache.get(url)
        if cached is not None:
            logger.debug(f"Using cached market data for {endpoint}")
            return cached

        await self.rate_limiter.acquire()
        logger.info(f"Fetching market data: {endpoint}")

        try:
            response = await self._client.get(url, headers=self._headers, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise GatewayError(f"Market data request timed out for {endpoint}") from e
        except httpx.HTTPError as e:
            raise GatewayError(f"Market data request failed for {endpoint}: {e}") from e

        if not response.is_success:
            logger.warning(f"Market data request for {endpoint} returned {response.status_code}")
            raise GatewayError(
                f"Market data request failed: {response.status_code} {response.reason_phrase}",
                upstream_status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError(f"Market data response for {endpoint} is not valid JSON") from e

        self.cache.set(url, data)
        return data

    async def get_ticker(self, coin_id: str) -> Ticker:
        data = await self.request(ENDPOINTS['ticker'].format(coin_id=coin_id), {'quotes': 'USD'})
        try:
            return Ticker(
                id=data['id'],
                symbol=data['symbol'],
                name=data['name'],
                rank=data.get('rank'),
                price=_to_decimal(_usd_quote(data).get('price')),
                quotes=data.get('quotes') or {},
                total_supply=data.get('total_supply'),
                max_supply=data.get('max_supply'),
                circulating_supply=data.get('circulating_supply'),
                last_updated=data.get('last_updated'),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayError(f"Unexpected ticker payload for {coin_id}") from e

    async def get_current_prices(self, coin_ids: Iterable[str] = ()) -> Dict[str, Decimal]:
        """USD prices by coin id.

        With no ids, returns every coin from the provider's ticker listing.
        Otherwise fetches each id separately; an id whose lookup fails maps to 0.
        """
        ids = sorted(set(coin_ids))
        if not ids:
            tickers = await self.request(ENDPOINTS['tickers'], {'quotes': 'USD'})
            return {
                ticker['id']: _to_decimal(_usd_quote(ticker).get('price'))
                for ticker in tickers
                if isinstance(ticker, dict) and ticker.get('id')
            }

        results = await asyncio.gather(
            *(self.get_ticker(coin_id) for coin_id in ids),
            return_exceptions=True,
        )
        prices: Dict[str, Decimal] = {}
        for coin_id, result in zip(ids, results):
            if isinstance(result, Exception):
                logger.warning(f"Could not get price for {coin_id}: {result}")
                prices[coin_id] = Decimal(0)
            else:
                prices[coin_id] = result.price
        return prices

    async def get_coin_current_price(self, coin_id: str) -> Decimal:
        try:
            ticker = await self.get_ticker(coin_id)
        except GatewayError as e:
            logger.warning(f"Price lookup failed for {coin_id}: {e.message}")
            raise CoinNotFoundError(coin_id) from e
        return ticker.price

    async def search_coins(self, query: str, limit: int = 20) -> List[CoinSummary]:
        query = (query or '').strip()
        if len(query) < SEARCH_MIN_LENGTH:
            raise InvalidInputError(f"Search query must be at least {SEARCH_MIN_LENGTH} characters long")

        data = await self.request(ENDPOINTS['search'], {
            'q': query,
            'limit': limit,
            'c': 'currencies',
        })
        try:
            return [CoinSummary(**coin) for coin in data.get('currencies') or []][:limit]
        except (AttributeError, TypeError, ValueError) as e:
            raise GatewayError("Unexpected search payload") from e

    async def _trending_category(self, category: str) -> List[TrendingCoin]:
        data = await self.request(ENDPOINTS[category], {'limit': TRENDING_LIMIT})
        coins = []
        for coin in data:
            quote = _usd_quote(coin)
            coins.append(TrendingCoin(
                id=coin['id'],
                symbol=coin['symbol'],
                name=coin['name'],
                rank=coin.get('rank'),
                price=_to_float(quote.get('price')),
                change_24h=_to_float(quote.get('percent_change_24h')),
                market_cap=_to_float(quote.get('market_cap')),
            ))
        return coins

    async def get_trending_coins(self) -> TrendingCoins:
        """All four trending categories, fetched concurrently.

        A category that fails comes back empty; the others are unaffected.
        """
        categories = ('popular', 'top_gainers', 'top_losers', 'recently_added')
        results = await asyncio.gather(
            *(self._trending_category(category) for category in categories),
            return_exceptions=True,
        )

        trending = {}
        for category, result in zip(categories, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to fetch trending category {category}: {result}")
                trending[category] = []
            else:
                trending[category] = result
        return TrendingCoins(**trending)

    async def get_coin_details(self, coin_id: str, timeframe: str = '7d') -> CoinDetail:
        coin_info, ticker, chart_data = await asyncio.gather(
            self.request(ENDPOINTS['coin'].format(coin_id=coin_id)),
            self.request(ENDPOINTS['ticker'].format(coin_id=coin_id), {'quotes': 'USD'}),
            self.get_coin_ohlcv(coin_id, timeframe),
            return_exceptions=True,
        )

        if isinstance(coin_info, RateLimitedError):
            raise coin_info
        if isinstance(coin_info, Exception) or not isinstance(coin_info, dict):
            logger.warning(f"Coin info unavailable for {coin_id}: {coin_info}")
            raise CoinNotFoundError(coin_id)

        if isinstance(ticker, Exception) or not isinstance(ticker, dict):
            logger.warning(f"Ticker unavailable for {coin_id}: {ticker}")
            ticker = None
        if isinstance(chart_data, Exception):
            chart_data = []

        supply_source = ticker or coin_info
        metrics = {
            'total_supply': supply_source.get('total_supply'),
            'max_supply': supply_source.get('max_supply'),
            'circulating_supply': supply_source.get('circulating_supply'),
        }
        if ticker:
            quote = _usd_quote(ticker)
            metrics.update({
                'price': _to_float(quote.get('price')),
                'volume_24h': _to_float(quote.get('volume_24h')),
                'market_cap': _to_float(quote.get('market_cap')),
                'percent_change_1h': _to_float(quote.get('percent_change_1h')),
                'percent_change_24h': _to_float(quote.get('percent_change_24h')),
                'percent_change_7d': _to_float(quote.get('percent_change_7d')),
                'percent_change_30d': _to_float(quote.get('percent_change_30d')),
                'ath_price': _to_float(quote.get('ath_price')),
                'ath_date': quote.get('ath_date'),
                'percent_from_ath': _to_float(quote.get('percent_from_price_ath')),
            })

        try:
            return CoinDetail(
                id=coin_info['id'],
                symbol=coin_info['symbol'],
                name=coin_info['name'],
                description=coin_info.get('description') or 'No description available',
                rank=coin_info.get('rank'),
                is_active=coin_info.get('is_active'),
                is_new=coin_info.get('is_new'),
                type=coin_info.get('type'),
                logo=coin_info.get('logo'),
                tags=[tag['name'] if isinstance(tag, dict) else str(tag) for tag in coin_info.get('tags') or []],
                team=coin_info.get('team') or [],
                links=coin_info.get('links') or {},
                started_at=coin_info.get('started_at'),
                development_status=coin_info.get('development_status'),
                hardware_wallet=coin_info.get('hardware_wallet'),
                org_structure=coin_info.get('org_structure'),
                hash_algorithm=coin_info.get('hash_algorithm'),
                metrics=CoinMetrics(**metrics),
                timeframe=timeframe if is_valid_timeframe(timeframe) else '7d',
                chart_data=chart_data,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayError(f"Unexpected coin payload for {coin_id}") from e

    async def get_coin_ohlcv(self, coin_id: str, timeframe: str = '7d') -> List[OHLCVPoint]:
        """Chart history for a coin, at most 365 points. Returns [] on any failure."""
        days = TIMEFRAME_DAYS.get(timeframe, DEFAULT_TIMEFRAME_DAYS)
        now = datetime.now(timezone.utc)

        try:
            if days is not None and days <= 1:
                data = await self.request(ENDPOINTS['ohlcv_today'].format(coin_id=coin_id))
            else:
                span = MAX_OHLCV_POINTS if days is None else int(days)
                data = await self.request(ENDPOINTS['ohlcv_historical'].format(coin_id=coin_id), {
                    'start': (now - timedelta(days=span)).date().isoformat(),
                    'end': now.date().isoformat(),
                    'limit': min(span, MAX_OHLCV_POINTS),
                })

            points = [
                OHLCVPoint(
                    timestamp=point.get('time_close') or point.get('time_open') or now,
                    open=_to_float(point.get('open')),
                    high=_to_float(point.get('high')),
                    low=_to_float(point.get('low')),
                    close=_to_float(point.get('close')),
                    volume=_to_float(point.get('volume')),
                )
                for point in data
            ]
        except Exception as e:
            logger.warning(f"OHLCV unavailable for {coin_id} ({timeframe}): {e}")
            return []
        return points[-MAX_OHLCV_POINTS:]

    async def get_global_market_data(self) -> GlobalMarketData:
        data = await self.request(ENDPOINTS['global'])
        try:
            return GlobalMarketData(
                total_market_cap=data.get('market_cap_usd'),
                total_volume_24h=data.get('volume_24h_usd'),
                bitcoin_dominance=data.get('bitcoin_dominance_percentage'),
                cryptocurrencies_count=data.get('cryptocurrencies_number'),
                market_cap_change_24h=data.get('market_cap_change_24h'),
                volume_change_24h=data.get('volume_change_24h'),
            )
        except (AttributeError, ValueError) as e:
            raise GatewayError("Unexpected global market payload") from e

    async def get_all_coins(self) -> List[CoinSummary]:
        data = await self.request(ENDPOINTS['coins'])
        try:
            return [CoinSummary(**coin) for coin in data]
        except (TypeError, ValueError) as e:
            raise GatewayError("Unexpected coin list payload") from e

    async def get_coin_by_symbol(self, symbol: str) -> CoinSummary:
        """Resolve a ticker symbol (case-insensitive), preferring active coins."""
        wanted = (symbol or '').strip().lower()
        matches = [coin for coin in await self.get_all_coins() if coin.symbol.lower() == wanted]
        if not matches:
            raise CoinNotFoundError(symbol)
        active = [coin for coin in matches if coin.is_active is not False]
        return (active or matches)[0]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


_gateway: Optional[MarketDataGateway] = None


def get_market_data_gateway() -> MarketDataGateway:
    """Process-wide gateway (FastAPI dependency)."""
    global _gateway
    if _gateway is None:
        _gateway = MarketDataGateway()
    return _gateway


async def close_market_data_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
        _gateway = None
