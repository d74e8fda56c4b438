"""
tests/test_market_data_gateway.py
──────────────────────────────────
Unit tests for the market data gateway and its building blocks:

  TTLCache                 freshness, LRU eviction
  TokenBucketRateLimiter   refill, waiting, giving up
  MarketDataGateway        caching, error mapping, partial-failure tolerance

The provider is replaced by ``FakeProvider`` through ``httpx.MockTransport``;
time is driven by ``FakeClock``.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from coinfolio.core.errors import (
    CoinNotFoundError,
    GatewayError,
    InvalidInputError,
    RateLimitedError,
)
from coinfolio.services.market_data import (
    MarketDataGateway,
    TokenBucketRateLimiter,
    TTLCache,
    is_valid_timeframe,
)

from conftest import PROVIDER_BASE_URL, FakeClock


# ── TTLCache ──────────────────────────────────────────────────────────────────


class TestTTLCache:

    def test_returns_value_within_ttl(self, clock) -> None:
        cache = TTLCache(max_entries=10, ttl_seconds=60, timer=clock)
        cache.set("k", {"v": 1})
        clock.advance(59)
        assert cache.get("k") == {"v": 1}
        assert "k" in cache

    def test_expired_entry_is_dropped(self, clock) -> None:
        cache = TTLCache(max_entries=10, ttl_seconds=60, timer=clock)
        cache.set("k", 1)
        clock.advance(60)
        assert "k" not in cache
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_evicts_least_recently_used(self, clock) -> None:
        cache = TTLCache(max_entries=2, ttl_seconds=60, timer=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")  # "b" is now least recently used
        cache.set("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3
        assert len(cache) == 2

    def test_clear(self, clock) -> None:
        cache = TTLCache(max_entries=2, ttl_seconds=60, timer=clock)
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0

    def test_rejects_zero_capacity(self) -> None:
        with pytest.raises(ValueError):
            TTLCache(max_entries=0)


# ── TokenBucketRateLimiter ────────────────────────────────────────────────────


class TestTokenBucketRateLimiter:

    @staticmethod
    def _limiter(clock: FakeClock, **kwargs) -> tuple:
        sleeps = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)
            clock.advance(seconds)

        limiter = TokenBucketRateLimiter(timer=clock, sleep=fake_sleep, **kwargs)
        return limiter, sleeps

    async def test_burst_is_served_without_waiting(self, clock) -> None:
        limiter, sleeps = self._limiter(clock, rate_per_minute=60, burst=3)
        for _ in range(3):
            await limiter.acquire()
        assert sleeps == []

    async def test_waits_for_refill_when_empty(self, clock) -> None:
        limiter, sleeps = self._limiter(clock, rate_per_minute=60, burst=1, max_wait_seconds=5)
        await limiter.acquire()
        await limiter.acquire()
        assert sleeps == [pytest.approx(1.0)]

    async def test_refills_over_time(self, clock) -> None:
        limiter, sleeps = self._limiter(clock, rate_per_minute=60, burst=2)
        await limiter.acquire()
        await limiter.acquire()
        clock.advance(2)
        await limiter.acquire()
        assert sleeps == []

    async def test_raises_when_wait_exceeds_max(self, clock) -> None:
        limiter, sleeps = self._limiter(clock, rate_per_minute=1, burst=1, max_wait_seconds=5)
        await limiter.acquire()
        with pytest.raises(RateLimitedError):
            await limiter.acquire()
        assert sleeps == []

    async def test_concurrent_callers_count_queued_reservations(self, clock) -> None:
        """Callers queued behind others are rejected once their turn is beyond max_wait."""
        waits = []

        async def parked_sleep(seconds: float) -> None:
            waits.append(seconds)
            await asyncio.sleep(0)

        limiter = TokenBucketRateLimiter(
            rate_per_minute=60, burst=1, max_wait_seconds=5, timer=clock, sleep=parked_sleep,
        )
        results = await asyncio.gather(*(limiter.acquire() for _ in range(30)), return_exceptions=True)

        assert sum(1 for result in results if result is None) == 6
        assert sum(1 for result in results if isinstance(result, RateLimitedError)) == 24
        assert sorted(waits) == pytest.approx([1.0, 2.0, 3.0, 4.0, 5.0])

        # Rejected callers reserved nothing: six seconds repay the six granted tokens
        clock.advance(6)
        await limiter.acquire()
        assert len(waits) == 5


# ── request() ─────────────────────────────────────────────────────────────────


class TestRequest:

    def test_build_url_sorts_params(self, gateway) -> None:
        url = gateway.build_url("/search", {"q": "bit coin", "c": "currencies", "limit": 20})
        assert url == f"{PROVIDER_BASE_URL}/search?c=currencies&limit=20&q=bit+coin"
        assert gateway.build_url("/global") == f"{PROVIDER_BASE_URL}/global"
        assert gateway.build_url("/global", {}) == f"{PROVIDER_BASE_URL}/global"

    async def test_second_call_within_ttl_uses_cache(self, gateway, provider) -> None:
        first = await gateway.request("/tickers/btc-bitcoin", {"quotes": "USD"})
        second = await gateway.request("/tickers/btc-bitcoin", {"quotes": "USD"})
        assert provider.calls("/tickers/btc-bitcoin") == 1
        assert second == first

    async def test_param_order_shares_cache_entry(self, gateway, provider) -> None:
        await gateway.request("/search", {"q": "btc", "limit": 5})
        await gateway.request("/search", {"limit": 5, "q": "btc"})
        assert provider.calls("/search") == 1

    async def test_refetches_after_ttl(self, gateway, provider, clock) -> None:
        await gateway.request("/global")
        clock.advance(301)
        await gateway.request("/global")
        assert provider.calls("/global") == 2

    async def test_sends_headers_and_no_credentials(self, gateway, provider) -> None:
        await gateway.request("/global")
        sent = provider.requests[-1]
        assert sent.headers["accept"] == "application/json"
        assert sent.headers["user-agent"].startswith("Coinfolio/")
        assert "authorization" not in sent.headers
        assert "cookie" not in sent.headers

    async def test_non_2xx_raises_with_status(self, gateway, provider) -> None:
        provider.fail("/global", status=503)
        with pytest.raises(GatewayError) as excinfo:
            await gateway.request("/global")
        assert excinfo.value.upstream_status == 503
        assert "503" in excinfo.value.message
        assert "Service Unavailable" in excinfo.value.message

    async def test_failures_are_not_cached(self, gateway, provider) -> None:
        provider.fail("/global")
        with pytest.raises(GatewayError):
            await gateway.request("/global")
        provider.set("/global", {"market_cap_usd": 1})
        assert await gateway.request("/global") == {"market_cap_usd": 1}

    async def test_transport_error_raises(self, gateway, provider) -> None:
        provider.set("/global", httpx.ConnectError("connection refused"))
        with pytest.raises(GatewayError):
            await gateway.request("/global")

    async def test_timeout_raises(self, gateway, provider) -> None:
        provider.set("/global", httpx.ReadTimeout("timed out"))
        with pytest.raises(GatewayError) as excinfo:
            await gateway.request("/global")
        assert "timed out" in excinfo.value.message

    async def test_invalid_json_raises(self, clock) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        async with httpx.AsyncClient(transport=transport) as client:
            market_gateway = MarketDataGateway(
                base_url=PROVIDER_BASE_URL,
                cache=TTLCache(ttl_seconds=300, timer=clock),
                rate_limiter=TokenBucketRateLimiter(rate_per_minute=600, burst=10, timer=clock),
                client=client,
            )
            with pytest.raises(GatewayError):
                await market_gateway.request("/global")

    async def test_cache_hits_do_not_spend_rate_budget(self, provider, clock) -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(provider.handle)) as client:
            market_gateway = MarketDataGateway(
                base_url=PROVIDER_BASE_URL,
                cache=TTLCache(ttl_seconds=300, timer=clock),
                rate_limiter=TokenBucketRateLimiter(
                    rate_per_minute=1, burst=1, max_wait_seconds=0, timer=clock
                ),
                client=client,
            )
            await market_gateway.request("/global")
            for _ in range(5):
                await market_gateway.request("/global")
            with pytest.raises(RateLimitedError):
                await market_gateway.request("/coins")


# ── Prices ────────────────────────────────────────────────────────────────────


class TestPrices:

    async def test_empty_set_returns_every_listed_ticker(self, gateway) -> None:
        prices = await gateway.get_current_prices(set())
        assert prices == {"btc-bitcoin": Decimal("30000.0"), "eth-ethereum": Decimal("2000.0")}

    async def test_failed_id_maps_to_zero(self, gateway, provider) -> None:
        provider.fail("/tickers/x")
        prices = await gateway.get_current_prices({"x"})
        assert prices == {"x": Decimal(0)}

    async def test_partial_failure_keeps_other_prices(self, gateway) -> None:
        prices = await gateway.get_current_prices({"btc-bitcoin", "missing-coin"})
        assert prices["btc-bitcoin"] == Decimal("30000.0")
        assert prices["missing-coin"] == 0

    async def test_rate_limited_ids_fail_fast(self, gateway, provider, clock) -> None:
        async def parked_sleep(seconds: float) -> None:
            await asyncio.sleep(0)

        gateway.rate_limiter = TokenBucketRateLimiter(
            rate_per_minute=60, burst=2, max_wait_seconds=3, timer=clock, sleep=parked_sleep,
        )
        coin_ids = {"btc-bitcoin", "eth-ethereum"} | {f"coin-{i}" for i in range(10)}

        prices = await gateway.get_current_prices(coin_ids)

        assert set(prices) == coin_ids
        assert len(provider.requests) == 5
        assert prices["btc-bitcoin"] == Decimal("30000.0")
        assert prices["eth-ethereum"] == 0

    async def test_single_price(self, gateway) -> None:
        assert await gateway.get_coin_current_price("eth-ethereum") == Decimal("2000.0")

    async def test_single_price_unknown_coin(self, gateway) -> None:
        with pytest.raises(CoinNotFoundError):
            await gateway.get_coin_current_price("missing-coin")

    async def test_ticker_shape(self, gateway) -> None:
        ticker = await gateway.get_ticker("btc-bitcoin")
        assert ticker.symbol == "BTC"
        assert ticker.price == Decimal("30000.0")
        assert "USD" in ticker.quotes


# ── Search ────────────────────────────────────────────────────────────────────


class TestSearch:

    @pytest.mark.parametrize("query", ["", "b", "  b  "])
    async def test_short_query_rejected_without_request(self, gateway, provider, query) -> None:
        with pytest.raises(InvalidInputError):
            await gateway.search_coins(query)
        assert provider.requests == []

    async def test_returns_summaries(self, gateway, provider) -> None:
        results = await gateway.search_coins(" bitcoin ", limit=20)
        assert [coin.id for coin in results] == ["btc-bitcoin", "bch-bitcoin-cash"]
        params = parse_qs(provider.requests[-1].url.query.decode())
        assert params == {"q": ["bitcoin"], "limit": ["20"], "c": ["currencies"]}

    async def test_upstream_failure_propagates(self, gateway, provider) -> None:
        provider.fail("/search")
        with pytest.raises(GatewayError):
            await gateway.search_coins("bitcoin")


# ── Trending ──────────────────────────────────────────────────────────────────


class TestTrending:

    async def test_all_categories(self, gateway) -> None:
        trending = await gateway.get_trending_coins()
        assert [c.id for c in trending.popular] == ["btc-bitcoin", "eth-ethereum"]
        assert trending.top_gainers[0].price == 2000.0
        assert trending.top_losers[0].change_24h == 1.5
        assert len(trending.recently_added) == 1

    async def test_one_failed_category_degrades_alone(self, gateway, provider) -> None:
        provider.fail("/coins/top-losers")
        trending = await gateway.get_trending_coins()
        assert trending.top_losers == []
        assert len(trending.popular) == 2
        assert len(trending.top_gainers) == 1
        assert len(trending.recently_added) == 1

    async def test_malformed_category_degrades_alone(self, gateway, provider) -> None:
        provider.set("/coins/new", [{"unexpected": True}])
        trending = await gateway.get_trending_coins()
        assert trending.recently_added == []
        assert len(trending.popular) == 2


# ── Coin details and OHLCV ────────────────────────────────────────────────────


class TestCoinDetails:

    async def test_assembles_info_ticker_and_chart(self, gateway) -> None:
        detail = await gateway.get_coin_details("btc-bitcoin", "7d")
        assert detail.name == "Bitcoin"
        assert detail.tags == ["Mining"]
        assert detail.metrics.price == 30000.0
        assert detail.metrics.circulating_supply == 19000000
        assert len(detail.chart_data) == 7

    async def test_coin_info_failure_is_not_found(self, gateway) -> None:
        with pytest.raises(CoinNotFoundError):
            await gateway.get_coin_details("missing-coin")

    async def test_ticker_failure_drops_price_metrics(self, gateway, provider) -> None:
        provider.fail("/tickers/btc-bitcoin")
        detail = await gateway.get_coin_details("btc-bitcoin")
        assert detail.metrics.price is None
        assert detail.metrics.market_cap is None
        assert len(detail.chart_data) == 7

    async def test_ohlcv_failure_gives_empty_chart(self, gateway, provider) -> None:
        provider.fail("/coins/btc-bitcoin/ohlcv/historical")
        detail = await gateway.get_coin_details("btc-bitcoin")
        assert detail.chart_data == []
        assert detail.metrics.price == 30000.0


class TestOHLCV:

    @pytest.mark.parametrize("timeframe", ["1h", "4h", "12h", "1d"])
    async def test_short_timeframes_use_today(self, gateway, provider, timeframe) -> None:
        points = await gateway.get_coin_ohlcv("btc-bitcoin", timeframe)
        assert len(points) == 1
        assert provider.calls("/coins/btc-bitcoin/ohlcv/today") == 1

    async def test_historical_query(self, gateway, provider) -> None:
        points = await gateway.get_coin_ohlcv("btc-bitcoin", "30d")
        assert len(points) == 7
        assert points[0].close == 30001.0
        params = parse_qs(provider.requests[-1].url.query.decode())
        today = datetime.now(timezone.utc).date()
        assert params["limit"] == ["30"]
        assert params["end"] == [today.isoformat()]
        assert params["start"] == [(today - timedelta(days=30)).isoformat()]

    async def test_max_is_one_year(self, gateway, provider) -> None:
        await gateway.get_coin_ohlcv("btc-bitcoin", "max")
        params = parse_qs(provider.requests[-1].url.query.decode())
        assert params["limit"] == ["365"]

    async def test_unknown_timeframe_defaults_to_week(self, gateway, provider) -> None:
        await gateway.get_coin_ohlcv("btc-bitcoin", "2w")
        params = parse_qs(provider.requests[-1].url.query.decode())
        assert params["limit"] == ["7"]
        assert not is_valid_timeframe("2w")

    async def test_result_is_capped(self, gateway, provider) -> None:
        provider.set("/coins/btc-bitcoin/ohlcv/historical", [
            {"time_close": "2024-01-01T00:00:00Z", "open": 1, "high": 1, "low": 1, "close": i, "volume": 1}
            for i in range(400)
        ])
        points = await gateway.get_coin_ohlcv("btc-bitcoin", "365d")
        assert len(points) == 365
        assert points[-1].close == 399

    async def test_failure_returns_empty(self, gateway) -> None:
        assert await gateway.get_coin_ohlcv("missing-coin", "7d") == []


# ── Global data and symbol lookup ─────────────────────────────────────────────


class TestCatalogue:

    async def test_global_market_data(self, gateway) -> None:
        data = await gateway.get_global_market_data()
        assert data.bitcoin_dominance == 48.5
        assert data.cryptocurrencies_count == 9000

    async def test_coin_by_symbol_is_case_insensitive(self, gateway) -> None:
        coin = await gateway.get_coin_by_symbol("eth")
        assert coin.id == "eth-ethereum"

    async def test_coin_by_symbol_missing(self, gateway) -> None:
        with pytest.raises(CoinNotFoundError):
            await gateway.get_coin_by_symbol("nope")

    async def test_owned_client_is_closed(self) -> None:
        market_gateway = MarketDataGateway(base_url=PROVIDER_BASE_URL)
        await market_gateway.aclose()
        assert market_gateway._client.is_closed
