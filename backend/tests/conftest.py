"""
tests/conftest.py
──────────────────
Shared pytest fixtures for the backend test suite.

Fixtures
--------
db_engine / db_session
    In-memory SQLite database (``StaticPool``) with every table created fresh
    for each test. ``get_db`` is overridden to hand out sessions bound to it.

provider
    ``FakeProvider`` answering market data requests through
    ``httpx.MockTransport``, with canned CoinPaprika-shaped payloads and a log
    of every request it received.

gateway
    A real ``MarketDataGateway`` talking to ``provider``; it replaces the
    process-wide gateway for the duration of the test.

app_client
    ``httpx.AsyncClient`` wired to the FastAPI app. It keeps cookies, so a
    registration or login on it authenticates later requests.

auth_client
    ``app_client`` already logged in as ``a@b.com``.
"""
import os

# Settings are read at import time; these must be in place before coinfolio is imported.
os.environ.setdefault("COINFOLIO_DATABASE_DSN", "sqlite://")
os.environ.setdefault("COINFOLIO_PASSWORD_BCRYPT_ROUNDS", "4")
os.environ.setdefault("COINFOLIO_SESSION_COOKIE_SECURE", "false")
os.environ.setdefault("COINFOLIO_ENABLE_SCHEDULER", "false")
os.environ.setdefault("COINFOLIO_SESSION_SECRET", "test-secret")

from typing import Any, AsyncGenerator, Dict, List, Tuple

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coinfolio.core.database import Base, get_db
from coinfolio.core.rate_limit import api_limiter, auth_limiter
from coinfolio.main import app
from coinfolio.services.market_data import (
    MarketDataGateway,
    TokenBucketRateLimiter,
    TTLCache,
    get_market_data_gateway,
)
import coinfolio.models  # noqa: F401

PROVIDER_BASE_URL = "https://provider.test/v1"

TEST_EMAIL = "a@b.com"
TEST_PASSWORD = "password123"


# ── Canned provider payloads ──────────────────────────────────────────────────


def make_ticker(coin_id: str, symbol: str, name: str, price: float, rank: int = 1) -> Dict[str, Any]:
    return {
        "id": coin_id,
        "name": name,
        "symbol": symbol,
        "rank": rank,
        "total_supply": 21000000,
        "max_supply": 21000000,
        "circulating_supply": 19000000,
        "last_updated": "2024-01-01T00:00:00Z",
        "quotes": {
            "USD": {
                "price": price,
                "volume_24h": 1000000.0,
                "market_cap": price * 19000000,
                "percent_change_1h": 0.1,
                "percent_change_24h": 1.5,
                "percent_change_7d": -2.0,
                "percent_change_30d": 10.0,
                "ath_price": price * 2,
                "ath_date": "2021-11-10T16:51:15Z",
                "percent_from_price_ath": -50.0,
            }
        },
    }


BTC_TICKER = make_ticker("btc-bitcoin", "BTC", "Bitcoin", 30000.0, rank=1)
ETH_TICKER = make_ticker("eth-ethereum", "ETH", "Ethereum", 2000.0, rank=2)

BTC_INFO = {
    "id": "btc-bitcoin",
    "name": "Bitcoin",
    "symbol": "BTC",
    "rank": 1,
    "is_new": False,
    "is_active": True,
    "type": "coin",
    "logo": "https://static.provider.test/coin/btc-bitcoin/logo.png",
    "description": "Bitcoin is a cryptocurrency.",
    "tags": [{"id": "mining", "name": "Mining"}],
    "team": [{"id": "satoshi-nakamoto", "name": "Satoshi Nakamoto", "position": "Founder"}],
    "links": {"website": ["https://bitcoin.org/"]},
    "started_at": "2009-01-03T00:00:00Z",
    "development_status": "Working product",
    "hardware_wallet": True,
    "org_structure": "Decentralized",
    "hash_algorithm": "SHA256",
}

OHLCV_POINTS = [
    {
        "time_open": f"2024-01-0{day}T00:00:00Z",
        "time_close": f"2024-01-0{day}T23:59:59Z",
        "open": 29000.0 + day,
        "high": 31000.0 + day,
        "low": 28000.0 + day,
        "close": 30000.0 + day,
        "volume": 5000.0,
        "market_cap": 570000000000,
    }
    for day in range(1, 8)
]

GLOBAL_DATA = {
    "market_cap_usd": 1200000000000,
    "volume_24h_usd": 50000000000,
    "bitcoin_dominance_percentage": 48.5,
    "cryptocurrencies_number": 9000,
    "market_cap_change_24h": 1.2,
    "volume_change_24h": -3.4,
}

COIN_LIST = [
    {"id": "btc-bitcoin", "name": "Bitcoin", "symbol": "BTC", "rank": 1, "is_new": False, "is_active": True, "type": "coin"},
    {"id": "eth-ethereum", "name": "Ethereum", "symbol": "ETH", "rank": 2, "is_new": False, "is_active": True, "type": "coin"},
    {"id": "bcc-bitconnect", "name": "Bitconnect", "symbol": "BCC", "rank": 0, "is_new": False, "is_active": False, "type": "coin"},
]

SEARCH_RESULT = {
    "currencies": [
        {"id": "btc-bitcoin", "name": "Bitcoin", "symbol": "BTC", "rank": 1, "is_new": False, "is_active": True, "type": "coin"},
        {"id": "bch-bitcoin-cash", "name": "Bitcoin Cash", "symbol": "BCH", "rank": 20, "is_new": False, "is_active": True, "type": "coin"},
    ]
}


class FakeProvider:
    """In-process stand-in for the market data provider.

    Routes are keyed by path relative to the API root (``/tickers/btc-bitcoin``).
    A route body may be an exception instance, which is raised as a transport error.
    Unknown paths answer 404 like the real provider does for unknown coin ids.
    """

    def __init__(self) -> None:
        self.routes: Dict[str, Tuple[int, Any]] = {}
        self.requests: List[httpx.Request] = []

    def set(self, path: str, body: Any, status: int = 200) -> None:
        self.routes[path] = (status, body)

    def fail(self, path: str, status: int = 500) -> None:
        self.routes[path] = (status, {"error": "upstream failure"})

    def calls(self, path: str) -> int:
        return sum(1 for request in self.requests if self._path(request) == path)

    @staticmethod
    def _path(request: httpx.Request) -> str:
        return request.url.path.removeprefix("/v1")

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self._path(request)
        if path not in self.routes:
            return httpx.Response(404, json={"error": "id not found"})
        status, body = self.routes[path]
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status, json=body)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ── Database ──────────────────────────────────────────────────────────────────


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


# ── Market data ───────────────────────────────────────────────────────────────


@pytest.fixture
def provider() -> FakeProvider:
    fake = FakeProvider()
    fake.set("/tickers/btc-bitcoin", BTC_TICKER)
    fake.set("/tickers/eth-ethereum", ETH_TICKER)
    fake.set("/tickers", [BTC_TICKER, ETH_TICKER])
    fake.set("/coins/btc-bitcoin", BTC_INFO)
    fake.set("/coins/btc-bitcoin/ohlcv/historical", OHLCV_POINTS)
    fake.set("/coins/btc-bitcoin/ohlcv/today", OHLCV_POINTS[-1:])
    fake.set("/coins", COIN_LIST)
    fake.set("/search", SEARCH_RESULT)
    fake.set("/global", GLOBAL_DATA)
    fake.set("/coins/most-viewed", [BTC_TICKER, ETH_TICKER])
    fake.set("/coins/top-gainers", [ETH_TICKER])
    fake.set("/coins/top-losers", [BTC_TICKER])
    fake.set("/coins/new", [ETH_TICKER])
    return fake


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def gateway(provider: FakeProvider, clock: FakeClock) -> AsyncGenerator[MarketDataGateway, None]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handle))
    market_gateway = MarketDataGateway(
        base_url=PROVIDER_BASE_URL,
        timeout=5.0,
        cache=TTLCache(max_entries=256, ttl_seconds=300, timer=clock),
        rate_limiter=TokenBucketRateLimiter(rate_per_minute=6000, burst=100, timer=clock),
        client=client,
    )
    yield market_gateway
    await client.aclose()


# ── Application ───────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def reset_rate_limits():
    api_limiter.reset()
    auth_limiter.reset()
    yield
    api_limiter.reset()
    auth_limiter.reset()


@pytest.fixture
async def app_client(session_factory, gateway) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTPX client with the database and market data gateway overridden.

    Startup events are skipped, so no scheduler runs and no real DB is touched.
    """
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_market_data_gateway] = lambda: gateway

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


async def register(client: AsyncClient, email: str = TEST_EMAIL, password: str = TEST_PASSWORD,
                   full_name: str = "Test User") -> httpx.Response:
    return await client.post("/api/auth/register", json={
        "email": email,
        "password": password,
        "full_name": full_name,
    })


async def login(client: AsyncClient, email: str = TEST_EMAIL, password: str = TEST_PASSWORD,
                remember_me: bool = False) -> httpx.Response:
    return await client.post("/api/auth/login", json={
        "email": email,
        "password": password,
        "remember_me": remember_me,
    })


@pytest.fixture
async def auth_client(app_client: AsyncClient) -> AsyncClient:
    resp = await register(app_client)
    assert resp.status_code == 201
    return app_client
