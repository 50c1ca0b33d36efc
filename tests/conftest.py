import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pricewatch.database import create_tables
from pricewatch.core.exchange.base import Kline, Ticker
from pricewatch.services.notifier import WebhookNotifier
from pricewatch.services.persistence import PricePersistenceService

# --- HELPERS ---
def make_klines(closes):
    """Daily klines, oldest first, with the given close prices"""
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    klines = []
    for i, close in enumerate(closes):
        c = Decimal(str(close))
        open_time = start + timedelta(days=i)
        klines.append(Kline(
            open_time=open_time,
            open=c, high=c, low=c, close=c,
            volume=Decimal("1000"),
            close_time=open_time + timedelta(days=1) - timedelta(milliseconds=1),
        ))
    return klines

def make_exchange_client(name, symbols, prices, closes):
    """
    AsyncMock exchange client.
    symbols: ranked list; prices/closes: dicts keyed by symbol.
    """
    client = AsyncMock()
    client.name = name
    client.get_top_volume_tickers.return_value = [
        Ticker(symbol=s, last_price=Decimal(str(prices.get(s, 0))), volume=Decimal(str(1000 - i)))
        for i, s in enumerate(symbols)
    ]
    client.get_latest_price.side_effect = lambda symbol: Decimal(str(prices[symbol]))
    client.get_klines.side_effect = lambda symbol, interval, limit: make_klines(closes.get(symbol, []))
    return client

# --- STORAGE ---
@pytest_asyncio.fixture
async def sqlite_engine():
    """In-memory SQLite shared across sessions of one test"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()

@pytest.fixture
def session_factory(sqlite_engine):
    return async_sessionmaker(sqlite_engine, expire_on_commit=False)

@pytest.fixture
def price_store(session_factory):
    return PricePersistenceService(session_factory)

# --- MOCKS ---
@pytest.fixture
def mock_store():
    store = AsyncMock(spec=PricePersistenceService)
    store.upsert_price.return_value = None
    return store

@pytest.fixture
def mock_notifier():
    return AsyncMock(spec=WebhookNotifier)

@pytest.fixture
def klines_factory():
    return make_klines

@pytest.fixture
def exchange_client_factory():
    return make_exchange_client
