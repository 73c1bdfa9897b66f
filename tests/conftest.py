"""
Pytest configuration and fixtures for Signal Consensus Engine tests
"""
import pytest

from config.trading_config import TradingConfig
from src.cache.memory_store import MemoryDocumentStore

from factories import NOW, FakeAI, FakeClock, FakeMarketData, FakeNotifier, proposal


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory document store с управляемым временем."""
    return MemoryDocumentStore(clock=clock)


@pytest.fixture
def trading_config():
    return TradingConfig()


@pytest.fixture
def market_data():
    return FakeMarketData({"BTCUSDT": 100.0, "ETHUSDT": 2000.0, "SOLUSDT": 150.0})


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def fake_ai():
    return FakeAI({
        "model-a": [proposal(confidence=80)],
        "model-b": [proposal(entry=101.0, sl=98.0, tp=107.0, confidence=84)],
        "model-c": None,
    })


@pytest.fixture
def engine(store, market_data, fake_ai, notifier, trading_config):
    from src.api.deps import build_engine

    return build_engine(store, market_data=market_data, ai=fake_ai, notifier=notifier, config=trading_config)


@pytest.fixture
def secrets(monkeypatch):
    from config import config as app_config

    monkeypatch.setattr(app_config, "TV_WEBHOOK_SECRET", "tv-secret")
    monkeypatch.setattr(app_config, "CRON_SECRET", "cron-secret")
    return {"tv": "tv-secret", "cron": "cron-secret"}


@pytest.fixture
def client(engine, secrets):
    """TestClient без lifespan: engine с fake коллекторами, scheduler не стартует, лимиты сброшены."""
    from fastapi.testclient import TestClient

    from api_server import app
    from src.api.deps import limiter

    limiter.reset()
    app.state.engine = engine
    yield TestClient(app)
    app.state.engine = None


@pytest.fixture
def cron_headers(secrets):
    return {"X-Cron-Secret": secrets["cron"]}
