"""
API endpoint tests (cron, cooldown, portfolio, optimizer, health)
"""
import asyncio

import pytest

from factories import make_signal, make_snapshot


@pytest.fixture
def patched_scan(engine, market_data, monkeypatch):
    async def indicators(symbol):
        price = market_data.prices.get(symbol)
        return make_snapshot(symbol, price) if price else None

    monkeypatch.setattr(engine.scan, "_indicators", indicators)
    engine.scan.symbols = ["BTCUSDT", "ETHUSDT"]
    return engine.scan


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "running"


def test_startup_validates_config(monkeypatch):
    from fastapi.testclient import TestClient

    from api_server import app
    from config import config as app_config

    monkeypatch.setattr(app_config, "ENVIRONMENT", "production")
    monkeypatch.setattr(app_config, "TV_WEBHOOK_SECRET", "")

    with pytest.raises(ValueError, match="TV_WEBHOOK_SECRET"):
        with TestClient(app):
            pass


def test_health(client):
    data = client.get("/api/health").json()

    assert data["status"] == "healthy"
    assert data["trading_paused"] is False
    assert data["scheduler"] == {"running": False, "jobs": []}
    assert data["models"] == ["model-a", "model-b", "model-c"]


def test_health_degraded_when_store_down(client, store):
    store.set_available(False)
    assert client.get("/api/health").json()["status"] == "degraded"


class TestCronSecret:
    def test_missing_header(self, client):
        assert client.post("/api/cron/monitor").status_code == 401

    def test_wrong_header(self, client):
        response = client.post("/api/cron/monitor", headers={"X-Cron-Secret": "nope"})
        assert response.status_code == 401

    def test_not_configured(self, client, monkeypatch):
        from config import config as app_config

        monkeypatch.setattr(app_config, "CRON_SECRET", "")
        response = client.post("/api/cron/monitor", headers={"X-Cron-Secret": "anything"})
        assert response.status_code == 500


def test_cron_scan(client, cron_headers, patched_scan, notifier):
    response = client.post("/api/cron/scan", headers=cron_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["candidates"] == 1
    assert data["emitted"][0]["symbol"] == "BTCUSDT"
    assert len(notifier.messages) == 1


def test_cron_monitor(client, cron_headers):
    response = client.post("/api/cron/monitor", headers=cron_headers)
    assert response.json() == {"success": True, "events": []}


def test_cron_rate_limited(client, cron_headers, monkeypatch):
    from config import config as app_config

    monkeypatch.setattr(app_config, "CRON_RATE_LIMIT", "1/minute")

    assert client.post("/api/cron/monitor", headers=cron_headers).status_code == 200
    response = client.post("/api/cron/monitor", headers=cron_headers)
    assert response.status_code == 429
    assert "Rate limit exceeded" in response.json()["error"]


def test_default_rate_limit_applies_to_undecorated_routes(client, monkeypatch):
    from config import config as app_config

    monkeypatch.setattr(app_config, "API_RATE_LIMIT", "2/minute")

    statuses = [client.get("/api/health").status_code for _ in range(3)]
    assert statuses == [200, 200, 429]


class TestCooldownEndpoints:
    def test_record_then_block(self, client):
        body = {"symbol": "btcusdt", "direction": "long", "entry": 100}

        first = client.post("/api/cooldown", json=body).json()
        second = client.post("/api/cooldown", json=body).json()

        assert first["recorded"] is True
        assert second["recorded"] is False
        assert second["reason"] == "cooldown_active"

        listing = client.get("/api/cooldown").json()
        assert listing["cooldown_hours"] == 12
        assert [r["symbol"] for r in listing["records"]] == ["BTCUSDT"]
        assert listing["records"][0]["active"] is True

    def test_check_direction_flip(self, client):
        client.post("/api/cooldown", json={"symbol": "BTCUSDT", "direction": "LONG", "entry": 100})

        response = client.get("/api/cooldown/check", params={
            "symbol": "btcusdt", "direction": "SHORT", "entry": 100,
        })
        assert response.json()["allowed"] is True
        assert response.json()["reason"] == "direction_flip"

    def test_check_bad_direction(self, client):
        response = client.get("/api/cooldown/check", params={
            "symbol": "BTCUSDT", "direction": "UP", "entry": 100,
        })
        assert response.status_code == 400

    def test_clear_requires_secret(self, client, cron_headers):
        client.post("/api/cooldown", json={"symbol": "BTCUSDT", "direction": "LONG", "entry": 100})

        assert client.delete("/api/cooldown").status_code == 401
        response = client.delete("/api/cooldown", headers=cron_headers)
        assert response.json() == {"cleared": 1, "symbols": ["BTCUSDT"]}
        assert client.get("/api/cooldown").json()["records"] == []


class TestPortfolioEndpoints:
    def test_initial_state(self, client):
        data = client.get("/api/portfolio").json()

        assert data["silver"]["balance"] == 5000
        assert data["gold"]["balance"] == 5000
        assert data["silver"]["open_trades"] == []

    def test_manual_close(self, client, engine, cron_headers):
        trade = asyncio.run(engine.portfolio.open_from_signal(make_signal()))

        open_trades = client.get("/api/portfolio").json()["silver"]["open_trades"]
        assert [t["id"] for t in open_trades] == [trade.id]

        response = client.post(f"/api/portfolio/close/{trade.id}", json={"price": 104}, headers=cron_headers)
        assert response.status_code == 200
        event = response.json()["events"][0]
        assert event["kind"] == "closed"
        assert event["reason"] == "manual"
        assert event["pnl"] > 0

        again = client.post(f"/api/portfolio/close/{trade.id}", json={"price": 104}, headers=cron_headers)
        assert again.status_code == 404

    def test_reset(self, client, engine, cron_headers):
        asyncio.run(engine.portfolio.open_from_signal(make_signal()))

        assert client.post("/api/portfolio/reset").status_code == 401
        response = client.post("/api/portfolio/reset", headers=cron_headers)
        assert response.json()["balances"] == {"silver": 5000, "gold": 5000}
        assert client.get("/api/portfolio").json()["silver"]["open_trades"] == []

    def test_shadow(self, client, cron_headers, patched_scan):
        client.post("/api/cron/scan", headers=cron_headers)

        data = client.get("/api/portfolio/shadow").json()
        assert len(data["pending"]) == 2
        assert set(data["ai_stats"]) == {"model-a", "model-b"}
        assert data["consensus"]["silver"]["signals"] == 1


class TestOptimizerEndpoints:
    def test_state(self, client):
        data = client.get("/api/optimizer").json()

        assert data["config"]["alert_confidence"] == 75
        assert data["paused"] is False
        assert data["log"] == []

    def test_run_waits_without_history(self, client, cron_headers):
        assert client.post("/api/optimizer/run").status_code == 401

        data = client.post("/api/optimizer/run", headers=cron_headers).json()
        assert data["waiting"] is True
        assert data["report"].startswith("Need 10 closed trades")

    def test_reset(self, client, cron_headers):
        data = client.post("/api/optimizer/reset", headers=cron_headers).json()
        assert data["success"] is True
        assert data["config"]["min_risk_reward"] == 2.0
