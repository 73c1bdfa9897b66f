"""
Tests for the standalone TradingView paper portfolio
"""
from datetime import timedelta

import pytest

from config.trading_config import TradingConfig
from src.core.enums import CloseReason, Direction, TradeResult, TradeStatus
from src.core.exceptions import TradeRejectedError
from src.services.consensus.tv_confirmation import TVSignal
from src.services.portfolio.tv_portfolio import (
    TVPortfolioManager,
    apply_tv_tick,
    new_tv_portfolio,
    open_tv_trade,
)

from factories import NOW


def _alert(signal="BUY", symbol="BTCUSDT", price=100.0, tp=106.0, sl=98.0, at=NOW):
    return TVSignal(
        symbol=symbol, signal=signal, price=price, tp=tp, sl=sl,
        timestamp=at, expires_at=at + timedelta(minutes=30),
    )


@pytest.fixture
def tv_portfolio(store, trading_config):
    return TVPortfolioManager(store, trading_config)


def test_open_sizes_from_balance():
    portfolio, trade, events = open_tv_trade(new_tv_portfolio(), _alert(), NOW)

    # 5000 × 18% × 5x
    assert trade.size == pytest.approx(4500.0)
    assert trade.direction is Direction.LONG
    assert (trade.entry, trade.stop_loss, trade.take_profit) == (100.0, 98.0, 106.0)
    assert trade.status is TradeStatus.ACTIVE
    assert trade.ai_sources == ["tradingview"]
    assert events == []
    assert [t.id for t in portfolio.live_trades()] == [trade.id]


@pytest.mark.parametrize("alert,reason", [
    (_alert(tp=None), "missing_levels"),
    (_alert(sl=None), "missing_levels"),
    (_alert(sl=101.0), "invalid_levels"),
    (_alert(signal="SELL"), "invalid_levels"),
])
def test_rejects_bad_levels(alert, reason):
    with pytest.raises(TradeRejectedError) as exc:
        open_tv_trade(new_tv_portfolio(), alert, NOW)
    assert exc.value.reason == reason


def test_same_direction_is_duplicate():
    portfolio, _, _ = open_tv_trade(new_tv_portfolio(), _alert(), NOW)

    with pytest.raises(TradeRejectedError) as exc:
        open_tv_trade(portfolio, _alert(price=101.0, tp=107.0, sl=99.0), NOW)
    assert exc.value.reason == "duplicate_symbol"


def test_opposite_alert_reverses_position():
    portfolio, first, _ = open_tv_trade(new_tv_portfolio(), _alert(), NOW)

    later = NOW + timedelta(hours=1)
    portfolio, second, events = open_tv_trade(
        portfolio, _alert("SELL", price=102.0, tp=96.0, sl=104.0, at=later), later
    )

    assert [e.kind for e in events] == ["closed"]
    closed = next(t for t in portfolio.trades if t.id == first.id)
    assert closed.closed_by is CloseReason.REVERSAL
    assert closed.exit_price == 102.0
    assert closed.pnl == pytest.approx(90.0)
    assert portfolio.balance == pytest.approx(5090.0)
    assert second.direction is Direction.SHORT
    assert second.size == pytest.approx(5090 * 0.18 * 5)
    assert [t.id for t in portfolio.live_trades()] == [second.id]


def test_max_open_trades():
    config = TradingConfig()
    config.tv_portfolio.max_open_trades = 1
    portfolio, _, _ = open_tv_trade(new_tv_portfolio(config), _alert(), NOW, config)

    with pytest.raises(TradeRejectedError) as exc:
        open_tv_trade(portfolio, _alert(symbol="ETHUSDT", price=2000.0, tp=2100.0, sl=1950.0), NOW, config)
    assert exc.value.reason == "max_open_trades"


def test_tick_runs_lifecycle():
    portfolio, trade, _ = open_tv_trade(new_tv_portfolio(), _alert(), NOW)

    portfolio, events = apply_tv_tick(portfolio, {"BTCUSDT": 97.0}, NOW + timedelta(minutes=5))

    assert [e.kind for e in events] == ["closed"]
    closed = portfolio.trades[0]
    assert closed.result is TradeResult.LOSS
    assert closed.pnl == pytest.approx(-90.0)
    assert portfolio.balance == pytest.approx(4910.0)
    assert portfolio.stats.losses == 1


async def test_manager_persists_and_rejects_quietly(tv_portfolio):
    trade = await tv_portfolio.open_from_alert(_alert(), NOW)
    assert trade is not None

    assert await tv_portfolio.open_from_alert(_alert(), NOW) is None
    assert await tv_portfolio.open_from_alert(_alert(symbol="ETHUSDT", tp=None), NOW) is None
    assert await tv_portfolio.live_symbols() == ["BTCUSDT"]

    reset = await tv_portfolio.reset()
    assert reset.balance == 5000
    assert await tv_portfolio.live_symbols() == []


async def test_disabled_portfolio_opens_nothing(store):
    config = TradingConfig()
    config.tv_portfolio.enabled = False
    manager = TVPortfolioManager(store, config)

    assert await manager.open_from_alert(_alert(), NOW) is None
    assert await manager.monitor({"BTCUSDT": 90.0}, NOW) == []


async def test_monitor_ticks_tv_portfolio(engine, market_data, notifier):
    await engine.tv_portfolio.open_from_alert(_alert(), NOW)

    market_data.prices["BTCUSDT"] = 103.0
    events = await engine.monitor.run_tick(NOW + timedelta(minutes=1))

    assert [(label, e.kind) for label, e in events] == [("tv", "stop_moved"), ("tv", "partial_tp")]
    assert "TV" in notifier.messages[0]
    portfolio = await engine.tv_portfolio.load()
    assert portfolio.trades[0].status is TradeStatus.PARTIAL_TP1


class TestTVPortfolioEndpoints:
    def test_webhook_opens_tv_trade(self, client, secrets):
        response = client.post("/api/tv-webhook", json={
            "secret": secrets["tv"], "symbol": "BTCUSD", "signal": "BUY",
            "price": 100, "tp": 106, "sl": 98,
        })

        tv_trade = response.json()["tv_trade"]
        assert tv_trade["symbol"] == "BTCUSDT"
        assert tv_trade["size"] == 4500

        data = client.get("/api/portfolio/tv").json()
        assert data["enabled"] is True
        assert [t["id"] for t in data["open_trades"]] == [tv_trade["id"]]

    def test_reset_requires_secret(self, client, cron_headers):
        client.post("/api/tv-webhook", json={
            "secret": "tv-secret", "symbol": "BTC", "signal": "BUY", "price": 100, "tp": 106, "sl": 98,
        })

        assert client.post("/api/portfolio/tv/reset").status_code == 401
        response = client.post("/api/portfolio/tv/reset", headers=cron_headers)
        assert response.json() == {"success": True, "balance": 5000}
        assert client.get("/api/portfolio/tv").json()["open_trades"] == []
