"""
Tests for the position monitor tick
"""
from datetime import timedelta

import pytest

from src.core.enums import TradeResult, TradeStatus

from factories import NOW, make_signal


@pytest.fixture
def monitor(engine):
    return engine.monitor


async def _open(engine, **overrides):
    return await engine.portfolio.open_from_signal(make_signal(**overrides), NOW)


async def test_no_live_trades_skips_price_fetch(monitor, market_data):
    assert await monitor.run_tick(NOW) == []
    assert market_data.price_calls == []


async def test_partial_then_breakeven_close(engine, monitor, market_data, notifier):
    trade = await _open(engine)
    assert trade is not None

    market_data.prices["BTCUSDT"] = 103.0
    events = await monitor.run_tick(NOW + timedelta(minutes=1))

    assert [e.kind for _, e in events] == ["stop_moved", "partial_tp"]
    assert len(notifier.messages) == 1
    assert "TP1" in notifier.messages[0]

    market_data.prices["BTCUSDT"] = 99.0
    events = await monitor.run_tick(NOW + timedelta(minutes=2))

    assert [e.kind for _, e in events] == ["closed"]
    assert len(notifier.messages) == 2

    dual = await engine.portfolio.load()
    closed = dual.silver.trades[0]
    assert closed.status is TradeStatus.CLOSED
    assert closed.result is TradeResult.WIN
    assert dual.silver.balance == pytest.approx(5000 + closed.pnl)
    assert dual.silver.stats.wins == 1


async def test_missing_prices_skip_tick(engine, monitor, market_data):
    await _open(engine)
    market_data.prices.clear()

    assert await monitor.run_tick(NOW) == []
    dual = await engine.portfolio.load()
    assert dual.silver.trades[0].status is TradeStatus.ACTIVE


async def test_quiet_tick_does_not_save(engine, monitor, store):
    await _open(engine)
    before = await engine.portfolio.load()

    assert await monitor.run_tick(NOW + timedelta(minutes=1)) == []
    after = await engine.portfolio.load()
    assert after.silver.updated_at == before.silver.updated_at
