"""
Tests for the dual portfolio: opening guards, ticks, stats and windows
"""
from datetime import timedelta

import pytest

from config.trading_config import TradingConfig
from src.core.enums import Direction, Tier, TradeResult, TradeStatus
from src.core.exceptions import TradeRejectedError
from src.services.portfolio.manager import (
    PortfolioManager,
    apply_tick,
    new_dual_portfolio,
    open_trade,
    refresh,
)
from src.services.portfolio.stats import compute_stats, max_drawdown_pct, streaks, update_kill_switch

from factories import NOW, make_closed_trade, make_signal, make_trade


@pytest.fixture
def config():
    return TradingConfig()


def test_open_trade_sizes_by_risk(config):
    dual, trade, risk = open_trade(new_dual_portfolio(config), make_signal(), NOW, config)

    assert risk.risk_pct == pytest.approx(18.0)
    assert trade.size == pytest.approx(5000 * 0.18 * 5)
    assert trade.remaining_size == trade.size
    assert trade.status is TradeStatus.ACTIVE
    assert dual.silver.trades == [trade]
    assert dual.silver.equity_history[-1].balance == 5000


def test_gold_signal_opens_in_gold(config):
    signal = make_signal(tier=Tier.GOLD, ai_sources=["a", "b", "c"])
    dual, trade, _ = open_trade(new_dual_portfolio(config), signal, NOW, config)

    assert trade.leverage == 7
    assert dual.gold.trades == [trade]
    assert dual.silver.trades == []


def test_open_does_not_mutate_input(config):
    dual = new_dual_portfolio(config)
    open_trade(dual, make_signal(), NOW, config)
    assert dual.silver.trades == []


def test_duplicate_symbol_rejected(config):
    dual, _, _ = open_trade(new_dual_portfolio(config), make_signal(), NOW, config)
    with pytest.raises(TradeRejectedError) as exc:
        open_trade(dual, make_signal(), NOW, config)
    assert exc.value.reason == "duplicate_symbol"


def test_correlation_group_allows_two_open_trades(config):
    dual, _, _ = open_trade(new_dual_portfolio(config), make_signal(), NOW, config)
    eth = make_signal(symbol="ETHUSDT", entry=2000, stop_loss=1940, take_profit=2120)
    dual, trade, _ = open_trade(dual, eth, NOW, config)

    assert trade.symbol == "ETHUSDT"
    assert [t.symbol for t in dual.silver.live_trades()] == ["BTCUSDT", "ETHUSDT"]


def test_correlated_symbol_rejected(config):
    dual = new_dual_portfolio(config)
    for symbol in ("SOLUSDT", "AVAXUSDT"):
        dual, _, _ = open_trade(dual, make_signal(symbol=symbol), NOW, config)

    with pytest.raises(TradeRejectedError) as exc:
        open_trade(dual, make_signal(symbol="SUIUSDT"), NOW, config)
    assert exc.value.reason == "correlation_conflict"


def test_exposure_limit(config):
    dual = new_dual_portfolio(config)
    symbols = ["BTCUSDT", "SOLUSDT", "DOGEUSDT", "ARBUSDT"]
    for symbol in symbols[:3]:
        dual, _, _ = open_trade(dual, make_signal(symbol=symbol), NOW, config)

    with pytest.raises(TradeRejectedError) as exc:
        open_trade(dual, make_signal(symbol=symbols[3]), NOW, config)
    assert exc.value.reason == "max_exposure"


def test_kill_switch_blocks_new_trades(config):
    dual = new_dual_portfolio(config)
    dual.silver.kill_switch = True
    with pytest.raises(TradeRejectedError) as exc:
        open_trade(dual, make_signal(), NOW, config)
    assert exc.value.reason == "drawdown_kill_switch"


def test_daily_circuit_breaker(config):
    dual = new_dual_portfolio(config)
    loser = make_closed_trade("LOSS", symbol="XRPUSDT", pnl=-300.0, closed_at=NOW - timedelta(hours=2),
                              fills=[{"level": 0, "size": 1000, "price": 70, "pnl": -300.0,
                                      "at": NOW - timedelta(hours=2)}])
    dual.silver.trades.append(loser)

    with pytest.raises(TradeRejectedError) as exc:
        open_trade(dual, make_signal(), NOW, config)
    assert exc.value.reason == "daily_circuit_breaker"


def test_apply_tick_updates_balance_and_stats(config):
    dual, trade, _ = open_trade(new_dual_portfolio(config), make_signal(), NOW, config)

    dual, events = apply_tick(dual, {"BTCUSDT": 96.0}, NOW + timedelta(minutes=1), config)

    assert [(tier, e.kind) for tier, e in events] == [(Tier.SILVER, "closed")]
    closed = dual.silver.trades[0]
    assert closed.result is TradeResult.LOSS
    assert dual.silver.balance == pytest.approx(5000 + closed.pnl)
    assert dual.silver.stats.losses == 1
    assert dual.silver.stats.max_drawdown > 0


def test_apply_tick_without_price_is_noop(config):
    dual, _, _ = open_trade(new_dual_portfolio(config), make_signal(), NOW, config)
    same, events = apply_tick(dual, {}, NOW, config)

    assert events == []
    assert same.silver.trades[0].status is TradeStatus.ACTIVE


def test_refresh_evicts_only_closed_trades(config):
    config.portfolio.max_trades = 2
    portfolio = new_dual_portfolio(config).silver
    portfolio.trades = [
        make_trade(symbol="A1USDT"),
        make_closed_trade(symbol="A2USDT"),
        make_closed_trade(symbol="A3USDT"),
        make_closed_trade(symbol="A4USDT"),
    ]
    refresh(portfolio, NOW, config)

    assert [t.symbol for t in portfolio.trades] == ["A1USDT", "A4USDT"]
    assert portfolio.trades[0].status is TradeStatus.ACTIVE


def test_refresh_keeps_open_trades_over_cap(config):
    config.portfolio.max_trades = 1
    portfolio = new_dual_portfolio(config).silver
    portfolio.trades = [
        make_trade(symbol="A1USDT"),
        make_closed_trade(result=None, symbol="A2USDT", status=TradeStatus.PARTIAL_TP1, remaining_size=600.0),
        make_closed_trade(symbol="A3USDT"),
    ]
    refresh(portfolio, NOW, config)

    assert [t.symbol for t in portfolio.trades] == ["A1USDT", "A2USDT"]


def test_stats_and_streaks():
    portfolio = new_dual_portfolio().silver
    portfolio.trades = [
        make_closed_trade("WIN", pnl=30.0, closed_at=NOW - timedelta(hours=4)),
        make_closed_trade("WIN", pnl=10.0, closed_at=NOW - timedelta(hours=3)),
        make_closed_trade("LOSS", pnl=-20.0, closed_at=NOW - timedelta(hours=2)),
        make_closed_trade("WIN", pnl=20.0, closed_at=NOW - timedelta(hours=1)),
    ]
    stats = compute_stats(portfolio)

    assert stats.total_trades == 4
    assert stats.win_rate == 75.0
    assert stats.total_pnl == 40.0
    assert stats.profit_factor == 3.0
    assert stats.avg_loss == -20.0
    assert stats.current_streak == 1
    assert stats.max_win_streak == 2
    assert portfolio.win_streak() == 1


def test_streaks_helper():
    W, L = TradeResult.WIN, TradeResult.LOSS
    assert streaks([W, L, L, L]) == (-3, 1, 3)
    assert streaks([]) == (0, 0, 0)


def test_drawdown_from_equity():
    max_dd, current_dd, peak = max_drawdown_pct([5000, 6000, 4500, 5400])

    assert max_dd == pytest.approx(25.0)
    assert current_dd == pytest.approx(10.0)
    assert peak == 6000


def test_kill_switch_hysteresis(config):
    portfolio = new_dual_portfolio(config).silver
    portfolio.stats.current_drawdown = 31.0
    assert update_kill_switch(portfolio, config.circuit_breakers)

    portfolio.stats.current_drawdown = 27.0
    assert update_kill_switch(portfolio, config.circuit_breakers)

    portfolio.stats.current_drawdown = 20.0
    assert not update_kill_switch(portfolio, config.circuit_breakers)


async def test_manager_roundtrip(store, config):
    manager = PortfolioManager(store, config)

    trade = await manager.open_from_signal(make_signal(direction=Direction.LONG), NOW)
    assert trade is not None
    assert await manager.live_symbols() == ["BTCUSDT"]

    assert await manager.open_from_signal(make_signal(), NOW) is None

    events = await manager.close(trade.id, 103.0, NOW)
    assert events[0][1].kind == "closed"
    assert await manager.live_symbols() == []


async def test_manager_pending_entry(store, config):
    manager = PortfolioManager(store, config)
    trade = await manager.open_from_signal(make_signal(), NOW, await_entry=True)

    assert trade.status is TradeStatus.PENDING_ENTRY
    events = await manager.monitor({"BTCUSDT": 100.0}, NOW + timedelta(minutes=1))
    assert [e.kind for _, e in events] == ["entry_filled"]


async def test_corrupt_portfolio_document_starts_fresh(store, config):
    from src.cache.cache_keys import StoreKeys

    await store.set(StoreKeys.PORTFOLIO, {"silver": {"tier": "platinum"}})
    dual = await PortfolioManager(store, config).load()
    assert dual.silver.balance == 5000
