"""
Portfolio Stats

Пересчёт производной статистики после каждой мутации портфеля.
Drawdown - по equity history (peak-to-trough), как в learning drawdown.
"""
from datetime import datetime, timedelta
from typing import List, Sequence

import numpy as np

from config.trading_config import CircuitBreakerConfig
from src.core.enums import TradeResult
from src.services.portfolio.models import Portfolio, PortfolioStats, Trade


def max_drawdown_pct(balances: Sequence[float]) -> tuple:
    """
    (max drawdown %, current drawdown %, peak) по серии баланса.
    """
    if not balances:
        return 0.0, 0.0, 0.0
    equity = np.asarray(balances, dtype=float)
    running_max = np.maximum.accumulate(equity)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdown = np.where(running_max > 0, (running_max - equity) / running_max * 100, 0.0)
    return float(drawdown.max()), float(drawdown[-1]), float(running_max[-1])


def streaks(results: Sequence[TradeResult]) -> tuple:
    """(current, max_win, max_loss); current > 0 - серия побед."""
    current = 0
    max_win = 0
    max_loss = 0
    for result in results:
        if result is TradeResult.WIN:
            current = current + 1 if current > 0 else 1
            max_win = max(max_win, current)
        else:
            current = current - 1 if current < 0 else -1
            max_loss = max(max_loss, -current)
    return current, max_win, max_loss


def compute_stats(portfolio: Portfolio) -> PortfolioStats:
    closed = sorted(portfolio.closed_trades(), key=lambda t: t.closed_at)
    pnls = np.asarray([t.pnl for t in closed], dtype=float)
    wins = pnls[pnls >= 0] if len(pnls) else pnls
    losses = pnls[pnls < 0] if len(pnls) else pnls

    gross_win = float(wins.sum()) if len(wins) else 0.0
    gross_loss = float(abs(losses.sum())) if len(losses) else 0.0

    balances = [portfolio.initial_balance] + [p.balance for p in portfolio.equity_history]
    max_dd, current_dd, peak = max_drawdown_pct(balances)
    current, max_win, max_loss = streaks([t.result for t in closed])

    if gross_loss > 0:
        profit_factor = gross_win / gross_loss
    else:
        profit_factor = 999.0 if gross_win > 0 else 0.0

    sharpe = 0.0
    if len(pnls) > 1 and float(pnls.std(ddof=1)) > 0:
        sharpe = float(pnls.mean() / pnls.std(ddof=1))

    return PortfolioStats(
        total_trades=len(closed),
        wins=len(wins),
        losses=len(losses),
        expired=sum(1 for t in portfolio.trades if t.result is TradeResult.EXPIRED),
        open_trades=len(portfolio.open_trades()),
        win_rate=round(len(wins) / len(closed) * 100, 2) if closed else 0.0,
        total_pnl=round(float(pnls.sum()), 2) if len(pnls) else 0.0,
        avg_win=round(gross_win / len(wins), 2) if len(wins) else 0.0,
        avg_loss=round(-gross_loss / len(losses), 2) if len(losses) else 0.0,
        profit_factor=round(profit_factor, 2),
        expectancy=round(float(pnls.mean()), 2) if len(pnls) else 0.0,
        sharpe=round(sharpe, 3),
        max_drawdown=round(max_dd, 2),
        current_drawdown=round(current_dd, 2),
        peak_balance=round(peak, 2),
        current_streak=current,
        max_win_streak=max_win,
        max_loss_streak=max_loss,
    )


def update_kill_switch(portfolio: Portfolio, breakers: CircuitBreakerConfig) -> bool:
    """
    Drawdown kill switch с гистерезисом: включается на drawdown_kill,
    выключается только когда просадка ниже drawdown_recovery.
    """
    drawdown = portfolio.stats.current_drawdown / 100
    if not portfolio.kill_switch and drawdown >= breakers.drawdown_kill:
        portfolio.kill_switch = True
    elif portfolio.kill_switch and drawdown < breakers.drawdown_recovery:
        portfolio.kill_switch = False
    return portfolio.kill_switch


def realized_since(trades: Sequence[Trade], since: datetime) -> float:
    """Реализованный PnL (включая partial fills) начиная с момента."""
    total = 0.0
    for trade in trades:
        for fill in trade.fills:
            if fill.at >= since:
                total += fill.pnl
    return total


def loss_windows(trades: Sequence[Trade], now: datetime) -> List[float]:
    """[daily PnL, weekly PnL]"""
    return [
        realized_since(trades, now - timedelta(days=1)),
        realized_since(trades, now - timedelta(days=7)),
    ]
