"""
Backtest

Переигрывает закрытые сделки через lifecycle reducer с другой partial TP
лестницей и показывает, сколько бы дала (или забрала) эта лестница.

Путь цены восстанавливается из того, что сделка сохранила:
1. лучшая цена = самый выгодный fill или exit (максимум известного хода)
2. exit price
Если после пути сделка ещё открыта, остаток закрывается по exit price.
С дефолтной лестницей replay повторяет записанный PnL.
"""
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from config.trading_config import TradingConfig, get_trading_config
from src.core.enums import CloseReason, Direction, Tier, TradeStatus
from src.services.portfolio.lifecycle import advance_trade, close_trade
from src.services.portfolio.manager import PortfolioManager, lifecycle_params
from src.services.portfolio.models import PartialFlags, Trade


class BacktestParams(BaseModel):
    """Лестница partial TP: два промежуточных уровня, остаток на TP."""

    model_config = ConfigDict(populate_by_name=True)

    tp1_percent: float = Field(0.5, alias="tp1Percent", gt=0, lt=1)
    tp2_percent: float = Field(0.75, alias="tp2Percent", gt=0, lt=1)
    tp1_close_ratio: float = Field(0.4, alias="tp1CloseRatio", gt=0, lt=1)
    tp2_close_ratio: float = Field(0.3, alias="tp2CloseRatio", gt=0, lt=1)

    @model_validator(mode="after")
    def _check_ladder(self):
        if self.tp1_percent >= self.tp2_percent:
            raise ValueError("tp1Percent must be below tp2Percent")
        if self.tp1_close_ratio + self.tp2_close_ratio >= 1:
            raise ValueError("tp1CloseRatio + tp2CloseRatio must leave a remainder for TP3")
        return self

    @property
    def tp3_close_ratio(self) -> float:
        return round(1.0 - self.tp1_close_ratio - self.tp2_close_ratio, 8)

    def ladder(self) -> Tuple[Tuple[float, float], ...]:
        return (
            (self.tp1_percent, self.tp1_close_ratio),
            (self.tp2_percent, self.tp2_close_ratio),
            (1.0, self.tp3_close_ratio),
        )


@dataclass
class ReplayedTrade:
    symbol: str
    direction: str
    tier: str
    entry: float
    stop_loss: float
    take_profit: float
    exit_price: float
    original_pnl: float
    simulated_pnl: float
    improvement: float
    tp1_hit: bool
    tp2_hit: bool
    tp3_hit: bool


def _best_price(trade: Trade) -> float:
    prices = [f.price for f in trade.fills] + [trade.exit_price]
    return max(prices) if trade.direction is Direction.LONG else min(prices)


def _fresh_copy(trade: Trade) -> Trade:
    """Сделка в состоянии сразу после входа."""
    return trade.model_copy(deep=True, update={
        "stop_loss": trade.original_stop_loss or trade.stop_loss,
        "original_stop_loss": None,
        "remaining_size": trade.size,
        "status": TradeStatus.ACTIVE,
        "partial_flags": PartialFlags(),
        "fills": [],
        "partial_pnl": 0.0,
        "is_trailing": False,
        "breakeven_moved": False,
        "closed_at": None,
        "exit_price": None,
        "pnl": 0.0,
        "result": None,
        "closed_by": None,
    })


def replay_trade(
    trade: Trade,
    params: Optional[BacktestParams] = None,
    config: Optional[TradingConfig] = None,
) -> Optional[ReplayedTrade]:
    """
    Переиграть одну закрытую сделку.

    Returns:
        ReplayedTrade или None если сделка не закрыта / без exit price
    """
    if not trade.is_closed or trade.exit_price is None:
        return None
    params = params or BacktestParams()
    cfg = config or get_trading_config()
    lifecycle = lifecycle_params(trade.tier, cfg)
    lifecycle.ladder = params.ladder()

    now = trade.closed_at or trade.opened_at
    replay = _fresh_copy(trade)
    for price in (_best_price(trade), trade.exit_price):
        replay, _ = advance_trade(replay, price, now, lifecycle)
    if not replay.is_closed:
        replay, _ = close_trade(replay, trade.exit_price, now, CloseReason.MANUAL)

    flags = replay.partial_flags
    return ReplayedTrade(
        symbol=trade.symbol,
        direction=trade.direction.value,
        tier=trade.tier.value,
        entry=trade.entry,
        stop_loss=replay.original_stop_loss or replay.stop_loss,
        take_profit=trade.take_profit,
        exit_price=trade.exit_price,
        original_pnl=round(trade.pnl, 2),
        simulated_pnl=round(replay.pnl, 2),
        improvement=round(replay.pnl - trade.pnl, 2),
        tp1_hit=flags.tp1,
        tp2_hit=flags.tp2,
        tp3_hit=flags.tp3,
    )


def _hit_rate(results: Sequence[ReplayedTrade], attr: str) -> int:
    if not results:
        return 0
    return round(sum(1 for r in results if getattr(r, attr)) / len(results) * 100)


def run_backtest(
    trades: Sequence[Trade],
    params: Optional[BacktestParams] = None,
    config: Optional[TradingConfig] = None,
) -> Dict[str, Any]:
    """Прогнать лестницу по всем закрытым сделкам."""
    params = params or BacktestParams()
    results = [r for r in (replay_trade(t, params, config) for t in trades) if r is not None]
    original = sum(t.pnl for t in trades if t.is_closed)
    simulated = sum(r.simulated_pnl for r in results)
    return {
        "params": params.model_dump(by_alias=True),
        "original_pnl": round(original, 2),
        "simulated_pnl": round(simulated, 2),
        "improvement": round(simulated - original, 2),
        "trades": len(results),
        "tp1_hit_rate": _hit_rate(results, "tp1_hit"),
        "tp2_hit_rate": _hit_rate(results, "tp2_hit"),
        "tp3_hit_rate": _hit_rate(results, "tp3_hit"),
        "results": [asdict(r) for r in results],
    }


def trading_session(trade: Trade) -> str:
    """UTC сессия открытия сделки."""
    hour = trade.opened_at.hour
    if hour < 8:
        return "Asian (00-08 UTC)"
    if hour < 13:
        return "European (08-13 UTC)"
    if hour < 21:
        return "US (13-21 UTC)"
    return "Late (21-00 UTC)"


def breakdown(trades: Sequence[Trade], key: Callable[[Trade], str], name: str) -> List[Dict[str, Any]]:
    """Win rate и PnL по измерению, по убыванию PnL."""
    groups: Dict[str, List[Trade]] = defaultdict(list)
    for trade in trades:
        groups[key(trade) or "unknown"].append(trade)

    rows = []
    for value, group in groups.items():
        total = sum(t.pnl for t in group)
        wins = sum(1 for t in group if t.pnl > 0)
        rows.append({
            name: value,
            "trades": len(group),
            "win_rate": round(wins / len(group) * 100),
            "total_pnl": round(total, 2),
            "avg_pnl": round(total / len(group), 2),
        })
    return sorted(rows, key=lambda row: row["total_pnl"], reverse=True)


def summarize(trades: Sequence[Trade], config: Optional[TradingConfig] = None) -> Dict[str, Any]:
    """Разбор закрытых сделок + replay дефолтной лестницы."""
    closed = [t for t in trades if t.is_closed and t.exit_price is not None]
    wins = [t for t in closed if t.pnl > 0]
    losses = [t for t in closed if t.pnl <= 0]
    total = sum(t.pnl for t in closed)
    simulation = run_backtest(closed, BacktestParams(), config)

    return {
        "summary": {
            "total_trades": len(closed),
            "wins": len(wins),
            "losses": len(losses),
            "win_rate": round(len(wins) / len(closed) * 100) if closed else 0,
            "total_pnl": round(total, 2),
            "avg_pnl": round(total / len(closed), 2) if closed else 0,
            "largest_win": round(max(t.pnl for t in wins), 2) if wins else 0,
            "largest_loss": round(min(t.pnl for t in losses), 2) if losses else 0,
            "partial_tp_simulation": {
                "total_pnl": simulation["simulated_pnl"],
                "improvement": simulation["improvement"],
            },
        },
        "by_symbol": breakdown(closed, lambda t: t.symbol, "symbol"),
        "by_direction": breakdown(closed, lambda t: t.direction.value, "direction"),
        "by_tier": breakdown(closed, lambda t: t.tier.value, "tier"),
        "by_ai": breakdown(closed, lambda t: "+".join(t.ai_sources), "ai_combo"),
        "by_session": breakdown(closed, trading_session, "session"),
        "recent_trades": [
            {
                "symbol": t.symbol,
                "direction": t.direction.value,
                "tier": t.tier.value,
                "entry": t.entry,
                "exit": t.exit_price,
                "pnl": round(t.pnl, 2),
                "ai_sources": t.ai_sources,
                "closed_by": t.closed_by.value if t.closed_by else None,
                "opened_at": t.opened_at.isoformat(),
            }
            for t in reversed(closed[-20:])
        ],
    }


class BacktestService:
    """Backtest по сделкам dual портфеля из store."""

    def __init__(self, portfolio: PortfolioManager, config: Optional[TradingConfig] = None):
        self.portfolio = portfolio
        self.config = config or get_trading_config()

    async def closed_trades(self) -> List[Trade]:
        dual = await self.portfolio.load()
        trades = []
        for tier in (Tier.SILVER, Tier.GOLD):
            trades.extend(t for t in dual.for_tier(tier).trades if t.is_closed and t.exit_price is not None)
        return trades

    async def summary(self) -> Dict[str, Any]:
        return summarize(await self.closed_trades(), self.config)

    async def run(self, params: BacktestParams) -> Dict[str, Any]:
        return run_backtest(await self.closed_trades(), params, self.config)
