"""
Risk Sizing

Чистая функция adjusted_risk: Kelly base × anti-martingale × regime × confidence,
с жёстким потолком. Без side effects, детерминирована.

Example:
    >>> adjusted_risk(18.0, [], 0, "TRENDING_UP", 80).risk_pct
    19.8
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from config.trading_config import TradingConfig, get_trading_config


PnlLike = Union[float, int, object]


@dataclass(frozen=True)
class RiskBreakdown:
    risk_pct: float
    kelly_risk: float
    streak_multiplier: float
    regime_multiplier: float
    confidence_multiplier: float
    confidence_label: str
    was_capped: bool


def _pnl(item: PnlLike) -> float:
    if isinstance(item, (int, float)):
        return float(item)
    return float(getattr(item, "pnl"))


def kelly_risk(closed_trades: Iterable[PnlLike], base_risk: float,
               config: Optional[TradingConfig] = None) -> float:
    """
    Half-Kelly в % баланса.

    Меньше kelly.min_trades закрытых сделок → base_risk.
    f* = (b·p − q) / b, b = avg_win / avg_loss.
    """
    kelly = (config or get_trading_config()).kelly
    pnls = [_pnl(t) for t in closed_trades]
    if len(pnls) < kelly.min_trades:
        return base_risk

    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p <= 0]
    win_rate = len(wins) / len(pnls)
    avg_win = sum(wins) / len(wins) if wins else 0.0
    avg_loss = abs(sum(losses) / len(losses)) if losses else 1.0
    ratio = avg_win / avg_loss if avg_loss > 0 else 1.0

    full = (ratio * win_rate - (1 - win_rate)) / max(ratio, 0.01)
    half = max(0.0, full * kelly.fraction) * 100
    return max(kelly.floor_pct, min(half, base_risk * kelly.max_multiplier))


def streak_multiplier(win_streak: int, config: Optional[TradingConfig] = None) -> float:
    am = (config or get_trading_config()).anti_martingale
    return min(1 + max(win_streak, 0) * am.step_per_win, am.max_multiplier)


def regime_multiplier(regime: Optional[str], config: Optional[TradingConfig] = None) -> float:
    cfg = config or get_trading_config()
    if regime is None:
        return 1.0
    return cfg.regime_multipliers.get(str(getattr(regime, "value", regime)), 1.0)


def confidence_multiplier(confidence: float, config: Optional[TradingConfig] = None):
    """(multiplier, label) по таблице confidence scaling."""
    cfg = config or get_trading_config()
    labels = ("ULTRA", "HIGH", "BASE")
    for (threshold, multiplier), label in zip(cfg.confidence_scaling, labels):
        if confidence >= threshold:
            return multiplier, label
    return cfg.confidence_scaling_floor, "LOW"


def adjusted_risk(
    base_risk: float,
    closed_trades: Iterable[PnlLike],
    win_streak: int,
    regime: Optional[str],
    confidence: float,
    config: Optional[TradingConfig] = None,
) -> RiskBreakdown:
    """
    Итоговый риск в % баланса.

    Args:
        base_risk: базовый риск tier, %
        closed_trades: PnL закрытых сделок (числа или объекты с .pnl)
        win_streak: текущая серия побед
        regime: MarketRegime / str
        confidence: confidence сигнала 0..100
        config: TradingConfig (по умолчанию singleton)

    Returns:
        RiskBreakdown (risk_pct ≤ max_risk_pct)
    """
    cfg = config or get_trading_config()
    kelly = kelly_risk(closed_trades, base_risk, cfg)
    streak = streak_multiplier(win_streak, cfg)
    regime_mult = regime_multiplier(regime, cfg)
    conf_mult, label = confidence_multiplier(confidence, cfg)

    raw = kelly * streak * regime_mult * conf_mult
    capped = min(raw, cfg.max_risk_pct)
    return RiskBreakdown(
        risk_pct=round(capped, 4),
        kelly_risk=round(kelly, 4),
        streak_multiplier=streak,
        regime_multiplier=regime_mult,
        confidence_multiplier=conf_mult,
        confidence_label=label,
        was_capped=raw > cfg.max_risk_pct,
    )
