"""
Adaptive Parameter Optimizer

Batch job над всей историей закрытых сделок (Silver + Gold).

Для каждого измерения считается optimal значение из win-rate buckets,
затем применяется через adjust_param:
    new = clamp(old ± min(|optimal − old|, old × MAX_ADJUSTMENT_RATE), min, max)

Измерения:
- AI weights (win rate 50% ≈ 1.0)
- alert confidence floor
- min R:R (+ gold вариант)
- symbol blacklist / blocked regimes
- loss streak pause
- ADX floor

Никогда не бросает на пустых данных - возвращает "waiting" отчёт.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from config.cache_config import CacheTTL
from src.cache.base import DocumentStore
from src.cache.cache_keys import StoreKeys
from src.core.enums import Direction, TradeResult
from src.learning.bucketizer import (
    BucketStats,
    bucketize,
    get_confidence_bucket,
    get_rr_bucket,
    is_win,
)
from src.learning.constants import (
    ADX_HIGH_WIN_RATE,
    ADX_LOW_WIN_RATE,
    ADX_LOWER_STEP,
    ADX_RAISE_STEP,
    AI_WEIGHT_MIN_TRADES,
    ALWAYS_BLOCKED_REGIMES,
    BOUNDS,
    CONFIDENCE_BUCKET_MIN_TRADES,
    CONFIDENCE_BUCKET_MIN_WIN_RATE,
    GOLD_RR_RATIO,
    LOSS_STREAK_LIMIT,
    LOSS_STREAK_PAUSE_HOURS,
    MAX_ADJUSTMENT_RATE,
    MIN_TRADES,
    OPTIMIZATION_LOG_SIZE,
    REGIME_MAX_WIN_RATE,
    REGIME_MIN_TRADES,
    RR_HIGH_MIN_TRADES,
    RR_LOW_MIN_TRADES,
    RR_LOW_MIN_WIN_RATE,
    RR_MID_MIN_TRADES,
    RR_MID_MIN_WIN_RATE,
    RR_OPTIMAL,
    SYMBOL_MAX_WIN_RATE,
    SYMBOL_MIN_TRADES,
    ParamBounds,
)
from src.learning.optimization_config import (
    DirectionStats,
    OptimizationConfig,
    load_optimization_config,
    save_optimization_config,
    default_optimization_config,
)
from src.services.consensus.models import risk_reward
from src.services.portfolio.models import DualPortfolio, Trade


def adjust_param(
    current: float,
    optimal: float,
    bounds: ParamBounds,
    max_rate: float = MAX_ADJUSTMENT_RATE,
) -> float:
    """
    Сдвинуть параметр к optimal не больше чем на current × max_rate,
    затем зажать в bounds. Результат - 2 знака, шаг округляется вниз,
    поэтому лимит изменения не превышается.

    >>> adjust_param(1.0, 0.66, BOUNDS["ai_weight"])
    0.8
    """
    current = bounds.clamp(current)
    max_delta = abs(current) * max_rate
    step = min(abs(optimal - current), max_delta)
    step = math.floor(step * 100 + 1e-9) / 100
    direction = 1 if optimal > current else -1
    return round(bounds.clamp(round(current + direction * step, 2)), 2)


# =============================================================================
# ANALYZERS
# =============================================================================


def trade_risk_reward(trade: Trade) -> float:
    """R:R по исходному стопу (до breakeven/trailing)."""
    stop = trade.original_stop_loss if trade.original_stop_loss is not None else trade.stop_loss
    return risk_reward(trade.entry, stop, trade.take_profit)


def analyze_ai_weights(
    trades: Sequence[Trade], known_sources: Sequence[str] = ()
) -> Tuple[Dict[str, float], Dict[str, BucketStats], List[str]]:
    """
    Optimal вес каждой модели: round(round(win_rate, 2) × 2, 2).
    Меньше AI_WEIGHT_MIN_TRADES сделок → 1.0.
    """
    stats: Dict[str, BucketStats] = {source: BucketStats() for source in known_sources}
    for trade in trades:
        for source in trade.ai_sources:
            stats.setdefault(source, BucketStats()).add(is_win(trade), trade.pnl)

    weights: Dict[str, float] = {}
    reasons: List[str] = []
    for source, s in sorted(stats.items()):
        if s.total < AI_WEIGHT_MIN_TRADES:
            weights[source] = BOUNDS["ai_weight"].default
            reasons.append(
                f"{source}: {s.total} trades (need {AI_WEIGHT_MIN_TRADES}+), keeping weight at 1.0"
            )
            continue
        win_rate = round(s.win_rate, 2)
        weights[source] = round(win_rate * 2, 2)
        reasons.append(
            f"{source}: {s.wins}W/{s.losses}L ({round(s.win_rate * 100)}%) → weight {weights[source]}"
        )
    return weights, stats, reasons


def analyze_confidence(trades: Sequence[Trade]) -> Tuple[float, Dict[int, BucketStats]]:
    """
    Самый низкий confidence bucket, который ещё держит win rate
    ≥ CONFIDENCE_BUCKET_MIN_WIN_RATE на ≥ CONFIDENCE_BUCKET_MIN_TRADES сделках.
    """
    buckets = bucketize(trades, lambda t: get_confidence_bucket(t.confidence))
    optimal = BOUNDS["alert_confidence"].default
    best_win_rate = 0.0
    for conf in sorted(buckets):
        b = buckets[conf]
        if b.total >= CONFIDENCE_BUCKET_MIN_TRADES and b.win_rate >= CONFIDENCE_BUCKET_MIN_WIN_RATE:
            if conf < optimal or b.win_rate > best_win_rate:
                optimal = conf
                best_win_rate = b.win_rate
    return float(optimal), buckets


def analyze_risk_reward(trades: Sequence[Trade]) -> Tuple[float, Dict[str, BucketStats]]:
    buckets = {"low": BucketStats(), "mid": BucketStats(), "high": BucketStats()}
    for trade in trades:
        buckets[get_rr_bucket(trade_risk_reward(trade))].add(is_win(trade), trade.pnl)

    low, mid, high = buckets["low"], buckets["mid"], buckets["high"]
    optimal = BOUNDS["min_risk_reward"].default
    if low.total >= RR_LOW_MIN_TRADES and low.win_rate >= RR_LOW_MIN_WIN_RATE:
        optimal = RR_OPTIMAL["low"]
    elif mid.total >= RR_MID_MIN_TRADES and mid.win_rate >= RR_MID_MIN_WIN_RATE:
        optimal = RR_OPTIMAL["mid"]
    elif high.total >= RR_HIGH_MIN_TRADES:
        optimal = RR_OPTIMAL["high"]
    return optimal, buckets


def analyze_symbols(trades: Sequence[Trade]) -> Tuple[List[str], Dict[str, BucketStats]]:
    stats = bucketize(trades, lambda t: t.symbol)
    blacklist = sorted(
        symbol for symbol, s in stats.items()
        if s.total >= SYMBOL_MIN_TRADES and s.win_rate < SYMBOL_MAX_WIN_RATE
    )
    return blacklist, stats


def analyze_regimes(trades: Sequence[Trade]) -> Tuple[List[str], Dict[str, BucketStats]]:
    stats = bucketize(trades, lambda t: t.regime or "UNKNOWN")
    blocked = list(ALWAYS_BLOCKED_REGIMES)
    for regime, s in sorted(stats.items()):
        if regime in blocked:
            continue
        if s.total >= REGIME_MIN_TRADES and s.win_rate < REGIME_MAX_WIN_RATE:
            blocked.append(regime)
    return blocked, stats


def analyze_direction(trades: Sequence[Trade]) -> Dict[str, DirectionStats]:
    stats = bucketize(trades, lambda t: t.direction.value)
    result = {}
    for direction in (Direction.LONG.value, Direction.SHORT.value):
        s = stats.get(direction, BucketStats())
        result[direction] = DirectionStats(trades=s.total, wins=s.wins, win_rate=round(s.win_rate, 4))
    return result


def analyze_loss_streak(trades: Sequence[Trade]) -> int:
    """Число подряд идущих поражений с конца истории."""
    streak = 0
    for trade in sorted(
        (t for t in trades if t.closed_at is not None),
        key=lambda t: t.closed_at,
        reverse=True,
    ):
        if trade.result is TradeResult.WIN:
            break
        streak += 1
    return streak


# =============================================================================
# OPTIMIZATION CYCLE
# =============================================================================


@dataclass
class OptimizationResult:
    config: OptimizationConfig
    report: str
    changes: List[str] = field(default_factory=list)
    deltas: Dict[str, Tuple[float, float]] = field(default_factory=dict)
    log_entry: Optional[dict] = None
    waiting: bool = False


def _track(name: str, old: float, new: float, threshold: float,
           changes: List[str], deltas: Dict[str, Tuple[float, float]], label: str) -> None:
    if new != old:
        deltas[name] = (old, new)
    if abs(new - old) > threshold:
        changes.append(f"{label}: {old} → {new}")


def optimize(
    config: OptimizationConfig,
    trades: Sequence[Trade],
    now: datetime,
    known_sources: Sequence[str] = (),
    tier_counts: Tuple[int, int] = (0, 0),
) -> OptimizationResult:
    """
    Один цикл оптимизации (чистая функция).

    Args:
        config: текущий конфиг (не мутируется)
        trades: закрытые сделки WIN/LOSS обоих портфелей
        now: момент цикла
        known_sources: модели, которые должны получить вес даже без сделок
        tier_counts: (silver, gold) число сделок для отчёта

    Returns:
        OptimizationResult
    """
    cfg = config.model_copy(deep=True)
    total = len(trades)

    if total < MIN_TRADES:
        report = f"Need {MIN_TRADES} closed trades to start optimizing. Currently have {total}."
        cfg.trades_analyzed = total
        cfg.last_optimized = now
        cfg.last_report = report
        if cfg.paused_until is not None and now >= cfg.paused_until:
            cfg.paused_until = None
            cfg.pause_reason = None
        return OptimizationResult(config=cfg, report=report, waiting=True)

    changes: List[str] = []
    deltas: Dict[str, Tuple[float, float]] = {}

    # 1. AI weights
    optimal_weights, ai_stats, ai_reasons = analyze_ai_weights(trades, known_sources)
    for source, optimal in optimal_weights.items():
        old = cfg.weight_for(source)
        new = adjust_param(old, optimal, BOUNDS["ai_weight"])
        cfg.ai_weights[source] = new
        _track(f"ai_weight:{source}", old, new, 0.05, changes, deltas, f"AI weight {source}")

    # 2. Confidence floor
    optimal_conf, _ = analyze_confidence(trades)
    old = cfg.alert_confidence
    cfg.alert_confidence = adjust_param(old, optimal_conf, BOUNDS["alert_confidence"])
    _track("alert_confidence", old, cfg.alert_confidence, 1, changes, deltas, "Min confidence")

    # 3. Risk:reward (+ gold always ≤ silver)
    optimal_rr, _ = analyze_risk_reward(trades)
    old = cfg.min_risk_reward
    cfg.min_risk_reward = adjust_param(old, optimal_rr, BOUNDS["min_risk_reward"])
    _track("min_risk_reward", old, cfg.min_risk_reward, 0.1, changes, deltas, "Min R:R")

    old = cfg.min_risk_reward_gold
    cfg.min_risk_reward_gold = min(
        cfg.min_risk_reward,
        adjust_param(old, cfg.min_risk_reward * GOLD_RR_RATIO, BOUNDS["min_risk_reward_gold"]),
    )
    _track("min_risk_reward_gold", old, cfg.min_risk_reward_gold, 0.1, changes, deltas, "Min R:R gold")

    # 4. Symbols
    blacklist, _ = analyze_symbols(trades)
    added = [s for s in blacklist if s not in cfg.blacklisted_symbols]
    cfg.blacklisted_symbols = blacklist
    if added:
        changes.append(f"Blacklisted symbols: {', '.join(added)}")

    # 5. Regimes
    blocked, _ = analyze_regimes(trades)
    added = [r for r in blocked if r not in cfg.blocked_regimes]
    cfg.blocked_regimes = blocked
    if added:
        changes.append(f"Blocked regimes: added {', '.join(added)}")

    # 6. Direction
    cfg.direction_stats = analyze_direction(trades)

    # 7. Loss streak pause
    loss_streak = analyze_loss_streak(trades)
    if loss_streak >= LOSS_STREAK_LIMIT:
        cfg.paused_until = now + timedelta(hours=LOSS_STREAK_PAUSE_HOURS)
        cfg.pause_reason = f"{loss_streak} consecutive losses"
        changes.append(
            f"PAUSE: {loss_streak} consecutive losses, pausing for {LOSS_STREAK_PAUSE_HOURS} hours"
        )
    elif cfg.paused_until is not None and now >= cfg.paused_until:
        cfg.paused_until = None
        cfg.pause_reason = None
        changes.append("RESUME: Pause period expired")

    # 8. ADX floor
    wins = sum(1 for t in trades if is_win(t))
    overall_wr = wins / total
    old = cfg.min_adx
    if overall_wr < ADX_LOW_WIN_RATE:
        cfg.min_adx = adjust_param(old, old + ADX_RAISE_STEP, BOUNDS["min_adx"])
    elif overall_wr > ADX_HIGH_WIN_RATE:
        cfg.min_adx = adjust_param(old, old - ADX_LOWER_STEP, BOUNDS["min_adx"])
    _track("min_adx", old, cfg.min_adx, 0, changes, deltas, "ADX threshold")

    total_pnl = round(sum(t.pnl for t in trades), 2)
    cfg.cycles += 1
    cfg.trades_analyzed = total
    cfg.last_optimized = now

    silver, gold = tier_counts
    lines = [
        f"=== OPTIMIZATION REPORT (Cycle #{cfg.cycles}) ===",
        f"Trades analyzed: {total} ({silver}S/{gold}G)",
        f"Overall: {wins}W / {total - wins}L ({round(overall_wr * 100)}%)",
        f"Total P&L: ${total_pnl:.2f}",
        "",
        "AI Performance:",
        *ai_reasons,
        "",
        f"Confidence threshold: {cfg.alert_confidence}",
        f"Min R:R: {cfg.min_risk_reward} (Gold: {cfg.min_risk_reward_gold})",
        f"ADX threshold: {cfg.min_adx}",
        f"Blocked regimes: {', '.join(cfg.blocked_regimes)}",
        f"Symbol blacklist: {', '.join(cfg.blacklisted_symbols) or 'none'}",
        f"Loss streak: {loss_streak}{' (PAUSED)' if cfg.is_paused(now) else ''}",
        "",
        "Changes this cycle:" if changes else "No parameter changes this cycle.",
        *changes,
    ]
    report = "\n".join(lines)
    cfg.last_report = report

    log_entry = {
        "timestamp": now.isoformat(),
        "cycle": cfg.cycles,
        "trades": total,
        "win_rate": round(overall_wr * 100),
        "pnl": total_pnl,
        "changes": changes,
        "deltas": {k: {"old": v[0], "new": v[1]} for k, v in deltas.items()},
        "ai_weights": dict(cfg.ai_weights),
    }
    return OptimizationResult(
        config=cfg, report=report, changes=changes, deltas=deltas, log_entry=log_entry
    )


class AdaptiveOptimizer:
    """Store-backed цикл: load config + trades → optimize → save + audit log."""

    def __init__(self, store: DocumentStore, known_sources: Sequence[str] = ()):
        self.store = store
        self.known_sources = list(known_sources)

    async def load_trades(self) -> Tuple[List[Trade], Tuple[int, int]]:
        from src.services.portfolio.manager import PortfolioManager

        dual: DualPortfolio = await PortfolioManager(self.store).load()
        silver = dual.silver.closed_trades()
        gold = dual.gold.closed_trades()
        return silver + gold, (len(silver), len(gold))

    async def run(self, now: Optional[datetime] = None) -> OptimizationResult:
        now = now or datetime.now(UTC)
        config = await load_optimization_config(self.store)
        trades, tier_counts = await self.load_trades()

        # модели из shadow stats получают вес даже без реальных сделок
        from src.services.portfolio.shadow import ShadowTracker

        ai_stats = await ShadowTracker(self.store).load_stats()
        sources = list(dict.fromkeys([*self.known_sources, *ai_stats.models]))

        result = optimize(config, trades, now, sources, tier_counts)
        await save_optimization_config(self.store, result.config)

        if result.log_entry is not None:
            log = await self.get_log()
            log.insert(0, result.log_entry)
            await self.store.set(
                StoreKeys.OPTIMIZATION_LOG,
                log[:OPTIMIZATION_LOG_SIZE],
                ttl=CacheTTL.OPTIMIZATION,
            )
            logger.info(
                f"🧠 Optimizer cycle #{result.config.cycles}: {len(trades)} trades, "
                f"{len(result.changes)} changes"
            )
        else:
            logger.info(f"🧠 Optimizer waiting: {result.report}")
        return result

    async def get_log(self) -> list:
        log = await self.store.get(StoreKeys.OPTIMIZATION_LOG, default=[])
        return log if isinstance(log, list) else []

    async def reset(self) -> OptimizationConfig:
        config = default_optimization_config()
        await self.store.delete(StoreKeys.OPTIMIZATION_CONFIG)
        await self.store.delete(StoreKeys.OPTIMIZATION_LOG)
        logger.warning("Optimization config reset to defaults")
        return config
