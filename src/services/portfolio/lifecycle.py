"""
Position Lifecycle

Чистые reducers: (trade, price, now) → (new_trade, events).
Входной объект не мутируется; повторный прогон на том же снимке цены
ничего не меняет (CLOSED и уже поставленные partial flags - no-op).

Порядок за тик:
0. PENDING_ENTRY: expiry 48h / касание entry (продолжаем тот же тик)
1. breakeven / trailing (ratchet, стоп не ослабевает)
2. stop-loss по текущему стопу → закрыть остаток (SL проверяется до TP)
3. partial TP ladder: все пересечённые уровни по порядку, каждый один раз
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from config.trading_config import PortfolioLimits, TierConfig
from src.core.enums import CloseReason, Direction, TradeResult, TradeStatus
from src.services.portfolio.models import Fill, Trade


DEFAULT_LADDER: Tuple[Tuple[float, float], ...] = ((0.5, 0.4), (0.75, 0.3), (1.0, 0.3))

SIZE_PRECISION = 8


@dataclass
class LifecycleEvent:
    """Что произошло со сделкой за тик."""
    kind: str                  # entry_filled | stop_moved | partial_tp | closed | expired
    trade_id: str
    symbol: str
    price: float
    pnl: float = 0.0           # реализованный PnL этого события
    detail: dict = field(default_factory=dict)


@dataclass
class LifecycleParams:
    tier: TierConfig
    ladder: Sequence[Tuple[float, float]] = DEFAULT_LADDER
    limits: PortfolioLimits = field(default_factory=PortfolioLimits)


def progress_to_target(trade: Trade, price: float) -> float:
    """Доля пути entry → TP (может быть <0 и >1)."""
    distance = abs(trade.take_profit - trade.entry)
    if distance <= 0:
        return 0.0
    return trade.direction.sign * (price - trade.entry) / distance


def _more_favorable(direction: Direction, candidate: float, current: float) -> bool:
    if direction is Direction.LONG:
        return candidate > current
    return candidate < current


def _stop_hit(direction: Direction, price: float, stop: float) -> bool:
    if direction is Direction.LONG:
        return price <= stop
    return price >= stop


def _slice_pnl(trade: Trade, exit_price: float, size: float) -> float:
    return trade.direction.sign * (exit_price - trade.entry) / trade.entry * size


def _advance_status(trade: Trade, status: TradeStatus) -> None:
    if status.rank > trade.status.rank:
        trade.status = status


def _close(trade: Trade, price: float, now: datetime, reason: CloseReason, level: int,
           events: List[LifecycleEvent]) -> None:
    size = round(trade.remaining_size, SIZE_PRECISION)
    pnl = _slice_pnl(trade, price, size) if size > 0 else 0.0
    if size > 0:
        trade.fills.append(Fill(level=level, size=size, price=price, pnl=pnl, at=now))
    trade.remaining_size = 0.0
    trade.pnl = trade.partial_pnl + pnl
    trade.exit_price = price
    trade.closed_at = now
    trade.closed_by = reason
    trade.result = TradeResult.WIN if trade.pnl >= 0 else TradeResult.LOSS
    trade.status = TradeStatus.CLOSED
    events.append(LifecycleEvent(
        kind="closed", trade_id=trade.id, symbol=trade.symbol, price=price, pnl=pnl,
        detail={"reason": reason.value, "result": trade.result.value, "total_pnl": trade.pnl},
    ))


def _stop_reason(trade: Trade) -> CloseReason:
    if trade.original_stop_loss is None or trade.stop_loss == trade.original_stop_loss:
        return CloseReason.STOP_LOSS
    if trade.stop_loss == trade.entry:
        return CloseReason.BREAKEVEN
    return CloseReason.TRAILING_STOP


def _move_stop(trade: Trade, candidate: float, events: List[LifecycleEvent], why: str) -> None:
    if trade.original_stop_loss is None:
        trade.original_stop_loss = trade.stop_loss
    old = trade.stop_loss
    trade.stop_loss = candidate
    trade.is_trailing = True
    if candidate == trade.entry:
        trade.breakeven_moved = True
    events.append(LifecycleEvent(
        kind="stop_moved", trade_id=trade.id, symbol=trade.symbol, price=candidate,
        detail={"from": old, "to": candidate, "why": why},
    ))


def update_trailing_stop(trade: Trade, price: float, tier: TierConfig,
                         events: List[LifecycleEvent]) -> None:
    """
    Breakeven на breakeven_threshold, trailing на trail_activation.

    Кандидат trailing = price ∓ trail% × entry, не хуже entry.
    Стоп переносится только если кандидат строго выгоднее текущего.
    """
    progress = progress_to_target(trade, price)
    if progress < tier.breakeven_threshold:
        return

    candidate = trade.entry
    why = "breakeven"
    if progress >= tier.trail_activation:
        trail = price - trade.direction.sign * tier.trail_pct / 100 * trade.entry
        if trade.direction is Direction.LONG:
            trail = max(trail, trade.entry)
        else:
            trail = min(trail, trade.entry)
        if trail != trade.entry:
            candidate = round(trail, SIZE_PRECISION)
            why = "trailing"

    if _more_favorable(trade.direction, candidate, trade.stop_loss):
        _move_stop(trade, candidate, events, why)


def apply_partial_ladder(trade: Trade, price: float, now: datetime,
                         ladder: Sequence[Tuple[float, float]],
                         events: List[LifecycleEvent]) -> None:
    distance = abs(trade.take_profit - trade.entry)
    last = len(ladder)

    for level, (fraction, size_ratio) in enumerate(ladder, start=1):
        if trade.is_closed:
            return
        if trade.partial_flags.is_set(level):
            continue

        level_price = round(trade.entry + trade.direction.sign * fraction * distance, SIZE_PRECISION)
        reached = price >= level_price if trade.direction is Direction.LONG else price <= level_price
        if not reached:
            return

        trade.partial_flags.mark(level)

        if level == last:
            _close(trade, level_price, now, CloseReason.TAKE_PROFIT, level, events)
            return

        slice_size = round(min(trade.size * size_ratio, trade.remaining_size), SIZE_PRECISION)
        pnl = _slice_pnl(trade, level_price, slice_size)
        trade.fills.append(Fill(level=level, size=slice_size, price=level_price, pnl=pnl, at=now))
        trade.remaining_size = round(trade.remaining_size - slice_size, SIZE_PRECISION)
        trade.partial_pnl += pnl
        _advance_status(trade, TradeStatus[f"PARTIAL_TP{level}"])
        events.append(LifecycleEvent(
            kind="partial_tp", trade_id=trade.id, symbol=trade.symbol, price=level_price, pnl=pnl,
            detail={"level": level, "size": slice_size, "remaining": trade.remaining_size},
        ))

        if level == 1 and _more_favorable(trade.direction, trade.entry, trade.stop_loss):
            _move_stop(trade, trade.entry, events, "tp1")

        if trade.remaining_size <= 0:
            _close(trade, level_price, now, CloseReason.TAKE_PROFIT, level, events)
            return


def _entry_touched(trade: Trade, price: float, tolerance_pct: float) -> bool:
    return abs(price - trade.entry) / trade.entry * 100 <= tolerance_pct


def advance_trade(trade: Trade, price: float, now: datetime,
                  params: LifecycleParams) -> Tuple[Trade, List[LifecycleEvent]]:
    """
    Один тик lifecycle.

    Args:
        trade: текущее состояние (не мутируется)
        price: текущая цена символа
        now: момент тика
        params: tier / ladder / limits

    Returns:
        (новое состояние, события); для CLOSED - (тот же trade, [])
    """
    if trade.is_closed or price is None or price <= 0:
        return trade, []

    t = trade.model_copy(deep=True)
    events: List[LifecycleEvent] = []

    if t.status is TradeStatus.PENDING_ENTRY:
        expiry = timedelta(hours=params.limits.pending_entry_expiry_hours)
        if now - t.opened_at >= expiry:
            t.status = TradeStatus.CLOSED
            t.result = TradeResult.EXPIRED
            t.closed_by = CloseReason.EXPIRED
            t.closed_at = now
            t.pnl = 0.0
            events.append(LifecycleEvent(kind="expired", trade_id=t.id, symbol=t.symbol, price=price))
            return t, events
        if not _entry_touched(t, price, params.limits.entry_touch_tolerance_pct):
            return trade, []
        t.status = TradeStatus.ACTIVE
        t.entry_filled_at = now
        events.append(LifecycleEvent(kind="entry_filled", trade_id=t.id, symbol=t.symbol, price=price))

    update_trailing_stop(t, price, params.tier, events)

    if _stop_hit(t.direction, price, t.stop_loss):
        _close(t, t.stop_loss, now, _stop_reason(t), 0, events)
        return t, events

    apply_partial_ladder(t, price, now, params.ladder, events)

    if not events:
        return trade, []
    for event in events:
        logger.debug(f"{t.symbol} [{t.id}] {event.kind} @ {event.price} pnl={event.pnl:.2f}")
    return t, events


def close_trade(trade: Trade, price: float, now: datetime,
                reason: CloseReason = CloseReason.MANUAL) -> Tuple[Trade, List[LifecycleEvent]]:
    """Закрыть остаток по цене. Повторный вызов на CLOSED - no-op."""
    if trade.is_closed:
        return trade, []
    t = trade.model_copy(deep=True)
    events: List[LifecycleEvent] = []
    if t.status is TradeStatus.PENDING_ENTRY:
        t.status = TradeStatus.CLOSED
        t.result = TradeResult.EXPIRED
        t.closed_by = reason
        t.closed_at = now
        events.append(LifecycleEvent(kind="expired", trade_id=t.id, symbol=t.symbol, price=price))
        return t, events
    _close(t, price, now, reason, 0, events)
    return t, events


def realized_delta(events: Sequence[LifecycleEvent]) -> float:
    """Сумма реализованного PnL за тик (для баланса)."""
    return sum(e.pnl for e in events if e.kind in ("partial_tp", "closed"))


def find_trade(trades: Sequence[Trade], trade_id: str) -> Optional[Trade]:
    for trade in trades:
        if trade.id == trade_id:
            return trade
    return None
