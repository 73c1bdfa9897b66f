"""
Portfolio Manager

Открытие сделок из consensus сигналов и прогон lifecycle по ценам.

Pure часть - функции над DualPortfolio (open_trade, apply_tick, refresh).
PortfolioManager - тонкая обёртка: load → reducer → один save.
"""
from datetime import datetime, UTC
from typing import Dict, List, Mapping, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from config.cache_config import CacheTTL
from config.trading_config import TradingConfig, get_trading_config
from src.cache.base import DocumentStore
from src.cache.cache_keys import StoreKeys
from src.core.enums import CloseReason, Tier, TradeStatus
from src.core.exceptions import TradeRejectedError
from src.services.consensus.models import ConsensusSignal
from src.services.portfolio.lifecycle import (
    LifecycleEvent,
    LifecycleParams,
    advance_trade,
    close_trade,
    realized_delta,
)
from src.services.portfolio.models import DualPortfolio, EquityPoint, Portfolio, Trade
from src.services.portfolio.sizing import RiskBreakdown, adjusted_risk
from src.services.portfolio.stats import compute_stats, loss_windows, update_kill_switch


TierEvent = Tuple[Tier, LifecycleEvent]


def new_dual_portfolio(config: Optional[TradingConfig] = None) -> DualPortfolio:
    cfg = config or get_trading_config()
    balance = cfg.portfolio.initial_balance
    return DualPortfolio(
        silver=Portfolio(tier=Tier.SILVER, initial_balance=balance, balance=balance),
        gold=Portfolio(tier=Tier.GOLD, initial_balance=balance, balance=balance),
    )


def lifecycle_params(tier: Tier, config: TradingConfig) -> LifecycleParams:
    return LifecycleParams(
        tier=config.tier(tier.value),
        ladder=tuple(config.partial_take_profits),
        limits=config.portfolio,
    )


def refresh(portfolio: Portfolio, now: datetime, config: TradingConfig) -> Portfolio:
    """
    После мутации: equity point, обрезка окон, stats, kill switch.
    Вытесняются самые старые закрытые сделки; открытые не трогаются.
    """
    limits = config.portfolio
    portfolio.equity_history.append(EquityPoint(t=now, balance=round(portfolio.balance, 2)))
    if len(portfolio.equity_history) > limits.max_equity_points:
        portfolio.equity_history = portfolio.equity_history[-limits.max_equity_points:]

    overflow = len(portfolio.trades) - limits.max_trades
    if overflow > 0:
        evict = set()
        for trade in portfolio.trades:
            if len(evict) >= overflow:
                break
            if trade.is_closed:
                evict.add(trade.id)
        portfolio.trades = [t for t in portfolio.trades if t.id not in evict]

    portfolio.stats = compute_stats(portfolio)
    update_kill_switch(portfolio, config.circuit_breakers)
    portfolio.updated_at = now
    return portfolio


def check_open_guards(
    portfolio: Portfolio,
    symbol: str,
    margin: float,
    now: datetime,
    config: TradingConfig,
) -> None:
    """
    Raises:
        TradeRejectedError: если любой guard не пропускает сделку
    """
    tier_cfg = config.tier(portfolio.tier.value)
    live = portfolio.live_trades()
    breakers = config.circuit_breakers

    if portfolio.kill_switch:
        raise TradeRejectedError("drawdown_kill_switch", f"drawdown {portfolio.stats.current_drawdown}%")

    if any(t.symbol == symbol for t in live):
        raise TradeRejectedError("duplicate_symbol", symbol)

    if len(live) >= tier_cfg.max_open_trades:
        raise TradeRejectedError("max_open_trades", f"{len(live)}/{tier_cfg.max_open_trades}")

    group = config.correlation_group(symbol)
    same_group = [t for t in live if config.correlation_group(t.symbol) == group]
    if len(same_group) >= config.portfolio.max_open_per_group:
        raise TradeRejectedError("correlation_conflict", f"{group}: {same_group[0].symbol}")

    exposure = sum(t.margin * (t.remaining_size / t.size) for t in live) + margin
    if portfolio.balance <= 0 or exposure / portfolio.balance > breakers.max_exposure_ratio:
        raise TradeRejectedError("max_exposure", f"{exposure:.2f} / {portfolio.balance:.2f}")

    daily, weekly = loss_windows(portfolio.trades, now)
    if daily <= -portfolio.balance * breakers.daily_loss_pct / 100:
        raise TradeRejectedError("daily_circuit_breaker", f"{daily:.2f}")
    if weekly <= -portfolio.balance * breakers.weekly_loss_pct / 100:
        raise TradeRejectedError("weekly_circuit_breaker", f"{weekly:.2f}")


def open_trade(
    dual: DualPortfolio,
    signal: ConsensusSignal,
    now: datetime,
    config: Optional[TradingConfig] = None,
    regime: Optional[str] = None,
    await_entry: bool = False,
) -> Tuple[DualPortfolio, Trade, RiskBreakdown]:
    """
    Открыть сделку в портфеле tier сигнала.

    Returns:
        (новый DualPortfolio, trade, risk breakdown)

    Raises:
        TradeRejectedError
    """
    cfg = config or get_trading_config()
    result = dual.model_copy(deep=True)
    portfolio = result.for_tier(signal.tier)
    tier_cfg = cfg.tier(signal.tier.value)

    risk = adjusted_risk(
        base_risk=tier_cfg.base_risk_pct,
        closed_trades=portfolio.closed_trades(),
        win_streak=portfolio.win_streak(),
        regime=regime or signal.regime,
        confidence=signal.confidence,
        config=cfg,
    )
    margin = portfolio.balance * risk.risk_pct / 100
    check_open_guards(portfolio, signal.symbol, margin, now, cfg)

    size = round(margin * tier_cfg.leverage, 8)
    trade = Trade(
        symbol=signal.symbol,
        direction=signal.direction,
        entry=signal.entry,
        stop_loss=signal.stop_loss,
        take_profit=signal.take_profit,
        size=size,
        remaining_size=size,
        leverage=tier_cfg.leverage,
        risk_pct=risk.risk_pct,
        confidence=signal.confidence,
        tier=signal.tier,
        status=TradeStatus.PENDING_ENTRY if await_entry else TradeStatus.ACTIVE,
        ai_sources=list(signal.ai_sources),
        regime=regime or signal.regime,
        opened_at=now,
        entry_filled_at=None if await_entry else now,
    )
    portfolio.trades.append(trade)
    refresh(portfolio, now, cfg)

    logger.info(
        f"📈 Opened {signal.tier.value} {trade.direction.value} {trade.symbol} "
        f"@ {trade.entry} size={trade.size:.2f} risk={risk.risk_pct:.2f}% ({risk.confidence_label})"
    )
    return result, trade, risk


def apply_tick(
    dual: DualPortfolio,
    prices: Mapping[str, float],
    now: datetime,
    config: Optional[TradingConfig] = None,
) -> Tuple[DualPortfolio, List[TierEvent]]:
    """
    Прогнать lifecycle по всем живым сделкам обоих портфелей.

    Сделки без цены пропускаются. Баланс меняется на реализованный PnL.
    """
    cfg = config or get_trading_config()
    result = dual.model_copy(deep=True)
    all_events: List[TierEvent] = []

    for tier, portfolio in result.portfolios().items():
        events = tick_portfolio(portfolio, prices, now, lifecycle_params(tier, cfg), cfg)
        all_events.extend((tier, e) for e in events)

    return result, all_events


def tick_portfolio(
    portfolio: Portfolio,
    prices: Mapping[str, float],
    now: datetime,
    params: LifecycleParams,
    config: TradingConfig,
) -> List[LifecycleEvent]:
    """Один тик по живым сделкам портфеля. Мутирует portfolio (вызывающий держит копию)."""
    all_events: List[LifecycleEvent] = []
    updated = []
    for trade in portfolio.trades:
        price = prices.get(trade.symbol)
        if trade.is_closed or price is None:
            updated.append(trade)
            continue
        new_trade, events = advance_trade(trade, price, now, params)
        updated.append(new_trade)
        if events:
            portfolio.balance += realized_delta(events)
            all_events.extend(events)
    portfolio.trades = updated
    if all_events:
        refresh(portfolio, now, config)
    return all_events


def close_by_id(
    dual: DualPortfolio,
    trade_id: str,
    price: float,
    now: datetime,
    config: Optional[TradingConfig] = None,
    reason: CloseReason = CloseReason.MANUAL,
) -> Tuple[DualPortfolio, List[TierEvent]]:
    cfg = config or get_trading_config()
    result = dual.model_copy(deep=True)
    for tier, portfolio in result.portfolios().items():
        for index, trade in enumerate(portfolio.trades):
            if trade.id != trade_id:
                continue
            new_trade, events = close_trade(trade, price, now, reason)
            if not events:
                return dual, []
            portfolio.trades[index] = new_trade
            portfolio.balance += realized_delta(events)
            refresh(portfolio, now, cfg)
            return result, [(tier, e) for e in events]
    return dual, []


class PortfolioManager:
    """Store-backed обёртка над reducers."""

    def __init__(self, store: DocumentStore, config: Optional[TradingConfig] = None):
        self.store = store
        self.config = config or get_trading_config()

    async def load(self) -> DualPortfolio:
        doc = await self.store.get(StoreKeys.PORTFOLIO)
        if not doc:
            return new_dual_portfolio(self.config)
        try:
            return DualPortfolio.model_validate(doc)
        except ValidationError as e:
            logger.error(f"Portfolio document invalid ({e.error_count()} errors), starting fresh")
            return new_dual_portfolio(self.config)

    async def save(self, dual: DualPortfolio) -> bool:
        return await self.store.set(
            StoreKeys.PORTFOLIO, dual.model_dump(mode="json"), ttl=CacheTTL.PORTFOLIO
        )

    async def open_from_signal(
        self,
        signal: ConsensusSignal,
        now: Optional[datetime] = None,
        regime: Optional[str] = None,
        await_entry: bool = False,
    ) -> Optional[Trade]:
        """Открыть сделку; отказ guard → None (с логом)."""
        now = now or datetime.now(UTC)
        dual = await self.load()
        try:
            dual, trade, _ = open_trade(dual, signal, now, self.config, regime, await_entry)
        except TradeRejectedError as e:
            logger.info(f"🚫 {signal.tier.value} {signal.symbol} not opened: {e}")
            return None
        await self.save(dual)
        return trade

    async def monitor(
        self, prices: Mapping[str, float], now: Optional[datetime] = None
    ) -> List[TierEvent]:
        now = now or datetime.now(UTC)
        dual = await self.load()
        dual, events = apply_tick(dual, prices, now, self.config)
        if events:
            await self.save(dual)
        return events

    async def close(
        self, trade_id: str, price: float, now: Optional[datetime] = None
    ) -> List[TierEvent]:
        now = now or datetime.now(UTC)
        dual = await self.load()
        dual, events = close_by_id(dual, trade_id, price, now, self.config)
        if events:
            await self.save(dual)
        return events

    async def live_symbols(self) -> List[str]:
        dual = await self.load()
        symbols: Dict[str, None] = {}
        for portfolio in dual.portfolios().values():
            for trade in portfolio.live_trades():
                symbols[trade.symbol] = None
        return list(symbols)

    async def reset(self) -> DualPortfolio:
        dual = new_dual_portfolio(self.config)
        await self.save(dual)
        logger.warning("Portfolio reset to initial balance")
        return dual
