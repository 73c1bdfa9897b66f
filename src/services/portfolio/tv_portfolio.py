"""
TradingView Portfolio

Отдельный paper портфель: каждый BUY/SELL alert с price/tp/sl открывает
сделку silver-level размером и проходит тот же lifecycle, что и consensus
сделки. P&L индикатора считается независимо от AI портфелей.

- alert без уровней или с неверным порядком уровней → сделка не открывается
- alert в ту же сторону по уже открытому символу → дубликат, пропуск
- alert в обратную сторону → закрыть открытую сделку по цене alert (reversal)
  и открыть новую
"""
from datetime import datetime, UTC
from typing import List, Mapping, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from config.cache_config import CacheTTL
from config.trading_config import TradingConfig, get_trading_config
from src.cache.base import DocumentStore
from src.cache.cache_keys import StoreKeys
from src.core.enums import CloseReason, Tier, TradeStatus
from src.core.exceptions import TradeRejectedError
from src.services.consensus.models import levels_ordered
from src.services.consensus.tv_confirmation import TVSignal
from src.services.portfolio.lifecycle import LifecycleEvent, close_trade, realized_delta
from src.services.portfolio.manager import lifecycle_params, refresh, tick_portfolio
from src.services.portfolio.models import Portfolio, Trade


def new_tv_portfolio(config: Optional[TradingConfig] = None) -> Portfolio:
    cfg = config or get_trading_config()
    balance = cfg.tv_portfolio.initial_balance
    return Portfolio(tier=Tier.SILVER, initial_balance=balance, balance=balance)


def open_tv_trade(
    portfolio: Portfolio,
    tv_signal: TVSignal,
    now: datetime,
    config: Optional[TradingConfig] = None,
) -> Tuple[Portfolio, Trade, List[LifecycleEvent]]:
    """
    Открыть сделку по alert.

    Returns:
        (новый Portfolio, trade, события закрытия reversal сделки)

    Raises:
        TradeRejectedError: нет уровней, дубликат, лимит открытых, kill switch
    """
    cfg = config or get_trading_config()
    tv_cfg = cfg.tv_portfolio
    direction = tv_signal.direction

    if not (tv_signal.price and tv_signal.tp and tv_signal.sl):
        raise TradeRejectedError("missing_levels", tv_signal.symbol)
    if not levels_ordered(direction, tv_signal.price, tv_signal.sl, tv_signal.tp):
        raise TradeRejectedError(
            "invalid_levels", f"{tv_signal.sl} / {tv_signal.price} / {tv_signal.tp}"
        )

    result = portfolio.model_copy(deep=True)
    if result.kill_switch:
        raise TradeRejectedError("drawdown_kill_switch", f"drawdown {result.stats.current_drawdown}%")

    events: List[LifecycleEvent] = []
    for index, trade in enumerate(result.trades):
        if trade.is_closed or trade.symbol != tv_signal.symbol:
            continue
        if trade.direction is direction:
            raise TradeRejectedError("duplicate_symbol", tv_signal.symbol)
        closed, close_events = close_trade(trade, tv_signal.price, now, CloseReason.REVERSAL)
        result.trades[index] = closed
        result.balance += realized_delta(close_events)
        events.extend(close_events)

    live = result.live_trades()
    if len(live) >= tv_cfg.max_open_trades:
        raise TradeRejectedError("max_open_trades", f"{len(live)}/{tv_cfg.max_open_trades}")
    if result.balance <= 0:
        raise TradeRejectedError("no_balance", f"{result.balance:.2f}")

    margin = result.balance * tv_cfg.risk_pct / 100
    size = round(margin * tv_cfg.leverage, 8)
    trade = Trade(
        symbol=tv_signal.symbol,
        direction=direction,
        entry=tv_signal.price,
        stop_loss=tv_signal.sl,
        take_profit=tv_signal.tp,
        size=size,
        remaining_size=size,
        leverage=tv_cfg.leverage,
        risk_pct=tv_cfg.risk_pct,
        tier=Tier.SILVER,
        status=TradeStatus.ACTIVE,
        ai_sources=[tv_cfg.source_label],
        opened_at=now,
        entry_filled_at=now,
    )
    result.trades.append(trade)
    refresh(result, now, cfg)

    logger.info(
        f"📺 TV portfolio opened {trade.direction.value} {trade.symbol} @ {trade.entry} "
        f"size={trade.size:.2f}"
    )
    return result, trade, events


def apply_tv_tick(
    portfolio: Portfolio,
    prices: Mapping[str, float],
    now: datetime,
    config: Optional[TradingConfig] = None,
) -> Tuple[Portfolio, List[LifecycleEvent]]:
    cfg = config or get_trading_config()
    result = portfolio.model_copy(deep=True)
    events = tick_portfolio(result, prices, now, lifecycle_params(Tier.SILVER, cfg), cfg)
    return result, events


class TVPortfolioManager:
    """Store-backed обёртка над TV портфелем (документ tv_portfolio_data)."""

    def __init__(self, store: DocumentStore, config: Optional[TradingConfig] = None):
        self.store = store
        self.config = config or get_trading_config()

    @property
    def enabled(self) -> bool:
        return self.config.tv_portfolio.enabled

    async def load(self) -> Portfolio:
        doc = await self.store.get(StoreKeys.TV_PORTFOLIO)
        if not doc:
            return new_tv_portfolio(self.config)
        try:
            return Portfolio.model_validate(doc)
        except ValidationError as e:
            logger.error(f"TV portfolio document invalid ({e.error_count()} errors), starting fresh")
            return new_tv_portfolio(self.config)

    async def save(self, portfolio: Portfolio) -> bool:
        return await self.store.set(
            StoreKeys.TV_PORTFOLIO, portfolio.model_dump(mode="json"), ttl=CacheTTL.PORTFOLIO
        )

    async def open_from_alert(
        self, tv_signal: TVSignal, now: Optional[datetime] = None
    ) -> Optional[Trade]:
        """Открыть сделку по alert; отказ → None (с логом)."""
        if not self.enabled:
            return None
        now = now or datetime.now(UTC)
        portfolio = await self.load()
        try:
            portfolio, trade, _ = open_tv_trade(portfolio, tv_signal, now, self.config)
        except TradeRejectedError as e:
            logger.info(f"📺 TV portfolio {tv_signal.symbol} not opened: {e}")
            return None
        await self.save(portfolio)
        return trade

    async def monitor(
        self, prices: Mapping[str, float], now: Optional[datetime] = None
    ) -> List[LifecycleEvent]:
        if not self.enabled:
            return []
        now = now or datetime.now(UTC)
        portfolio = await self.load()
        portfolio, events = apply_tv_tick(portfolio, prices, now, self.config)
        if events:
            await self.save(portfolio)
        return events

    async def live_symbols(self) -> List[str]:
        if not self.enabled:
            return []
        portfolio = await self.load()
        return list(dict.fromkeys(t.symbol for t in portfolio.live_trades()))

    async def reset(self) -> Portfolio:
        portfolio = new_tv_portfolio(self.config)
        await self.save(portfolio)
        logger.warning("TV portfolio reset to initial balance")
        return portfolio
