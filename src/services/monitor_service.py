"""
Monitor Service

Один тик: цены всех живых символов → lifecycle reducer по обоим
портфелям и TV портфелю → по одному save на документ → уведомления
о partial TP / закрытиях.
"""
from datetime import datetime, UTC
from typing import List, Optional, Tuple

from loguru import logger

from config.trading_config import TradingConfig, get_trading_config
from src.cache.base import DocumentStore
from src.services.market_data import MarketDataSource
from src.services.notifier import Notifier, format_event
from src.services.portfolio.lifecycle import LifecycleEvent
from src.services.portfolio.manager import PortfolioManager
from src.services.portfolio.tv_portfolio import TVPortfolioManager


# ("silver" | "gold" | "tv", событие)
LabeledEvent = Tuple[str, LifecycleEvent]

TV_LABEL = "tv"


class MonitorService:
    def __init__(
        self,
        store: DocumentStore,
        market_data: MarketDataSource,
        notifier: Notifier,
        config: Optional[TradingConfig] = None,
    ):
        cfg = config or get_trading_config()
        self.market_data = market_data
        self.notifier = notifier
        self.portfolio = PortfolioManager(store, cfg)
        self.tv_portfolio = TVPortfolioManager(store, cfg)

    async def run_tick(self, now: Optional[datetime] = None) -> List[LabeledEvent]:
        now = now or datetime.now(UTC)
        symbols = list(dict.fromkeys(
            await self.portfolio.live_symbols() + await self.tv_portfolio.live_symbols()
        ))
        if not symbols:
            return []

        prices = await self.market_data.get_prices(symbols)
        if not prices:
            logger.warning(f"Monitor: no prices for {len(symbols)} open symbols, tick skipped")
            return []

        events: List[LabeledEvent] = [
            (tier.value, event) for tier, event in await self.portfolio.monitor(prices, now)
        ]
        events.extend((TV_LABEL, event) for event in await self.tv_portfolio.monitor(prices, now))

        for label, event in events:
            text = format_event(label, event)
            if text:
                await self.notifier.notify(text)

        if events:
            closed = sum(1 for _, e in events if e.kind == "closed")
            logger.info(f"👁️ Monitor: {len(events)} events, {closed} trades closed")
        return events
