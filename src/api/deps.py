"""
API dependencies

Engine - все сервисы процесса, собранные один раз в lifespan и
положенные в app.state. Роуты получают их через Depends.
"""
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Header, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from config import config as app_config
from config.config import AI_MODELS
from config.trading_config import TradingConfig, get_trading_config
from src.cache.base import DocumentStore
from src.core.exceptions import WebhookAuthError
from src.learning.optimizer import AdaptiveOptimizer
from src.learning.scheduler import EngineScheduler
from src.services.ai_proposals import OpenAIProposalService, ProposalSource
from src.services.consensus.cooldown import CooldownGate
from src.services.consensus.tv_confirmation import TVConfirmationService, verify_secret
from src.services.market_data import MarketDataService, MarketDataSource
from src.services.monitor_service import MonitorService
from src.services.notifier import Notifier, TelegramNotifier
from src.services.portfolio.backtest import BacktestService
from src.services.portfolio.manager import PortfolioManager
from src.services.portfolio.shadow import ShadowTracker
from src.services.portfolio.tv_portfolio import TVPortfolioManager
from src.services.scan_service import ScanService


# Лимит по IP: default_limits применяет SlowAPIMiddleware,
# webhook и cron декорированы своими лимитами
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[lambda: app_config.API_RATE_LIMIT],
    storage_uri="memory://",
)


@dataclass
class Engine:
    store: DocumentStore
    config: TradingConfig
    market_data: MarketDataSource
    ai: ProposalSource
    notifier: Notifier
    portfolio: PortfolioManager
    tv: TVConfirmationService
    tv_portfolio: TVPortfolioManager
    shadow: ShadowTracker
    scan: ScanService
    monitor: MonitorService
    optimizer: AdaptiveOptimizer
    scheduler: EngineScheduler
    backtest: BacktestService

    def cooldown(self, cooldown_hours: float) -> CooldownGate:
        return CooldownGate(self.store, cooldown_hours, self.config.scan.cooldown_override_pct)


def build_engine(
    store: DocumentStore,
    market_data: Optional[MarketDataSource] = None,
    ai: Optional[ProposalSource] = None,
    notifier: Optional[Notifier] = None,
    config: Optional[TradingConfig] = None,
) -> Engine:
    """Собрать сервисы; не переданные коллекторы → production реализации."""
    cfg = config or get_trading_config()
    market_data = market_data or MarketDataService()
    ai = ai or OpenAIProposalService()
    notifier = notifier or TelegramNotifier()

    scan = ScanService(store, market_data, ai, notifier, cfg)
    monitor = MonitorService(store, market_data, notifier, cfg)
    optimizer = AdaptiveOptimizer(store, known_sources=list(getattr(ai, "models", AI_MODELS)))
    portfolio = PortfolioManager(store, cfg)
    return Engine(
        store=store,
        config=cfg,
        market_data=market_data,
        ai=ai,
        notifier=notifier,
        portfolio=portfolio,
        tv=TVConfirmationService(store, cfg.tv),
        tv_portfolio=TVPortfolioManager(store, cfg),
        shadow=ShadowTracker(store, cfg.shadow),
        scan=scan,
        monitor=monitor,
        optimizer=optimizer,
        scheduler=EngineScheduler(scan, monitor, optimizer, notifier),
        backtest=BacktestService(portfolio, cfg),
    )


def get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def check_secret(provided: Any, expected: str) -> None:
    """
    Raises:
        HTTPException: 500 если секрет не настроен, 401 если не совпал
    """
    try:
        verify_secret(provided, expected)
    except WebhookAuthError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


async def verify_cron_secret(x_cron_secret: Optional[str] = Header(default=None)) -> None:
    """X-Cron-Secret для ручных триггеров и admin операций."""
    check_secret(x_cron_secret, app_config.CRON_SECRET)
