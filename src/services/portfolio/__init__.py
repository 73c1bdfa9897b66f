"""
Portfolio - dual (Silver / Gold) paper portfolio, position lifecycle,
risk sizing, shadow signal scorekeeping, the standalone TradingView
portfolio and partial TP backtest replay.
"""

from src.services.portfolio.models import DualPortfolio, Portfolio, Trade
from src.services.portfolio.lifecycle import LifecycleEvent, advance_trade
from src.services.portfolio.manager import PortfolioManager, apply_tick, open_trade
from src.services.portfolio.sizing import RiskBreakdown, adjusted_risk
from src.services.portfolio.shadow import AIStats, ShadowSignal, ShadowTracker
from src.services.portfolio.tv_portfolio import TVPortfolioManager
from src.services.portfolio.backtest import BacktestParams, BacktestService

__all__ = [
    "DualPortfolio",
    "Portfolio",
    "Trade",
    "LifecycleEvent",
    "advance_trade",
    "PortfolioManager",
    "apply_tick",
    "open_trade",
    "RiskBreakdown",
    "adjusted_risk",
    "AIStats",
    "ShadowSignal",
    "ShadowTracker",
    "TVPortfolioManager",
    "BacktestParams",
    "BacktestService",
]
