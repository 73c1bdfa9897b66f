# coding: utf-8
"""
Document key builder

Keeps every stored document key in one place.
"""


class StoreKeys:
    """
    Key layout

    Examples:
        signal:BTCUSDT          last accepted consensus signal (cooldown)
        tv_signal:BTCUSDT       TradingView confirmation
        dual_portfolio_data     silver + gold portfolios
        tv_portfolio_data       standalone TradingView portfolio
    """

    LAST_SIGNAL_PREFIX = "signal:"
    TV_SIGNAL_PREFIX = "tv_signal:"
    TV_SIGNAL_HISTORY = "tv_signal_history"
    PORTFOLIO = "dual_portfolio_data"
    TV_PORTFOLIO = "tv_portfolio_data"
    PENDING_SIGNALS = "pending_ai_signals"
    AI_STATS = "ai_stats"
    OPTIMIZATION_CONFIG = "optimization_config"
    OPTIMIZATION_LOG = "optimization_log"

    @classmethod
    def last_signal(cls, symbol: str) -> str:
        """
        Args:
            symbol: Trading pair, e.g. 'btcusdt'

        Returns:
            'signal:BTCUSDT'
        """
        return f"{cls.LAST_SIGNAL_PREFIX}{symbol.upper()}"

    @classmethod
    def tv_signal(cls, symbol: str) -> str:
        return f"{cls.TV_SIGNAL_PREFIX}{symbol.upper()}"
