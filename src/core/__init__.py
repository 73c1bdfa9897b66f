"""
Core module - базовые типы и enums для всего стека.
"""

from src.core.enums import (
    Direction,
    Tier,
    TradeStatus,
    TradeResult,
    CloseReason,
    MarketRegime,
    VolumeTrend,
)
from src.core.exceptions import (
    EngineError,
    InvalidProposalError,
    StoreUnavailableError,
    TradeRejectedError,
    WebhookAuthError,
)

__all__ = [
    "Direction",
    "Tier",
    "TradeStatus",
    "TradeResult",
    "CloseReason",
    "MarketRegime",
    "VolumeTrend",
    "EngineError",
    "InvalidProposalError",
    "StoreUnavailableError",
    "TradeRejectedError",
    "WebhookAuthError",
]
