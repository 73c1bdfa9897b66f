"""
Core Enums - единые типы для consensus, lifecycle и optimizer.

Определяет:
- Direction: сторона сделки
- Tier: уровень консенсуса (Gold / Silver)
- TradeStatus: state machine сделки
- TradeResult: итог закрытой сделки
- CloseReason: чем закрыта сделка
- MarketRegime: режим рынка
- VolumeTrend: тренд объёма
"""

from enum import Enum
from typing import Optional


class Direction(str, Enum):
    """Сторона сделки."""

    LONG = "LONG"
    SHORT = "SHORT"

    @classmethod
    def parse(cls, value) -> Optional["Direction"]:
        """Нормализовать строку (LONG/SHORT/BUY/SELL) или None."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        normalized = value.strip().upper()
        if normalized in ("LONG", "BUY"):
            return cls.LONG
        if normalized in ("SHORT", "SELL"):
            return cls.SHORT
        return None

    @property
    def sign(self) -> int:
        """+1 для LONG, -1 для SHORT."""
        return 1 if self is Direction.LONG else -1

    def opposite(self) -> "Direction":
        return Direction.SHORT if self is Direction.LONG else Direction.LONG


class Tier(str, Enum):
    """Consensus tier: Gold = 3 модели, Silver = 2."""

    SILVER = "silver"
    GOLD = "gold"


class TradeStatus(str, Enum):
    """State machine сделки.

    Lifecycle:
    - PENDING_ENTRY: ждём касания entry (48h expiry)
    - ACTIVE: в позиции
    - PARTIAL_TP1 / PARTIAL_TP2: milestone, часть позиции закрыта
    - CLOSED: terminal (result = WIN / LOSS / EXPIRED)

    Переходы только вперёд по RANK.
    """

    PENDING_ENTRY = "PENDING_ENTRY"
    ACTIVE = "ACTIVE"
    PARTIAL_TP1 = "PARTIAL_TP1"
    PARTIAL_TP2 = "PARTIAL_TP2"
    PARTIAL_TP3 = "PARTIAL_TP3"
    CLOSED = "CLOSED"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def is_open(self) -> bool:
        """Позиция открыта (entry был)."""
        return self in (
            TradeStatus.ACTIVE,
            TradeStatus.PARTIAL_TP1,
            TradeStatus.PARTIAL_TP2,
            TradeStatus.PARTIAL_TP3,
        )

    def is_terminal(self) -> bool:
        return self is TradeStatus.CLOSED


_STATUS_RANK = {
    TradeStatus.PENDING_ENTRY: 0,
    TradeStatus.ACTIVE: 1,
    TradeStatus.PARTIAL_TP1: 2,
    TradeStatus.PARTIAL_TP2: 3,
    TradeStatus.PARTIAL_TP3: 4,
    TradeStatus.CLOSED: 5,
}


class TradeResult(str, Enum):
    """Итог сделки. Метка по знаку total PnL, не по причине выхода."""

    WIN = "WIN"
    LOSS = "LOSS"
    EXPIRED = "EXPIRED"


class CloseReason(str, Enum):
    """Чем закрыта сделка."""

    STOP_LOSS = "stop_loss"
    BREAKEVEN = "breakeven"
    TRAILING_STOP = "trailing_stop"
    TAKE_PROFIT = "take_profit"
    EXPIRED = "expired"
    MANUAL = "manual"
    REVERSAL = "reversal"


class MarketRegime(str, Enum):
    """Режим рынка из индикаторов."""

    TRENDING_UP = "TRENDING_UP"
    TRENDING_DOWN = "TRENDING_DOWN"
    RANGING = "RANGING"
    VOLATILE = "VOLATILE"
    CHOPPY = "CHOPPY"
    UNKNOWN = "UNKNOWN"


class VolumeTrend(str, Enum):
    """Тренд объёма: среднее последних 5 свечей против 20."""

    INCREASING = "INCREASING"
    STABLE = "STABLE"
    DECREASING = "DECREASING"
