"""
Bucketizer

Раскладка закрытых сделок по bucket для optimizer.
Никогда не возвращает None - всегда реальное значение или fallback.
"""
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, TypeVar

from src.core.enums import TradeResult
from src.learning.constants import CONFIDENCE_BUCKET_SIZE


T = TypeVar("T")


@dataclass
class BucketStats:
    """Победы/поражения в одном bucket."""
    wins: int = 0
    losses: int = 0
    pnl: float = 0.0

    @property
    def total(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float:
        return self.wins / self.total if self.total else 0.0

    def add(self, is_win: bool, pnl: float = 0.0) -> None:
        if is_win:
            self.wins += 1
        else:
            self.losses += 1
        self.pnl += pnl

    def to_dict(self) -> dict:
        return {
            "wins": self.wins,
            "losses": self.losses,
            "total": self.total,
            "win_rate": round(self.win_rate, 4),
            "pnl": round(self.pnl, 2),
        }


def is_win(trade) -> bool:
    """WIN по метке результата (total PnL ≥ 0)."""
    return getattr(trade, "result", None) is TradeResult.WIN


def get_confidence_bucket(confidence: Optional[float]) -> int:
    """
    Нижняя граница 5-пунктового bucket: 77 → 75, 80 → 80.

    Args:
        confidence: 0..100 (None → 75)
    """
    value = 75.0 if confidence is None else float(confidence)
    return int(value // CONFIDENCE_BUCKET_SIZE) * CONFIDENCE_BUCKET_SIZE


def get_rr_bucket(rr: Optional[float]) -> str:
    """
    Risk:reward bucket: low (<2), mid (2..3), high (≥3).
    Неизвестный R:R считается 2.0.
    """
    value = 2.0 if rr is None else rr
    if value < 2.0:
        return "low"
    if value < 3.0:
        return "mid"
    return "high"


def bucketize(trades: Iterable[T], key: Callable[[T], object]) -> Dict[object, BucketStats]:
    """Сгруппировать сделки по key → BucketStats."""
    buckets: Dict[object, BucketStats] = defaultdict(BucketStats)
    for trade in trades:
        buckets[key(trade)].add(is_win(trade), getattr(trade, "pnl", 0.0) or 0.0)
    return dict(buckets)
