"""
Portfolio Models

Trade - сущность lifecycle. Portfolio - ограниченный список сделок,
баланс, equity history и производная статистика. DualPortfolio -
два независимых портфеля (Silver / Gold) в одном документе.

Invariants Trade:
- remaining_size ≥ 0
- size − remaining_size = Σ fills[].size
- после is_trailing стоп двигается только в выгодную сторону
- status меняется только вперёд
"""
import uuid
from datetime import datetime, UTC
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from src.core.enums import CloseReason, Direction, Tier, TradeResult, TradeStatus


class PartialFlags(BaseModel):
    tp1: bool = False
    tp2: bool = False
    tp3: bool = False

    def is_set(self, level: int) -> bool:
        return bool(getattr(self, f"tp{level}", False))

    def mark(self, level: int) -> None:
        setattr(self, f"tp{level}", True)


class Fill(BaseModel):
    """Закрытая часть позиции (partial TP или финальный выход)."""
    level: int                    # 1..3 = TP ladder, 0 = stop / manual
    size: float
    price: float
    pnl: float
    at: datetime


class Trade(BaseModel):
    """Сделка в портфеле."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    symbol: str
    direction: Direction
    entry: float = Field(gt=0)
    stop_loss: float = Field(gt=0)
    original_stop_loss: Optional[float] = None
    take_profit: float = Field(gt=0)
    size: float = Field(gt=0)                 # notional, USDT (margin × leverage)
    remaining_size: float = Field(ge=0)
    leverage: float = Field(gt=0)
    risk_pct: float = 0.0
    confidence: float = 0.0
    tier: Tier = Tier.SILVER
    status: TradeStatus = TradeStatus.ACTIVE
    partial_flags: PartialFlags = Field(default_factory=PartialFlags)
    fills: List[Fill] = Field(default_factory=list)
    partial_pnl: float = 0.0
    is_trailing: bool = False
    breakeven_moved: bool = False
    ai_sources: List[str] = Field(default_factory=list)
    regime: Optional[str] = None
    opened_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    entry_filled_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    exit_price: Optional[float] = None
    pnl: float = 0.0
    result: Optional[TradeResult] = None
    closed_by: Optional[CloseReason] = None

    @field_validator("direction", mode="before")
    @classmethod
    def _direction(cls, v):
        direction = Direction.parse(v)
        if direction is None:
            raise ValueError(f"bad direction {v!r}")
        return direction

    @model_validator(mode="after")
    def _check_sizes(self):
        if self.remaining_size > self.size + 1e-9:
            raise ValueError("remaining_size exceeds size")
        return self

    @property
    def margin(self) -> float:
        return self.size / self.leverage

    @property
    def is_open(self) -> bool:
        return self.status.is_open()

    @property
    def is_closed(self) -> bool:
        return self.status is TradeStatus.CLOSED

    @property
    def closed_size(self) -> float:
        return sum(f.size for f in self.fills)

    def unrealized_pnl(self, price: float) -> float:
        if not self.is_open:
            return 0.0
        return self.direction.sign * (price - self.entry) / self.entry * self.remaining_size


class PortfolioStats(BaseModel):
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    expired: int = 0
    open_trades: int = 0
    win_rate: float = 0.0          # %
    total_pnl: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    expectancy: float = 0.0
    sharpe: float = 0.0
    max_drawdown: float = 0.0      # % от пика equity
    current_drawdown: float = 0.0  # %
    peak_balance: float = 0.0
    current_streak: int = 0        # >0 серия побед, <0 серия поражений
    max_win_streak: int = 0
    max_loss_streak: int = 0


class EquityPoint(BaseModel):
    t: datetime
    balance: float


class Portfolio(BaseModel):
    tier: Tier
    initial_balance: float = 5000.0
    balance: float = 5000.0
    trades: List[Trade] = Field(default_factory=list)
    equity_history: List[EquityPoint] = Field(default_factory=list)
    stats: PortfolioStats = Field(default_factory=PortfolioStats)
    kill_switch: bool = False
    updated_at: Optional[datetime] = None

    def open_trades(self) -> List[Trade]:
        return [t for t in self.trades if t.is_open]

    def pending_trades(self) -> List[Trade]:
        return [t for t in self.trades if t.status is TradeStatus.PENDING_ENTRY]

    def live_trades(self) -> List[Trade]:
        """Открытые + ждущие entry."""
        return [t for t in self.trades if not t.is_closed]

    def closed_trades(self) -> List[Trade]:
        """Закрытые с результатом WIN / LOSS (EXPIRED исключены)."""
        return [
            t for t in self.trades
            if t.is_closed and t.result in (TradeResult.WIN, TradeResult.LOSS)
        ]

    def win_streak(self) -> int:
        streak = 0
        for trade in sorted(self.closed_trades(), key=lambda t: t.closed_at, reverse=True):
            if trade.result is not TradeResult.WIN:
                break
            streak += 1
        return streak


class DualPortfolio(BaseModel):
    """Документ dual_portfolio_data."""
    silver: Portfolio = Field(default_factory=lambda: Portfolio(tier=Tier.SILVER))
    gold: Portfolio = Field(default_factory=lambda: Portfolio(tier=Tier.GOLD))

    def for_tier(self, tier: Tier) -> Portfolio:
        return self.gold if tier is Tier.GOLD else self.silver

    def portfolios(self) -> Dict[Tier, Portfolio]:
        return {Tier.SILVER: self.silver, Tier.GOLD: self.gold}

    def all_closed_trades(self) -> List[Trade]:
        return self.silver.closed_trades() + self.gold.closed_trades()
