"""
Consensus Models - Pydantic типы для proposals и consensus сигналов.

RawProposal - мнение одной модели (эфемерно, не сохраняется).
ConsensusSignal - согласованный сигнал ≥2 моделей.
Невалидные формы отклоняются на границе (ValidationError).
"""
import math
from datetime import datetime, UTC
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.core.enums import Direction, Tier


ENTRY_TRIGGERS = ("BREAKOUT", "PULLBACK", "REVERSAL", "MOMENTUM")

GOLD_SOURCES = 3


def levels_ordered(direction: Direction, entry: float, stop_loss: float, take_profit: float) -> bool:
    """LONG: SL < entry < TP; SHORT: TP < entry < SL."""
    if direction is Direction.LONG:
        return stop_loss < entry < take_profit
    return take_profit < entry < stop_loss


def risk_reward(entry: float, stop_loss: float, take_profit: float) -> float:
    """Reward / risk по расстояниям от entry."""
    risk = abs(entry - stop_loss)
    if risk <= 0:
        return 0.0
    return abs(take_profit - entry) / risk


def _parse_direction(value):
    direction = Direction.parse(value)
    if direction is None:
        raise ValueError(f"direction must be LONG or SHORT, got {value!r}")
    return direction


class RawProposal(BaseModel):
    """Один proposal одной модели."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    source: str = Field(min_length=1)
    symbol: str = Field(min_length=2)
    direction: Direction
    confidence: float = Field(ge=0, le=100, allow_inf_nan=False)
    entry: float = Field(gt=0, allow_inf_nan=False)
    stop_loss: float = Field(gt=0, allow_inf_nan=False, alias="stopLoss")
    take_profit: float = Field(gt=0, allow_inf_nan=False, alias="takeProfit")
    entry_trigger: Optional[str] = Field(default=None, alias="entryTrigger")
    reasons: List[str] = Field(default_factory=list)

    @field_validator("symbol", mode="before")
    @classmethod
    def _upper_symbol(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("direction", mode="before")
    @classmethod
    def _direction(cls, v):
        return _parse_direction(v)

    @field_validator("entry_trigger", mode="before")
    @classmethod
    def _trigger(cls, v):
        if v is None or v == "":
            return None
        normalized = str(v).strip().upper()
        return normalized if normalized in ENTRY_TRIGGERS else None

    @field_validator("reasons", mode="before")
    @classmethod
    def _reasons(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(r) for r in v]

    @model_validator(mode="after")
    def _check_levels(self):
        if not levels_ordered(self.direction, self.entry, self.stop_loss, self.take_profit):
            raise ValueError(
                f"{self.direction.value} levels out of order: "
                f"entry={self.entry} sl={self.stop_loss} tp={self.take_profit}"
            )
        return self

    @property
    def risk_reward(self) -> float:
        return risk_reward(self.entry, self.stop_loss, self.take_profit)


class ConsensusSignal(BaseModel):
    """
    Согласованный сигнал.

    Invariants:
    - ai_sources: ≥2 различных источника
    - tier = GOLD тогда и только тогда, когда источников ≥3
    - confidence ∈ [0, 100]
    - уровни упорядочены по direction
    """

    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    direction: Direction
    entry: float = Field(gt=0, allow_inf_nan=False)
    stop_loss: float = Field(gt=0, allow_inf_nan=False, alias="stopLoss")
    take_profit: float = Field(gt=0, allow_inf_nan=False, alias="takeProfit")
    confidence: float = Field(ge=0, le=100, allow_inf_nan=False)
    ai_sources: List[str] = Field(alias="aiSources")
    tier: Tier
    reasons: List[str] = Field(default_factory=list)
    entry_trigger: Optional[str] = Field(default=None, alias="entryTrigger")
    regime: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("direction", mode="before")
    @classmethod
    def _direction(cls, v):
        return _parse_direction(v)

    @model_validator(mode="after")
    def _check_invariants(self):
        distinct = set(self.ai_sources)
        if len(distinct) != len(self.ai_sources):
            raise ValueError("ai_sources must be distinct")
        if len(distinct) < 2:
            raise ValueError("consensus needs at least 2 distinct sources")
        expected = Tier.GOLD if len(distinct) >= GOLD_SOURCES else Tier.SILVER
        if self.tier is not expected:
            raise ValueError(f"tier {self.tier.value} does not match {len(distinct)} sources")
        if not levels_ordered(self.direction, self.entry, self.stop_loss, self.take_profit):
            raise ValueError("consensus levels out of order")
        return self

    @property
    def risk_reward(self) -> float:
        return risk_reward(self.entry, self.stop_loss, self.take_profit)


def is_within_percent(a: float, b: float, pct: float) -> bool:
    """|a - b| / max(a, b) * 100 <= pct."""
    base = max(abs(a), abs(b))
    if base == 0 or not math.isfinite(base):
        return a == b
    return abs(a - b) / base * 100 <= pct
