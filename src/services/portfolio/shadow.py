"""
Shadow Signal Tracker

Каждое индивидуальное предложение модели хранится как shadow signal
(без реальной сделки) и используется для оценки точности модели.

Flow:
1. consensus сигнал → shadow signal для каждого AI источника
2. каждый scan → проверка касания entry (±0.1%)
3. после entry → TP / SL → win / loss
4. через 6h после создания открытый сигнал закрывается по знаку profit
5. без касания entry за 48h → expired
6. dedup: один нерешённый сигнал на symbol + source
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import Dict, List, Mapping, Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from config.cache_config import CacheTTL
from config.trading_config import ShadowConfig, get_trading_config
from src.cache.base import DocumentStore
from src.cache.cache_keys import StoreKeys
from src.core.enums import Direction, Tier, TradeResult


class ShadowSignal(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    symbol: str
    direction: Direction
    entry: float
    stop_loss: float
    take_profit: float
    ai_source: str
    confidence: float = 0.0
    tier: Optional[Tier] = None
    created_at: datetime
    entry_hit: bool = False
    entry_hit_at: Optional[datetime] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    result: Optional[TradeResult] = None
    exit_price: Optional[float] = None

    @field_validator("direction", mode="before")
    @classmethod
    def _direction(cls, v):
        return Direction.parse(v) or v


class ModelStats(BaseModel):
    wins: int = 0
    losses: int = 0
    signals: int = 0
    total_confidence: float = 0.0

    @property
    def win_rate(self) -> float:
        total = self.wins + self.losses
        return self.wins / total if total else 0.0

    @property
    def avg_confidence(self) -> float:
        return self.total_confidence / self.signals if self.signals else 0.0


class AIStats(BaseModel):
    """Накопленная статистика моделей и consensus tiers."""
    models: Dict[str, ModelStats] = Field(default_factory=dict)
    gold: ModelStats = Field(default_factory=ModelStats)
    silver: ModelStats = Field(default_factory=ModelStats)
    updated_at: Optional[datetime] = None

    def model(self, source: str) -> ModelStats:
        return self.models.setdefault(source, ModelStats())


@dataclass
class ShadowEvaluation:
    wins: List[ShadowSignal] = field(default_factory=list)
    losses: List[ShadowSignal] = field(default_factory=list)
    expired: List[ShadowSignal] = field(default_factory=list)
    entry_triggered: List[ShadowSignal] = field(default_factory=list)
    still_pending: List[ShadowSignal] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "wins": len(self.wins),
            "losses": len(self.losses),
            "expired": len(self.expired),
            "entry_triggered": len(self.entry_triggered),
            "still_pending": len(self.still_pending),
        }


def entry_touched(signal: ShadowSignal, price: float, tolerance_pct: float) -> bool:
    tolerance = signal.entry * tolerance_pct / 100
    if signal.direction is Direction.LONG:
        return price <= signal.entry + tolerance
    return price >= signal.entry - tolerance


def target_hit(signal: ShadowSignal, price: float) -> bool:
    if signal.direction is Direction.LONG:
        return price >= signal.take_profit
    return price <= signal.take_profit


def stop_hit(signal: ShadowSignal, price: float) -> bool:
    if signal.direction is Direction.LONG:
        return price <= signal.stop_loss
    return price >= signal.stop_loss


def in_profit(signal: ShadowSignal, price: float) -> bool:
    return (price - signal.entry) * signal.direction.sign > 0


def _resolve(signal: ShadowSignal, result: TradeResult, now: datetime, price: Optional[float]) -> None:
    signal.resolved = True
    signal.resolved_at = now
    signal.result = result
    signal.exit_price = price


def evaluate_signals(
    signals: List[ShadowSignal],
    prices: Mapping[str, float],
    now: datetime,
    config: Optional[ShadowConfig] = None,
) -> ShadowEvaluation:
    """
    Прогнать нерешённые shadow signals по текущим ценам (мутирует signals).
    Сигналы без цены остаются pending.
    """
    cfg = config or get_trading_config().shadow
    expiry = timedelta(hours=cfg.entry_expiry_hours)
    auto_resolve = timedelta(hours=cfg.auto_resolve_hours)
    result = ShadowEvaluation()

    for signal in signals:
        if signal.resolved:
            continue
        price = prices.get(signal.symbol)
        age = now - signal.created_at

        if not signal.entry_hit and age > expiry:
            _resolve(signal, TradeResult.EXPIRED, now, None)
            result.expired.append(signal)
            continue

        if price is None:
            result.still_pending.append(signal)
            continue

        if not signal.entry_hit and entry_touched(signal, price, cfg.entry_tolerance_pct):
            signal.entry_hit = True
            signal.entry_hit_at = now
            result.entry_triggered.append(signal)

        if not signal.entry_hit:
            result.still_pending.append(signal)
            continue

        if target_hit(signal, price):
            _resolve(signal, TradeResult.WIN, now, price)
            result.wins.append(signal)
        elif stop_hit(signal, price):
            _resolve(signal, TradeResult.LOSS, now, price)
            result.losses.append(signal)
        elif age >= auto_resolve:
            outcome = TradeResult.WIN if in_profit(signal, price) else TradeResult.LOSS
            _resolve(signal, outcome, now, price)
            (result.wins if outcome is TradeResult.WIN else result.losses).append(signal)
        else:
            result.still_pending.append(signal)

    return result


def apply_to_stats(stats: AIStats, evaluation: ShadowEvaluation, now: datetime) -> AIStats:
    for signal in evaluation.wins:
        stats.model(signal.ai_source).wins += 1
    for signal in evaluation.losses:
        stats.model(signal.ai_source).losses += 1
    stats.updated_at = now
    return stats


class ShadowTracker:
    """Store-backed трекер shadow signals + AI stats."""

    def __init__(self, store: DocumentStore, config: Optional[ShadowConfig] = None):
        self.store = store
        self.config = config or get_trading_config().shadow

    async def load(self) -> List[ShadowSignal]:
        docs = await self.store.get(StoreKeys.PENDING_SIGNALS, default=[])
        signals = []
        for doc in docs if isinstance(docs, list) else []:
            try:
                signals.append(ShadowSignal.model_validate(doc))
            except ValidationError:
                logger.warning(f"Dropping invalid shadow signal: {doc!r:.120}")
        return signals

    async def save(self, signals: List[ShadowSignal]) -> bool:
        signals = signals[-self.config.max_signals:]
        return await self.store.set(
            StoreKeys.PENDING_SIGNALS,
            [s.model_dump(mode="json") for s in signals],
            ttl=CacheTTL.SHADOW_SIGNALS,
        )

    async def load_stats(self) -> AIStats:
        doc = await self.store.get(StoreKeys.AI_STATS)
        if not doc:
            return AIStats()
        try:
            return AIStats.model_validate(doc)
        except ValidationError:
            logger.warning("AI stats document invalid, starting fresh")
            return AIStats()

    async def save_stats(self, stats: AIStats) -> bool:
        return await self.store.set(StoreKeys.AI_STATS, stats.model_dump(mode="json"))

    async def add(self, proposals, tier: Optional[Tier] = None, now: Optional[datetime] = None) -> List[ShadowSignal]:
        """
        Добавить shadow signal для каждого proposal (RawProposal).

        Returns:
            Реально добавленные (без дубликатов)
        """
        now = now or datetime.now(UTC)
        signals = await self.load()
        pending = {(s.symbol, s.ai_source) for s in signals if not s.resolved}
        stats = await self.load_stats()

        added = []
        for proposal in proposals:
            key = (proposal.symbol, proposal.source)
            if key in pending:
                logger.debug(f"⏭️ Shadow duplicate: {proposal.symbol} from {proposal.source}")
                continue
            signal = ShadowSignal(
                symbol=proposal.symbol,
                direction=proposal.direction,
                entry=proposal.entry,
                stop_loss=proposal.stop_loss,
                take_profit=proposal.take_profit,
                ai_source=proposal.source,
                confidence=proposal.confidence,
                tier=tier,
                created_at=now,
            )
            signals.append(signal)
            pending.add(key)
            added.append(signal)

            model = stats.model(proposal.source)
            model.signals += 1
            model.total_confidence += proposal.confidence

        if added:
            stats.updated_at = now
            await self.save(signals)
            await self.save_stats(stats)
            logger.info(f"📝 Added {len(added)} shadow signals")
        return added

    async def record_consensus(self, tier: Tier, now: Optional[datetime] = None) -> None:
        stats = await self.load_stats()
        getattr(stats, tier.value).signals += 1
        stats.updated_at = now or datetime.now(UTC)
        await self.save_stats(stats)

    async def evaluate(self, prices: Mapping[str, float], now: Optional[datetime] = None) -> ShadowEvaluation:
        """Разрешить pending signals; в store остаются только нерешённые."""
        now = now or datetime.now(UTC)
        signals = await self.load()
        if not signals:
            return ShadowEvaluation()

        evaluation = evaluate_signals(signals, prices, now, self.config)
        await self.save([s for s in signals if not s.resolved])

        if evaluation.wins or evaluation.losses:
            stats = apply_to_stats(await self.load_stats(), evaluation, now)
            await self.save_stats(stats)
            logger.info(f"🎯 Shadow signals resolved: {evaluation.summary()}")
        return evaluation

    async def clear(self) -> bool:
        return await self.store.delete(StoreKeys.PENDING_SIGNALS)
