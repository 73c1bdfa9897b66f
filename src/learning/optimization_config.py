"""
Optimization Config

Версионированный документ порогов, который пишет optimizer и читают
consensus validator и risk sizing.

Lifecycle:
- создаётся с defaults при первом чтении
- миграция/дефолты применяются один раз на границе (load)
- меняется раз за цикл optimizer
- удаляется только явным reset
"""
from datetime import datetime, UTC
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from config.cache_config import CacheTTL
from src.cache.base import DocumentStore
from src.cache.cache_keys import StoreKeys
from src.learning.constants import (
    ALWAYS_BLOCKED_REGIMES,
    BOUNDS,
    OPTIMIZATION_SCHEMA_VERSION,
)


class DirectionStats(BaseModel):
    trades: int = 0
    wins: int = 0
    win_rate: float = 0.0


class OptimizationConfig(BaseModel):
    """Текущие пороги + производные blacklists + пауза + последний отчёт."""

    version: int = OPTIMIZATION_SCHEMA_VERSION

    alert_confidence: float = BOUNDS["alert_confidence"].default
    min_risk_reward: float = BOUNDS["min_risk_reward"].default
    min_risk_reward_gold: float = BOUNDS["min_risk_reward_gold"].default
    min_adx: float = BOUNDS["min_adx"].default
    cooldown_hours: float = BOUNDS["cooldown_hours"].default
    ai_weights: Dict[str, float] = Field(default_factory=dict)

    blacklisted_symbols: List[str] = Field(default_factory=list)
    blocked_regimes: List[str] = Field(default_factory=lambda: list(ALWAYS_BLOCKED_REGIMES))
    direction_stats: Dict[str, DirectionStats] = Field(default_factory=dict)

    paused_until: Optional[datetime] = None
    pause_reason: Optional[str] = None

    trades_analyzed: int = 0
    cycles: int = 0
    last_optimized: Optional[datetime] = None
    last_report: Optional[str] = None

    def is_paused(self, now: datetime) -> bool:
        return self.paused_until is not None and now < self.paused_until

    def weight_for(self, source: str) -> float:
        return self.ai_weights.get(source, BOUNDS["ai_weight"].default)

    def min_rr_for(self, tier: str) -> float:
        return self.min_risk_reward_gold if str(tier).lower() == "gold" else self.min_risk_reward


# v1 documents used camelCase keys
_LEGACY_KEYS = {
    "alertConfidence": "alert_confidence",
    "minRiskReward": "min_risk_reward",
    "minRiskRewardGold": "min_risk_reward_gold",
    "minADX": "min_adx",
    "cooldownHours": "cooldown_hours",
    "aiWeights": "ai_weights",
    "blacklistedSymbols": "blacklisted_symbols",
    "blockedRegimes": "blocked_regimes",
    "directionStats": "direction_stats",
    "pausedUntil": "paused_until",
    "pauseReason": "pause_reason",
    "tradesAnalyzed": "trades_analyzed",
    "lastOptimized": "last_optimized",
    "lastReport": "last_report",
}


def default_optimization_config() -> OptimizationConfig:
    """Конфиг с hard-coded defaults."""
    return OptimizationConfig()


def migrate_document(doc: Optional[Mapping[str, Any]]) -> OptimizationConfig:
    """
    Привести сохранённый документ любой версии к текущей схеме.

    Неизвестные поля отбрасываются, отсутствующие берутся из defaults,
    числовые пороги зажимаются в BOUNDS. Битый документ → defaults.
    """
    if not isinstance(doc, Mapping):
        return default_optimization_config()

    data: Dict[str, Any] = {}
    for key, value in doc.items():
        data[_LEGACY_KEYS.get(key, key)] = value

    # v1 stored pausedUntil as epoch milliseconds
    paused = data.get("paused_until")
    if isinstance(paused, (int, float)):
        data["paused_until"] = datetime.fromtimestamp(paused / 1000, tz=UTC)

    data["version"] = OPTIMIZATION_SCHEMA_VERSION

    try:
        config = OptimizationConfig.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Optimization config invalid ({e.error_count()} errors), using defaults")
        return default_optimization_config()

    for name in ("alert_confidence", "min_risk_reward", "min_risk_reward_gold", "min_adx", "cooldown_hours"):
        setattr(config, name, BOUNDS[name].clamp(getattr(config, name)))
    weight_bounds = BOUNDS["ai_weight"]
    config.ai_weights = {k: weight_bounds.clamp(v) for k, v in config.ai_weights.items()}
    for regime in ALWAYS_BLOCKED_REGIMES:
        if regime not in config.blocked_regimes:
            config.blocked_regimes.append(regime)
    return config


async def load_optimization_config(store: DocumentStore) -> OptimizationConfig:
    """Прочитать конфиг (defaults если нет / store недоступен)."""
    doc = await store.get(StoreKeys.OPTIMIZATION_CONFIG)
    return migrate_document(doc)


async def save_optimization_config(store: DocumentStore, config: OptimizationConfig) -> bool:
    return await store.set(
        StoreKeys.OPTIMIZATION_CONFIG,
        config.model_dump(mode="json"),
        ttl=CacheTTL.OPTIMIZATION,
    )
