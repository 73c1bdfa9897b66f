"""
Signal Validation

Фильтр consensus кандидата по живым индикаторам и текущим порогам optimizer.
Возвращает причину отклонения (str) или None если сигнал проходит.
"""
from datetime import datetime
from typing import Optional

from loguru import logger

from config.trading_config import ScanConfig
from src.core.enums import Tier, VolumeTrend
from src.learning.optimization_config import OptimizationConfig
from src.services.consensus.models import ConsensusSignal, levels_ordered
from src.services.technical_indicators import IndicatorSnapshot


class RejectReason:
    """Коды отклонения (попадают в логи и API ответы)."""
    PAUSED = "trading_paused"
    LEVELS = "invalid_levels"
    CONFIDENCE = "low_confidence"
    RISK_REWARD = "low_risk_reward"
    ADX = "weak_trend"
    SUPERTREND = "supertrend_conflict"
    VOLUME = "decreasing_volume"
    REGIME = "blocked_regime"
    ATR = "low_volatility"
    BLACKLIST = "symbol_blacklisted"


class SignalValidator:
    """Indicator + threshold gate для consensus сигналов."""

    def __init__(self, scan_config: Optional[ScanConfig] = None):
        self.scan_config = scan_config or ScanConfig()

    def validate(
        self,
        signal: ConsensusSignal,
        indicators: Optional[IndicatorSnapshot],
        config: OptimizationConfig,
        now: datetime,
    ) -> Optional[str]:
        """
        Проверить сигнал.

        Args:
            signal: consensus кандидат
            indicators: snapshot индикаторов (None = только пороговые проверки)
            config: текущий OptimizationConfig
            now: момент проверки (для паузы)

        Returns:
            RejectReason код или None
        """
        reason = self._check(signal, indicators, config, now)
        if reason:
            logger.info(f"⛔ {signal.symbol} {signal.direction.value} rejected: {reason}")
        return reason

    def _check(self, signal, indicators, config, now) -> Optional[str]:
        if config.is_paused(now):
            return RejectReason.PAUSED

        if not levels_ordered(signal.direction, signal.entry, signal.stop_loss, signal.take_profit):
            return RejectReason.LEVELS

        if signal.symbol in config.blacklisted_symbols:
            return RejectReason.BLACKLIST

        if signal.confidence < config.alert_confidence:
            return RejectReason.CONFIDENCE

        if signal.risk_reward < config.min_rr_for(signal.tier.value):
            return RejectReason.RISK_REWARD

        if indicators is None:
            return None

        if indicators.adx is not None and indicators.adx < config.min_adx:
            return RejectReason.ADX

        # Gold consensus перекрывает supertrend
        if (
            signal.tier is not Tier.GOLD
            and indicators.supertrend_direction is not None
            and indicators.supertrend_direction is not signal.direction
        ):
            return RejectReason.SUPERTREND

        if indicators.regime.value in config.blocked_regimes:
            return RejectReason.REGIME

        if indicators.volume_trend is VolumeTrend.DECREASING:
            return RejectReason.VOLUME

        if (
            indicators.atr_percent is not None
            and indicators.atr_percent < self.scan_config.min_atr_pct
        ):
            return RejectReason.ATR

        return None
