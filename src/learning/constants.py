"""
Learning Module Constants

Границы и пороги adaptive optimizer.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class ParamBounds:
    """Жёсткие границы параметра и значение по умолчанию."""
    min: float
    max: float
    default: float

    def clamp(self, value: float) -> float:
        return max(self.min, min(self.max, value))


# =============================================================================
# PARAMETER BOUNDS
# =============================================================================

BOUNDS = {
    "alert_confidence": ParamBounds(55, 90, 75),
    "min_risk_reward": ParamBounds(1.2, 4.0, 2.0),
    "min_risk_reward_gold": ParamBounds(1.0, 3.0, 1.5),
    "min_adx": ParamBounds(10, 30, 15),
    "ai_weight": ParamBounds(0.3, 2.0, 1.0),
    "cooldown_hours": ParamBounds(4, 24, 12),
}

# Макс. изменение параметра за цикл (доля от текущего значения)
MAX_ADJUSTMENT_RATE = 0.20

# Минимум закрытых сделок для любых изменений
MIN_TRADES = 10


# =============================================================================
# DIMENSION THRESHOLDS
# =============================================================================

# AI weight: win rate 50% ≈ weight 1.0
AI_WEIGHT_MIN_TRADES = 3

# Confidence floor
CONFIDENCE_BUCKET_SIZE = 5
CONFIDENCE_BUCKET_MIN_TRADES = 3
CONFIDENCE_BUCKET_MIN_WIN_RATE = 0.45

# Risk:reward buckets (<2, 2..3, ≥3)
RR_LOW_MIN_TRADES = 5
RR_LOW_MIN_WIN_RATE = 0.55
RR_MID_MIN_TRADES = 5
RR_MID_MIN_WIN_RATE = 0.45
RR_HIGH_MIN_TRADES = 3
RR_OPTIMAL = {"low": 1.5, "mid": 2.0, "high": 2.5}
GOLD_RR_RATIO = 0.75

# Symbol blacklist / regime block
SYMBOL_MIN_TRADES = 8
SYMBOL_MAX_WIN_RATE = 0.30
REGIME_MIN_TRADES = 6
REGIME_MAX_WIN_RATE = 0.35
ALWAYS_BLOCKED_REGIMES = ("CHOPPY",)

# Loss streak pause
LOSS_STREAK_LIMIT = 3
LOSS_STREAK_PAUSE_HOURS = 2

# ADX floor nudge
ADX_LOW_WIN_RATE = 0.40
ADX_HIGH_WIN_RATE = 0.60
ADX_RAISE_STEP = 2
ADX_LOWER_STEP = 1

# Audit log
OPTIMIZATION_LOG_SIZE = 20

# Schema version of OptimizationConfig documents
OPTIMIZATION_SCHEMA_VERSION = 2
