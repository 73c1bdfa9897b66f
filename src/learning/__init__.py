"""
Learning Module

Adaptive optimizer для signal engine:
- AI model weights по win rate
- Пороги confidence / R:R / ADX
- Symbol blacklist и blocked regimes
- Пауза после серии поражений
"""

from src.learning.constants import BOUNDS, MAX_ADJUSTMENT_RATE, MIN_TRADES, ParamBounds
from src.learning.bucketizer import BucketStats, bucketize, get_confidence_bucket, get_rr_bucket
from src.learning.optimization_config import (
    OptimizationConfig,
    default_optimization_config,
    load_optimization_config,
    migrate_document,
    save_optimization_config,
)
from src.learning.optimizer import AdaptiveOptimizer, OptimizationResult, adjust_param, optimize

__all__ = [
    "BOUNDS",
    "MAX_ADJUSTMENT_RATE",
    "MIN_TRADES",
    "ParamBounds",
    "BucketStats",
    "bucketize",
    "get_confidence_bucket",
    "get_rr_bucket",
    "OptimizationConfig",
    "default_optimization_config",
    "load_optimization_config",
    "migrate_document",
    "save_optimization_config",
    "AdaptiveOptimizer",
    "OptimizationResult",
    "adjust_param",
    "optimize",
]
