"""
Trading Configuration

Defaults для consensus, lifecycle и risk sizing.
Значения - стартовые; optimizer подстраивает часть порогов (см. OptimizationConfig).
"""
from dataclasses import dataclass, field
from typing import Dict, List, Tuple


@dataclass
class TierConfig:
    """Риск-профиль одного портфеля (Silver / Gold)."""
    leverage: float
    base_risk_pct: float           # % баланса на сделку (до множителей)
    max_open_trades: int
    trail_pct: float               # trailing distance, % от entry
    breakeven_threshold: float = 0.5   # progress к TP для переноса SL в entry
    trail_activation: float = 0.75     # progress к TP для включения trailing


@dataclass
class ConsensusTolerance:
    """Wiggle tolerance (%) при сравнении уровней разных моделей."""
    entry_pct: float = 4.0
    stop_loss_pct: float = 3.0
    take_profit_pct: float = 5.0
    min_sources: int = 2
    gold_sources: int = 3


@dataclass
class KellyConfig:
    """Kelly criterion base risk."""
    min_trades: int = 15
    fraction: float = 0.5          # half-Kelly
    floor_pct: float = 1.0
    max_multiplier: float = 2.0    # cap = base_risk * max_multiplier


@dataclass
class AntiMartingaleConfig:
    """Множитель за серию побед."""
    step_per_win: float = 0.3
    max_multiplier: float = 2.0


@dataclass
class CircuitBreakerConfig:
    """Ограничители потерь."""
    daily_loss_pct: float = 5.0
    weekly_loss_pct: float = 15.0
    drawdown_kill: float = 0.30     # стоп торговли при просадке 30% от пика
    drawdown_recovery: float = 0.25  # возобновление когда просадка < 25%
    max_exposure_ratio: float = 0.60  # суммарная маржа / баланс


@dataclass
class PortfolioLimits:
    """Размеры документов портфеля."""
    initial_balance: float = 5000.0
    max_trades: int = 100
    max_equity_points: int = 200
    pending_entry_expiry_hours: int = 48
    entry_touch_tolerance_pct: float = 0.1
    # Открытых сделок одной correlation group в портфеле
    max_open_per_group: int = 2


@dataclass
class ShadowConfig:
    """Shadow signals (scorekeeping моделей)."""
    entry_tolerance_pct: float = 0.1
    entry_expiry_hours: int = 48
    auto_resolve_hours: int = 6
    max_signals: int = 500


@dataclass
class TVConfirmationConfig:
    """TradingView indicator confirmation."""
    enabled: bool = True
    ttl_minutes: int = 30
    strict: bool = False            # True = без подтверждения сигнал не проходит
    confidence_boost: float = 5.0
    history_size: int = 50


@dataclass
class TVPortfolioConfig:
    """Отдельный paper портфель по сигналам TradingView (silver-level sizing)."""
    enabled: bool = True
    leverage: float = 5
    risk_pct: float = 18.0
    max_open_trades: int = 5
    initial_balance: float = 5000.0
    source_label: str = "tradingview"


@dataclass
class ScanConfig:
    """Фильтры scan pipeline."""
    min_atr_pct: float = 0.4
    cooldown_override_pct: float = 10.0
    # Новых сигналов одной correlation group за scan cycle
    max_signals_per_group: int = 1


@dataclass
class TradingConfig:
    """Главная trading конфигурация."""
    silver: TierConfig = field(default_factory=lambda: TierConfig(
        leverage=5, base_risk_pct=18.0, max_open_trades=5, trail_pct=2.0,
    ))
    gold: TierConfig = field(default_factory=lambda: TierConfig(
        leverage=7, base_risk_pct=22.0, max_open_trades=4, trail_pct=1.5,
    ))

    # (доля пути entry→TP, доля исходного размера). Сумма долей = 1.0
    partial_take_profits: List[Tuple[float, float]] = field(
        default_factory=lambda: [(0.5, 0.4), (0.75, 0.3), (1.0, 0.3)]
    )

    tolerance: ConsensusTolerance = field(default_factory=ConsensusTolerance)
    kelly: KellyConfig = field(default_factory=KellyConfig)
    anti_martingale: AntiMartingaleConfig = field(default_factory=AntiMartingaleConfig)
    circuit_breakers: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    portfolio: PortfolioLimits = field(default_factory=PortfolioLimits)
    shadow: ShadowConfig = field(default_factory=ShadowConfig)
    tv: TVConfirmationConfig = field(default_factory=TVConfirmationConfig)
    tv_portfolio: TVPortfolioConfig = field(default_factory=TVPortfolioConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)

    # (порог confidence, множитель), по убыванию порога
    confidence_scaling: List[Tuple[float, float]] = field(
        default_factory=lambda: [(92, 1.3), (85, 1.1), (75, 1.0)]
    )
    confidence_scaling_floor: float = 0.7

    regime_multipliers: Dict[str, float] = field(default_factory=lambda: {
        "TRENDING_UP": 1.1,
        "TRENDING_DOWN": 1.1,
        "VOLATILE": 0.7,
        "RANGING": 0.6,
        "CHOPPY": 0.6,
    })
    max_risk_pct: float = 40.0

    correlation_groups: Dict[str, str] = field(default_factory=lambda: {
        "BTCUSDT": "majors",
        "ETHUSDT": "majors",
        "SOLUSDT": "l1",
        "AVAXUSDT": "l1",
        "SUIUSDT": "l1",
        "APTUSDT": "l1",
        "DOGEUSDT": "meme",
        "PEPEUSDT": "meme",
        "SHIBUSDT": "meme",
        "WIFUSDT": "meme",
        "ARBUSDT": "l2",
        "OPUSDT": "l2",
    })

    def tier(self, name: str) -> TierConfig:
        """Tier config по имени ('silver' / 'gold')."""
        return self.gold if name.lower() == "gold" else self.silver

    def correlation_group(self, symbol: str) -> str:
        """Группа корреляции; символ без группы образует свою."""
        return self.correlation_groups.get(symbol, symbol)


# Singleton instance
TRADING_CONFIG = TradingConfig()


def get_trading_config() -> TradingConfig:
    """Получить конфигурацию."""
    return TRADING_CONFIG
