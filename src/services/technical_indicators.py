# coding: utf-8
"""
Technical Indicators Service

Calculates the indicator snapshot the signal filter consults, using the
'ta' library:
- RSI, EMA20/EMA50 trend
- ADX (trend strength)
- ATR and ATR% of price (volatility)
- Supertrend direction
- Volume trend (last 5 vs last 20 candles)
- Market regime classification

Requires candlestick (OHLCV) data from the market data service.
"""
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Union

import pandas as pd
import ta

from loguru import logger

from src.core.enums import Direction, MarketRegime, VolumeTrend


MIN_CANDLES = 50

VOLUME_RISE = 1.2
VOLUME_FALL = 0.8
VOLATILE_ATR_PCT = 5.0
RANGING_ADX = 20.0


@dataclass
class IndicatorSnapshot:
    """Состояние индикаторов одного символа на момент scan."""
    symbol: str
    price: float
    rsi: Optional[float] = None
    ema_20: Optional[float] = None
    ema_50: Optional[float] = None
    trend: str = "NEUTRAL"
    adx: Optional[float] = None
    atr: Optional[float] = None
    atr_percent: Optional[float] = None
    supertrend: Optional[float] = None
    supertrend_direction: Optional[Direction] = None
    volume_trend: VolumeTrend = VolumeTrend.STABLE
    regime: MarketRegime = MarketRegime.UNKNOWN

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["volume_trend"] = self.volume_trend.value
        data["regime"] = self.regime.value
        data["supertrend_direction"] = (
            self.supertrend_direction.value if self.supertrend_direction else None
        )
        return data


CandleInput = Union[pd.DataFrame, Sequence[Mapping[str, Any]]]


def candles_to_frame(candles: CandleInput) -> Optional[pd.DataFrame]:
    """
    Normalize candles into a float DataFrame (open, high, low, close, volume)

    Args:
        candles: DataFrame or list of dicts with OHLCV keys

    Returns:
        DataFrame or None if columns are missing
    """
    df = candles if isinstance(candles, pd.DataFrame) else pd.DataFrame(list(candles))
    required_cols = ["open", "high", "low", "close", "volume"]
    if df.empty or not all(col in df.columns for col in required_cols):
        return None
    return df[required_cols].astype(float).reset_index(drop=True)


def classify_trend(price: float, ema_20: float, ema_50: float) -> str:
    """EMA trend label"""
    if price > ema_20 > ema_50:
        return "STRONG_UPTREND"
    if price > ema_20:
        return "WEAK_UPTREND"
    if price < ema_20 < ema_50:
        return "STRONG_DOWNTREND"
    if price < ema_20:
        return "WEAK_DOWNTREND"
    return "NEUTRAL"


def volume_trend(volume: Iterable[float]) -> VolumeTrend:
    """Average of the last 5 candles against the last 20"""
    values = list(volume)
    if len(values) < 20:
        return VolumeTrend.STABLE
    avg_20 = sum(values[-20:]) / 20
    avg_5 = sum(values[-5:]) / 5
    if avg_5 > avg_20 * VOLUME_RISE:
        return VolumeTrend.INCREASING
    if avg_5 < avg_20 * VOLUME_FALL:
        return VolumeTrend.DECREASING
    return VolumeTrend.STABLE


def classify_regime(adx: Optional[float], atr_percent: Optional[float], trend: str) -> MarketRegime:
    """
    VOLATILE if ATR% > 5, RANGING if ADX < 20,
    TRENDING_UP/DOWN by EMA trend, otherwise CHOPPY
    """
    if adx is None:
        return MarketRegime.UNKNOWN
    if atr_percent is not None and atr_percent > VOLATILE_ATR_PCT:
        return MarketRegime.VOLATILE
    if adx < RANGING_ADX:
        return MarketRegime.RANGING
    if "UPTREND" in trend:
        return MarketRegime.TRENDING_UP
    if "DOWNTREND" in trend:
        return MarketRegime.TRENDING_DOWN
    return MarketRegime.CHOPPY


def supertrend(df: pd.DataFrame, period: int = 10, multiplier: float = 3.0):
    """
    Supertrend on the last candle

    Final bands only tighten while price stays inside them; direction
    flips when close crosses the previous opposite band.

    Returns:
        (level, Direction) or (None, None) if not enough data
    """
    if len(df) < period + 2:
        return None, None

    atr = ta.volatility.AverageTrueRange(
        high=df["high"], low=df["low"], close=df["close"], window=period
    ).average_true_range().to_numpy()
    hl2 = ((df["high"] + df["low"]) / 2).to_numpy()
    close = df["close"].to_numpy()

    upper = hl2 + multiplier * atr
    lower = hl2 - multiplier * atr
    start = period - 1
    direction = Direction.LONG if close[start] >= hl2[start] else Direction.SHORT

    for i in range(start + 1, len(df)):
        if not (upper[i] < upper[i - 1] or close[i - 1] > upper[i - 1]):
            upper[i] = upper[i - 1]
        if not (lower[i] > lower[i - 1] or close[i - 1] < lower[i - 1]):
            lower[i] = lower[i - 1]

        if direction is Direction.SHORT and close[i] > upper[i - 1]:
            direction = Direction.LONG
        elif direction is Direction.LONG and close[i] < lower[i - 1]:
            direction = Direction.SHORT

    level = lower[-1] if direction is Direction.LONG else upper[-1]
    return round(float(level), 8), direction


class TechnicalIndicators:
    """
    Service for calculating the indicator snapshot

    Uses 'ta' library (https://github.com/bukosabino/ta)
    """

    def calculate(self, symbol: str, candles: CandleInput) -> Optional[IndicatorSnapshot]:
        """
        Calculate indicators from OHLCV data

        Args:
            symbol: Trading pair
            candles: OHLCV candles, oldest first

        Returns:
            IndicatorSnapshot or None if data is insufficient
        """
        df = candles_to_frame(candles)
        if df is None or len(df) < MIN_CANDLES:
            logger.warning(
                f"{symbol}: insufficient data for indicators (need at least {MIN_CANDLES} candles)"
            )
            return None

        close_series = df["close"]
        price = float(close_series.iloc[-1])
        snapshot = IndicatorSnapshot(symbol=symbol, price=price)

        try:
            snapshot.rsi = round(float(
                ta.momentum.RSIIndicator(close=close_series, window=14).rsi().iloc[-1]
            ), 2)
        except (ValueError, IndexError) as e:
            logger.warning(f"{symbol}: error calculating RSI: {e}")

        try:
            snapshot.ema_20 = float(ta.trend.EMAIndicator(close=close_series, window=20).ema_indicator().iloc[-1])
            snapshot.ema_50 = float(ta.trend.EMAIndicator(close=close_series, window=50).ema_indicator().iloc[-1])
            snapshot.trend = classify_trend(price, snapshot.ema_20, snapshot.ema_50)
        except (ValueError, IndexError) as e:
            logger.warning(f"{symbol}: error calculating EMA: {e}")

        try:
            adx = ta.trend.ADXIndicator(high=df["high"], low=df["low"], close=close_series, window=14)
            snapshot.adx = round(float(adx.adx().iloc[-1]), 2)
        except (ValueError, IndexError) as e:
            logger.warning(f"{symbol}: error calculating ADX: {e}")

        try:
            atr = ta.volatility.AverageTrueRange(
                high=df["high"], low=df["low"], close=close_series, window=14
            ).average_true_range().iloc[-1]
            snapshot.atr = float(atr)
            snapshot.atr_percent = round(float(atr) / price * 100, 3) if price else None
        except (ValueError, IndexError) as e:
            logger.warning(f"{symbol}: error calculating ATR: {e}")

        snapshot.supertrend, snapshot.supertrend_direction = supertrend(df)
        snapshot.volume_trend = volume_trend(df["volume"])
        snapshot.regime = classify_regime(snapshot.adx, snapshot.atr_percent, snapshot.trend)
        return snapshot

    @staticmethod
    def format_for_prompt(snapshot: IndicatorSnapshot) -> str:
        """Compact indicator block for the AI prompt"""
        lines = [
            f"{snapshot.symbol} price {snapshot.price}",
            f"  RSI(14): {snapshot.rsi}",
            f"  EMA20/EMA50: {snapshot.ema_20} / {snapshot.ema_50} ({snapshot.trend})",
            f"  ADX(14): {snapshot.adx}",
            f"  ATR%: {snapshot.atr_percent}",
            f"  Supertrend: {snapshot.supertrend_direction.value if snapshot.supertrend_direction else 'n/a'}",
            f"  Volume Trend: {snapshot.volume_trend.value}",
            f"  Regime: {snapshot.regime.value}",
        ]
        return "\n".join(lines)


# Singleton instance
technical_indicators = TechnicalIndicators()
