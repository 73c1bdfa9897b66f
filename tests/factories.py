"""
Test doubles and object builders shared by the test modules
"""
from datetime import datetime, timedelta, UTC
from typing import Dict, List, Optional

import pandas as pd

from src.core.enums import Direction, MarketRegime, Tier, TradeResult, TradeStatus, VolumeTrend
from src.services.consensus.models import ConsensusSignal
from src.services.portfolio.models import Trade
from src.services.technical_indicators import IndicatorSnapshot


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Управляемое время для TTL memory store."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeMarketData:
    def __init__(self, prices: Optional[Dict[str, float]] = None):
        self.prices = dict(prices or {})
        self.price_calls: List[List[str]] = []

    async def get_prices(self, symbols):
        symbols = list(symbols)
        self.price_calls.append(symbols)
        return {s: self.prices[s] for s in symbols if s in self.prices}

    async def get_candles(self, symbol, interval="1h", limit=200):
        price = self.prices.get(symbol)
        if price is None:
            return None
        rows = [
            {"open": price, "high": price * 1.01, "low": price * 0.99, "close": price, "volume": 1000.0}
            for _ in range(limit)
        ]
        return pd.DataFrame(rows)


class FakeAI:
    def __init__(self, responses: Optional[Dict[str, Optional[list]]] = None):
        self.responses = responses or {}
        self.models = list(self.responses)
        self.prompts: List[str] = []

    async def propose(self, prompt: str):
        self.prompts.append(prompt)
        return dict(self.responses)


class FakeNotifier:
    def __init__(self):
        self.messages: List[str] = []

    async def notify(self, text: str) -> bool:
        self.messages.append(text)
        return True


def make_trade(**overrides) -> Trade:
    data = dict(
        symbol="BTCUSDT",
        direction=Direction.LONG,
        entry=100.0,
        stop_loss=98.0,
        take_profit=106.0,
        size=1000.0,
        remaining_size=1000.0,
        leverage=5,
        tier=Tier.SILVER,
        status=TradeStatus.ACTIVE,
        opened_at=NOW,
    )
    data.update(overrides)
    return Trade(**data)


def make_signal(**overrides) -> ConsensusSignal:
    data = dict(
        symbol="BTCUSDT",
        direction=Direction.LONG,
        entry=100.0,
        stop_loss=97.0,
        take_profit=106.0,
        confidence=80.0,
        ai_sources=["model-a", "model-b"],
        tier=Tier.SILVER,
        created_at=NOW,
    )
    data.update(overrides)
    return ConsensusSignal(**data)


def proposal(symbol="BTCUSDT", direction="LONG", entry=100.0, sl=97.0, tp=106.0,
             confidence=80, trigger=None, reasons=None) -> dict:
    data = {
        "symbol": symbol,
        "direction": direction,
        "confidence": confidence,
        "entry": entry,
        "stopLoss": sl,
        "takeProfit": tp,
        "reasons": reasons or [],
    }
    if trigger:
        data["entryTrigger"] = trigger
    return data


def make_closed_trade(result: Optional[str] = "WIN", sources=("model-a", "model-b"), closed_at=None,
                      pnl: Optional[float] = None, **overrides) -> Trade:
    """Закрытая сделка для optimizer / stats тестов."""
    outcome = TradeResult(result) if result is not None else None
    data = dict(
        status=TradeStatus.CLOSED,
        remaining_size=0.0,
        ai_sources=list(sources),
        result=outcome,
        pnl=pnl if pnl is not None else {TradeResult.WIN: 10.0, TradeResult.LOSS: -10.0}.get(outcome, 0.0),
        closed_at=closed_at or NOW - timedelta(hours=1),
        confidence=80.0,
        regime="TRENDING_UP",
    )
    data.update(overrides)
    return make_trade(**data)


def make_snapshot(symbol: str, price: float, **overrides) -> IndicatorSnapshot:
    """Снимок индикаторов, проходящий все фильтры для LONG."""
    data = dict(
        symbol=symbol,
        price=price,
        rsi=58.0,
        ema_20=price * 0.99,
        ema_50=price * 0.97,
        trend="STRONG_UPTREND",
        adx=30.0,
        atr=price * 0.015,
        atr_percent=1.5,
        supertrend=price * 0.97,
        supertrend_direction=Direction.LONG,
        volume_trend=VolumeTrend.INCREASING,
        regime=MarketRegime.TRENDING_UP,
    )
    data.update(overrides)
    return IndicatorSnapshot(**data)
