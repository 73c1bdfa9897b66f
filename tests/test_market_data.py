"""
Tests for market data fan-out and provider fallback
"""
import asyncio

import pytest

from src.services.market_data import MarketDataService, MarketDataUnavailable, gather_with_deadline


async def test_gather_drops_failures_and_none():
    async def worker(symbol):
        if symbol == "BAD":
            raise ValueError("boom")
        if symbol == "EMPTY":
            return None
        return symbol.lower()

    result = await gather_with_deadline(["BTC", "BAD", "EMPTY", "ETH"], worker, deadline=1.0)
    assert result == {"BTC": "btc", "ETH": "eth"}


async def test_gather_cancels_slow_tasks():
    cancelled = []

    async def worker(symbol):
        if symbol == "SLOW":
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(symbol)
                raise
        return 1

    result = await gather_with_deadline(["FAST", "SLOW"], worker, deadline=0.05)

    assert result == {"FAST": 1}
    assert cancelled == ["SLOW"]


async def test_gather_empty():
    async def worker(symbol):
        return symbol

    assert await gather_with_deadline([], worker, deadline=1.0) == {}


class TestPriceFallback:
    @pytest.fixture
    def service(self):
        return MarketDataService(binance_url="http://binance.test", bybit_url="http://bybit.test")

    async def test_binance_first(self, service, monkeypatch):
        async def binance():
            return {"BTCUSDT": 100.0, "ETHUSDT": 2000.0}

        async def bybit():
            raise AssertionError("fallback should not be called")

        monkeypatch.setattr(service, "_binance_prices", binance)
        monkeypatch.setattr(service, "_bybit_prices", bybit)

        assert await service.get_prices(["btcusdt", "ETHUSDT", "BTCUSDT"]) == {
            "BTCUSDT": 100.0, "ETHUSDT": 2000.0,
        }

    async def test_bybit_fills_missing(self, service, monkeypatch):
        async def binance():
            raise MarketDataUnavailable("status 451")

        async def bybit():
            return {"BTCUSDT": 101.0}

        monkeypatch.setattr(service, "_binance_prices", binance)
        monkeypatch.setattr(service, "_bybit_prices", bybit)

        assert await service.get_prices(["BTCUSDT", "SOLUSDT"]) == {"BTCUSDT": 101.0}

    async def test_no_symbols(self, service):
        assert await service.get_prices([]) == {}

    async def test_candles_fall_back_to_none(self, service, monkeypatch):
        async def fail(symbol, interval, limit):
            raise MarketDataUnavailable("down")

        monkeypatch.setattr(service, "_binance_klines", fail)
        monkeypatch.setattr(service, "_bybit_klines", fail)

        assert await service.get_candles("BTCUSDT") is None
