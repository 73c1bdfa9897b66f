# coding: utf-8
"""
Market Data Service

Цены и свечи для scan / monitor:
- Binance Futures (primary, tenacity retry)
- Bybit linear (fallback)

Никогда не бросает наружу: недоступный символ просто отсутствует в результате.
"""
import asyncio
import logging  # Needed for tenacity before_sleep_log level constants
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol, TypeVar

import aiohttp
import pandas as pd
from loguru import logger
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.config import (
    BINANCE_FUTURES_URL,
    BYBIT_API_URL,
    MARKET_DATA_TIMEOUT_SEC,
)


T = TypeVar("T")


class MarketDataSource(Protocol):
    async def get_prices(self, symbols: Iterable[str]) -> Dict[str, float]: ...

    async def get_candles(self, symbol: str, interval: str = "1h", limit: int = 200) -> Optional[pd.DataFrame]: ...


class MarketDataUnavailable(Exception):
    """Провайдер вернул не-200 или retCode != 0"""


async def gather_with_deadline(
    items: Iterable[str],
    worker: Callable[[str], Awaitable[Optional[T]]],
    deadline: float,
    concurrency: int = 8,
) -> Dict[str, T]:
    """
    Запустить worker(item) для всех items с ограничением параллелизма.

    Всё, что не успело до deadline, отменяется. Исключения worker
    логируются, item пропускается.

    Returns:
        {item: result} только для успешных не-None результатов
    """
    semaphore = asyncio.Semaphore(concurrency)
    results: Dict[str, T] = {}

    async def run(item: str) -> None:
        async with semaphore:
            try:
                value = await worker(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"{item}: task failed: {e}")
                return
            if value is not None:
                results[item] = value

    tasks = [asyncio.create_task(run(item)) for item in items]
    if not tasks:
        return results

    done, pending = await asyncio.wait(tasks, timeout=deadline)
    for task in pending:
        task.cancel()
    if pending:
        logger.warning(f"Deadline {deadline}s reached: {len(pending)} tasks cancelled")
        await asyncio.gather(*pending, return_exceptions=True)
    return results


class MarketDataService:
    """
    Binance → Bybit fallback.

    Features:
    - Batch ticker fetch (один запрос на провайдера)
    - Klines в pandas DataFrame (oldest first)
    - ClientTimeout на каждый запрос
    """

    BYBIT_INTERVALS = {
        "1m": "1", "5m": "5", "15m": "15", "30m": "30",
        "1h": "60", "2h": "120", "4h": "240", "1d": "D",
    }

    def __init__(
        self,
        binance_url: str = BINANCE_FUTURES_URL,
        bybit_url: str = BYBIT_API_URL,
        timeout_sec: float = MARKET_DATA_TIMEOUT_SEC,
    ):
        self.binance_url = binance_url.rstrip("/")
        self.bybit_url = bybit_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url, params=params) as response:
                if response.status != 200:
                    raise MarketDataUnavailable(f"{url} status {response.status}")
                return await response.json()

    # -------------------------------------------------------------------------
    # Binance
    # -------------------------------------------------------------------------

    @retry(
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _binance_prices(self) -> Dict[str, float]:
        data = await self._get_json(f"{self.binance_url}/fapi/v1/ticker/price")
        return {item["symbol"]: float(item["price"]) for item in data if "price" in item}

    @retry(
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _binance_klines(self, symbol: str, interval: str, limit: int) -> Optional[pd.DataFrame]:
        data = await self._get_json(
            f"{self.binance_url}/fapi/v1/klines",
            params={"symbol": symbol, "interval": interval, "limit": min(limit, 1500)},
        )
        if not data:
            return None
        # [open_time, open, high, low, close, volume, close_time, ...]
        rows = [
            {
                "timestamp": int(k[0]),
                "open": float(k[1]),
                "high": float(k[2]),
                "low": float(k[3]),
                "close": float(k[4]),
                "volume": float(k[5]),
            }
            for k in data
        ]
        return pd.DataFrame(rows)

    # -------------------------------------------------------------------------
    # Bybit
    # -------------------------------------------------------------------------

    async def _bybit_prices(self) -> Dict[str, float]:
        data = await self._get_json(
            f"{self.bybit_url}/v5/market/tickers", params={"category": "linear"}
        )
        if data.get("retCode") != 0:
            raise MarketDataUnavailable(f"Bybit error: {data.get('retMsg')}")
        return {
            t["symbol"]: float(t["lastPrice"])
            for t in data.get("result", {}).get("list", [])
            if t.get("lastPrice")
        }

    async def _bybit_klines(self, symbol: str, interval: str, limit: int) -> Optional[pd.DataFrame]:
        data = await self._get_json(
            f"{self.bybit_url}/v5/market/kline",
            params={
                "category": "linear",
                "symbol": symbol,
                "interval": self.BYBIT_INTERVALS.get(interval, interval),
                "limit": min(limit, 1000),
            },
        )
        if data.get("retCode") != 0:
            raise MarketDataUnavailable(f"Bybit klines error: {data.get('retMsg')}")
        klines = data.get("result", {}).get("list", [])
        if not klines:
            return None

        # Bybit возвращает: [startTime, open, high, low, close, volume, turnover], новые первыми
        rows = sorted(
            (
                {
                    "timestamp": int(k[0]),
                    "open": float(k[1]),
                    "high": float(k[2]),
                    "low": float(k[3]),
                    "close": float(k[4]),
                    "volume": float(k[5]),
                }
                for k in klines
            ),
            key=lambda x: x["timestamp"],
        )
        return pd.DataFrame(rows)

    # -------------------------------------------------------------------------
    # Public
    # -------------------------------------------------------------------------

    async def get_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        """
        Текущие цены символов.

        Returns:
            {symbol: price}; символы без цены у обоих провайдеров отсутствуют
        """
        wanted = list(dict.fromkeys(s.upper() for s in symbols))
        if not wanted:
            return {}

        prices: Dict[str, float] = {}
        try:
            prices = await self._binance_prices()
        except (aiohttp.ClientError, asyncio.TimeoutError, MarketDataUnavailable, ValueError) as e:
            logger.warning(f"Binance prices unavailable: {e}")

        missing = [s for s in wanted if s not in prices]
        if missing:
            try:
                fallback = await self._bybit_prices()
                prices.update({s: fallback[s] for s in missing if s in fallback})
            except (aiohttp.ClientError, asyncio.TimeoutError, MarketDataUnavailable, ValueError) as e:
                logger.warning(f"Bybit prices unavailable: {e}")

        result = {s: prices[s] for s in wanted if s in prices}
        if len(result) < len(wanted):
            logger.warning(f"No price for: {sorted(set(wanted) - set(result))}")
        return result

    async def get_candles(self, symbol: str, interval: str = "1h", limit: int = 200) -> Optional[pd.DataFrame]:
        """OHLCV свечи (oldest first) или None."""
        try:
            df = await self._binance_klines(symbol, interval, limit)
            if df is not None and not df.empty:
                return df
        except (aiohttp.ClientError, asyncio.TimeoutError, MarketDataUnavailable, ValueError) as e:
            logger.warning(f"Binance klines {symbol} unavailable: {e}")

        try:
            return await self._bybit_klines(symbol, interval, limit)
        except (aiohttp.ClientError, asyncio.TimeoutError, MarketDataUnavailable, ValueError) as e:
            logger.error(f"Error fetching klines for {symbol}: {e}")
            return None


# Singleton instance
market_data_service = MarketDataService()
