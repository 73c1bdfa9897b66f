"""
TradingView Confirmation

Внешний индикатор присылает BUY/SELL через webhook; запись живёт TTL минут
(по умолчанию 30) и используется scan pipeline как фильтр подтверждения:
- противоположный сигнал → consensus отклоняется
- совпадающий → +confidence boost, уровни consensus не меняются
- нет сигнала → проходит (strict mode: отклоняется)
"""
import hmac
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Any, List, Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from config.cache_config import CacheTTL
from config.trading_config import TVConfirmationConfig
from src.cache.base import DocumentStore
from src.cache.cache_keys import StoreKeys
from src.core.enums import Direction
from src.core.exceptions import WebhookAuthError
from src.services.consensus.models import ConsensusSignal


def normalize_symbol(raw: str) -> str:
    """
    BTCUSD → BTCUSDT, BTC → BTCUSDT, BTCPERP / BTC.P → BTCUSDT
    """
    symbol = (raw or "").strip().upper()
    if not symbol or symbol.endswith("USDT"):
        return symbol
    if symbol.endswith("USD"):
        return symbol + "T"
    if symbol.endswith("PERP") or symbol.endswith(".P"):
        return re.sub(r"(\.P|PERP)$", "", symbol) + "USDT"
    return symbol + "USDT"


def _optional_price(v):
    if v in (None, ""):
        return None
    try:
        price = float(v)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None


class TVWebhookPayload(BaseModel):
    """Тело webhook от TradingView alert."""

    secret: str = ""
    symbol: str = Field(min_length=1)
    signal: str
    price: Optional[float] = None
    tp: Optional[float] = None
    sl: Optional[float] = None
    interval: str = ""
    indicator: str = "TV Indicator"

    @field_validator("signal", mode="before")
    @classmethod
    def _signal(cls, v):
        normalized = str(v or "").strip().upper()
        if normalized not in ("BUY", "SELL"):
            raise ValueError("Signal must be BUY or SELL")
        return normalized

    @field_validator("price", "tp", "sl", mode="before")
    @classmethod
    def _prices(cls, v):
        return _optional_price(v)

    @field_validator("interval", "indicator", mode="before")
    @classmethod
    def _text(cls, v):
        return "" if v is None else str(v)


class TVSignal(BaseModel):
    """Сохранённое подтверждение."""

    symbol: str
    signal: str
    price: Optional[float] = None
    tp: Optional[float] = None
    sl: Optional[float] = None
    interval: str = ""
    indicator_name: str = "TV Indicator"
    timestamp: datetime
    expires_at: datetime

    @property
    def direction(self) -> Direction:
        return Direction.LONG if self.signal == "BUY" else Direction.SHORT

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at


@dataclass
class ConfirmationResult:
    accepted: bool
    reason: str
    signal: ConsensusSignal


def verify_secret(provided: Any, expected: str) -> None:
    """
    Общая проверка секрета для webhook и cron endpoints.

    provided приходит из сырого JSON / заголовка: любой не-str тип
    (число, null, объект) считается неверным секретом.

    Raises:
        WebhookAuthError: 500 если секрет не настроен, 401 если не совпал
    """
    if not expected:
        raise WebhookAuthError("Secret not configured", status_code=500)
    if not isinstance(provided, str):
        raise WebhookAuthError("Invalid secret", status_code=401)
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise WebhookAuthError("Invalid secret", status_code=401)


class TVConfirmationService:
    """Приём webhook и проверка подтверждения для consensus."""

    def __init__(self, store: DocumentStore, config: Optional[TVConfirmationConfig] = None):
        self.store = store
        self.config = config or TVConfirmationConfig()

    async def receive(
        self,
        payload: TVWebhookPayload,
        expected_secret: str,
        now: Optional[datetime] = None,
    ) -> TVSignal:
        """
        Проверить секрет и сохранить подтверждение.

        Raises:
            WebhookAuthError: неверный/не настроенный секрет (state не меняется)
        """
        verify_secret(payload.secret, expected_secret)

        now = now or datetime.now(UTC)
        ttl_seconds = self.config.ttl_minutes * 60 or CacheTTL.TV_SIGNAL
        tv_signal = TVSignal(
            symbol=normalize_symbol(payload.symbol),
            signal=payload.signal,
            price=payload.price,
            tp=payload.tp,
            sl=payload.sl,
            interval=payload.interval,
            indicator_name=payload.indicator or "TV Indicator",
            timestamp=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

        doc = tv_signal.model_dump(mode="json")
        await self.store.set(StoreKeys.tv_signal(tv_signal.symbol), doc, ttl=ttl_seconds)

        history = await self.store.get(StoreKeys.TV_SIGNAL_HISTORY, default=[])
        if not isinstance(history, list):
            history = []
        history.insert(0, doc)
        await self.store.set(
            StoreKeys.TV_SIGNAL_HISTORY,
            history[: self.config.history_size],
            ttl=CacheTTL.TV_SIGNAL_HISTORY,
        )

        tpsl = f" | TP: {tv_signal.tp} SL: {tv_signal.sl}" if tv_signal.tp and tv_signal.sl else ""
        logger.info(
            f"📺 TV Signal: {tv_signal.signal} {tv_signal.symbol} @ {tv_signal.price}{tpsl} "
            f"(TTL: {self.config.ttl_minutes}min)"
        )
        return tv_signal

    async def get(self, symbol: str, now: Optional[datetime] = None) -> Optional[TVSignal]:
        now = now or datetime.now(UTC)
        doc = await self.store.get(StoreKeys.tv_signal(normalize_symbol(symbol)))
        if not doc:
            return None
        try:
            tv_signal = TVSignal.model_validate(doc)
        except ValidationError as e:
            logger.warning(f"Corrupt TV signal for {symbol}: {e.error_count()} errors")
            return None
        return tv_signal if tv_signal.is_live(now) else None

    async def active(self, now: Optional[datetime] = None) -> List[TVSignal]:
        now = now or datetime.now(UTC)
        signals = []
        for key in await self.store.scan(StoreKeys.TV_SIGNAL_PREFIX):
            tv_signal = await self.get(key[len(StoreKeys.TV_SIGNAL_PREFIX):], now)
            if tv_signal is not None:
                signals.append(tv_signal)
        return signals

    async def history(self) -> list:
        history = await self.store.get(StoreKeys.TV_SIGNAL_HISTORY, default=[])
        return history if isinstance(history, list) else []

    async def confirm(
        self, signal: ConsensusSignal, now: Optional[datetime] = None
    ) -> ConfirmationResult:
        """Применить подтверждение индикатора к consensus сигналу."""
        if not self.config.enabled:
            return ConfirmationResult(True, "tv_disabled", signal)

        tv_signal = await self.get(signal.symbol, now)
        if tv_signal is None:
            if self.config.strict:
                return ConfirmationResult(False, "tv_missing", signal)
            return ConfirmationResult(True, "tv_absent", signal)

        if tv_signal.direction is not signal.direction:
            logger.info(
                f"📺 {signal.symbol}: TV {tv_signal.signal} conflicts with {signal.direction.value}"
            )
            return ConfirmationResult(False, "tv_conflict", signal)

        # Только boost confidence, уровни остаются consensus
        update = {"confidence": min(signal.confidence + self.config.confidence_boost, 100.0)}
        return ConfirmationResult(True, "tv_confirmed", signal.model_copy(update=update))
