"""
Cooldown / Dedup Gate

Один LastSignalRecord на символ. Правила (по порядку):
1. записи нет → allow
2. прошло ≥ cooldown window → allow
3. direction сменился → allow (разворот разрешён всегда)
4. цена ушла ≥ override % от записанного entry → allow
5. иначе → block (с оставшимися часами)

На allow запись перезаписывается (direction, entry, now).
Гонка двух параллельных вызовов по одному символу допустима: второй
барьер - запрет второй открытой сделки по символу в портфеле.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import List, Optional

from loguru import logger
from pydantic import BaseModel, ValidationError, field_validator

from config.cache_config import CacheTTL
from src.cache.base import DocumentStore
from src.cache.cache_keys import StoreKeys
from src.core.enums import Direction
from src.learning.constants import BOUNDS


DEFAULT_OVERRIDE_PCT = 10.0


class LastSignalRecord(BaseModel):
    """Последний принятый сигнал по символу."""

    symbol: str
    direction: Direction
    entry: float
    timestamp: datetime

    @field_validator("direction", mode="before")
    @classmethod
    def _direction(cls, v):
        direction = Direction.parse(v)
        if direction is None:
            raise ValueError(f"bad direction {v!r}")
        return direction

    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp(cls, v):
        # epoch milliseconds from older records
        if isinstance(v, (int, float)):
            return datetime.fromtimestamp(v / 1000, tz=UTC)
        return v


@dataclass
class CooldownDecision:
    allowed: bool
    reason: str
    hours_remaining: float = 0.0
    price_move_pct: Optional[float] = None
    last: Optional[LastSignalRecord] = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "hours_remaining": round(self.hours_remaining, 2),
            "price_move_pct": round(self.price_move_pct, 2) if self.price_move_pct is not None else None,
            "last_signal": self.last.model_dump(mode="json") if self.last else None,
        }


def evaluate_cooldown(
    record: Optional[LastSignalRecord],
    direction: Direction,
    entry: float,
    now: datetime,
    cooldown_hours: float,
    override_pct: float = DEFAULT_OVERRIDE_PCT,
) -> CooldownDecision:
    """Чистое решение gate по записи и новому сигналу."""
    if record is None:
        return CooldownDecision(True, "no_record")

    elapsed_hours = (now - record.timestamp).total_seconds() / 3600
    if elapsed_hours >= cooldown_hours:
        return CooldownDecision(True, "cooldown_elapsed", last=record)

    if record.direction is not direction:
        return CooldownDecision(True, "direction_flip", last=record)

    move_pct = abs(entry - record.entry) / record.entry * 100 if record.entry > 0 else 0.0
    if move_pct >= override_pct:
        return CooldownDecision(True, "price_override", price_move_pct=move_pct, last=record)

    return CooldownDecision(
        False,
        "cooldown_active",
        hours_remaining=max(cooldown_hours - elapsed_hours, 0.0),
        price_move_pct=move_pct,
        last=record,
    )


class CooldownGate:
    """Gate поверх document store."""

    def __init__(
        self,
        store: DocumentStore,
        cooldown_hours: float = BOUNDS["cooldown_hours"].default,
        override_pct: float = DEFAULT_OVERRIDE_PCT,
    ):
        self.store = store
        self.cooldown_hours = cooldown_hours
        self.override_pct = override_pct

    async def get_record(self, symbol: str) -> Optional[LastSignalRecord]:
        doc = await self.store.get(StoreKeys.last_signal(symbol))
        if not doc:
            return None
        try:
            return LastSignalRecord.model_validate(doc)
        except ValidationError as e:
            logger.warning(f"Corrupt cooldown record for {symbol}, ignoring: {e.error_count()} errors")
            return None

    async def check(
        self,
        symbol: str,
        direction: Direction,
        entry: float,
        now: Optional[datetime] = None,
        cooldown_hours: Optional[float] = None,
    ) -> CooldownDecision:
        now = now or datetime.now(UTC)
        record = await self.get_record(symbol)
        return evaluate_cooldown(
            record,
            direction,
            entry,
            now,
            cooldown_hours if cooldown_hours is not None else self.cooldown_hours,
            self.override_pct,
        )

    async def record(
        self,
        symbol: str,
        direction: Direction,
        entry: float,
        now: Optional[datetime] = None,
        cooldown_hours: Optional[float] = None,
    ) -> bool:
        now = now or datetime.now(UTC)
        hours = cooldown_hours if cooldown_hours is not None else self.cooldown_hours
        record = LastSignalRecord(symbol=symbol.upper(), direction=direction, entry=entry, timestamp=now)
        ttl = max(CacheTTL.LAST_SIGNAL, int(hours * 3600))
        return await self.store.set(
            StoreKeys.last_signal(symbol), record.model_dump(mode="json"), ttl=ttl
        )

    async def check_and_record(
        self,
        symbol: str,
        direction: Direction,
        entry: float,
        now: Optional[datetime] = None,
        cooldown_hours: Optional[float] = None,
    ) -> CooldownDecision:
        """check, и при allow - перезаписать запись."""
        now = now or datetime.now(UTC)
        decision = await self.check(symbol, direction, entry, now, cooldown_hours)
        if decision.allowed:
            await self.record(symbol, direction, entry, now, cooldown_hours)
        else:
            logger.info(
                f"⏳ {symbol} {direction.value} in cooldown, "
                f"{decision.hours_remaining:.1f}h remaining"
            )
        return decision

    async def clear(self, symbol: str) -> bool:
        return await self.store.delete(StoreKeys.last_signal(symbol))

    async def active_records(self) -> List[LastSignalRecord]:
        """Все живые записи (для API)."""
        records = []
        for key in await self.store.scan(StoreKeys.LAST_SIGNAL_PREFIX):
            record = await self.get_record(key[len(StoreKeys.LAST_SIGNAL_PREFIX):])
            if record is not None:
                records.append(record)
        return records


def cooldown_window_end(record: LastSignalRecord, cooldown_hours: float) -> datetime:
    return record.timestamp + timedelta(hours=cooldown_hours)
