"""
Tests for the per-symbol cooldown / dedup gate
"""
from datetime import timedelta

import pytest

from src.cache.cache_keys import StoreKeys
from src.core.enums import Direction
from src.services.consensus.cooldown import (
    CooldownGate,
    LastSignalRecord,
    evaluate_cooldown,
)


def _record(now, hours_ago=3, direction=Direction.LONG, entry=100.0):
    return LastSignalRecord(
        symbol="BTCUSDT", direction=direction, entry=entry,
        timestamp=now - timedelta(hours=hours_ago),
    )


def test_no_record_allows(now):
    decision = evaluate_cooldown(None, Direction.LONG, 100.0, now, 4)
    assert decision.allowed
    assert decision.reason == "no_record"


def test_same_direction_small_move_is_blocked(now):
    decision = evaluate_cooldown(_record(now), Direction.LONG, 101.5, now, 4)

    assert not decision.allowed
    assert decision.reason == "cooldown_active"
    assert decision.hours_remaining == pytest.approx(1.0)
    assert decision.price_move_pct == pytest.approx(1.5)


def test_direction_flip_is_allowed_immediately(now):
    decision = evaluate_cooldown(_record(now, hours_ago=0.1), Direction.SHORT, 100.0, now, 4)
    assert decision.allowed
    assert decision.reason == "direction_flip"


def test_elapsed_window_allows(now):
    decision = evaluate_cooldown(_record(now, hours_ago=4), Direction.LONG, 100.0, now, 4)
    assert decision.allowed
    assert decision.reason == "cooldown_elapsed"


def test_large_price_move_overrides(now):
    decision = evaluate_cooldown(_record(now), Direction.LONG, 111.0, now, 4, override_pct=10.0)
    assert decision.allowed
    assert decision.reason == "price_override"


def test_legacy_epoch_millis_timestamp(now):
    record = LastSignalRecord.model_validate({
        "symbol": "BTCUSDT",
        "direction": "BUY",
        "entry": 100,
        "timestamp": int(now.timestamp() * 1000),
    })
    assert record.direction is Direction.LONG
    assert record.timestamp == now


async def test_gate_records_on_allow_and_blocks_repeat(store, now):
    gate = CooldownGate(store, cooldown_hours=4)

    first = await gate.check_and_record("btcusdt", Direction.LONG, 100.0, now)
    assert first.allowed

    doc = await store.get(StoreKeys.last_signal("BTCUSDT"))
    assert doc["direction"] == "LONG"
    assert doc["entry"] == 100.0

    second = await gate.check_and_record("BTCUSDT", Direction.LONG, 100.5, now + timedelta(hours=3))
    assert not second.allowed
    # блокировка не перезаписывает запись
    assert (await gate.get_record("BTCUSDT")).timestamp == now


async def test_gate_rewrite_is_idempotent(store, now):
    gate = CooldownGate(store, cooldown_hours=4)
    await gate.record("BTCUSDT", Direction.LONG, 100.0, now)
    await gate.record("BTCUSDT", Direction.LONG, 100.0, now)

    assert len(await gate.active_records()) == 1


async def test_record_ttl_covers_window(store, now):
    gate = CooldownGate(store, cooldown_hours=24)
    await gate.record("BTCUSDT", Direction.LONG, 100.0, now)

    assert store.ttl(StoreKeys.last_signal("BTCUSDT")) >= 24 * 3600


async def test_corrupt_record_is_ignored(store, now):
    await store.set(StoreKeys.last_signal("BTCUSDT"), {"direction": "UP"})
    gate = CooldownGate(store, cooldown_hours=4)

    decision = await gate.check("BTCUSDT", Direction.LONG, 100.0, now)
    assert decision.allowed
    assert decision.reason == "no_record"


async def test_clear(store, now):
    gate = CooldownGate(store, cooldown_hours=4)
    await gate.record("BTCUSDT", Direction.LONG, 100.0, now)

    assert await gate.clear("BTCUSDT")
    assert await gate.get_record("BTCUSDT") is None
