"""
Tests for shadow signal tracking (per-model scorekeeping)
"""
from datetime import timedelta

import pytest

from config.trading_config import ShadowConfig
from src.cache.cache_keys import StoreKeys
from src.core.enums import Direction, Tier, TradeResult
from src.services.consensus.matcher import normalize_proposal
from src.services.portfolio.shadow import ShadowSignal, ShadowTracker, evaluate_signals

from factories import NOW, proposal


def _signal(**overrides):
    data = dict(
        symbol="BTCUSDT", direction=Direction.LONG, entry=100.0, stop_loss=97.0,
        take_profit=106.0, ai_source="model-a", confidence=80, created_at=NOW,
    )
    data.update(overrides)
    return ShadowSignal(**data)


@pytest.fixture
def config():
    return ShadowConfig()


def test_entry_touch_then_target(config):
    signal = _signal()

    evaluation = evaluate_signals([signal], {"BTCUSDT": 100.05}, NOW + timedelta(minutes=5), config)
    assert evaluation.entry_triggered == [signal]
    assert not signal.resolved

    evaluation = evaluate_signals([signal], {"BTCUSDT": 106.5}, NOW + timedelta(hours=1), config)
    assert evaluation.wins == [signal]
    assert signal.result is TradeResult.WIN
    assert signal.exit_price == 106.5


def test_stop_after_entry_is_loss(config):
    signal = _signal(entry_hit=True, entry_hit_at=NOW)
    evaluation = evaluate_signals([signal], {"BTCUSDT": 96.0}, NOW + timedelta(hours=1), config)

    assert evaluation.losses == [signal]
    assert signal.result is TradeResult.LOSS


def test_long_entry_touched_from_below(config):
    signal = _signal()
    evaluate_signals([signal], {"BTCUSDT": 99.0}, NOW, config)
    assert signal.entry_hit


def test_untouched_entry_stays_pending(config):
    signal = _signal()
    evaluation = evaluate_signals([signal], {"BTCUSDT": 102.0}, NOW + timedelta(hours=1), config)

    assert evaluation.still_pending == [signal]
    assert not signal.entry_hit


def test_entry_never_hit_expires(config):
    signal = _signal()
    evaluation = evaluate_signals([signal], {"BTCUSDT": 102.0}, NOW + timedelta(hours=49), config)

    assert evaluation.expired == [signal]
    assert signal.result is TradeResult.EXPIRED


def test_auto_resolve_by_profit_sign(config):
    winner = _signal(entry_hit=True)
    loser = _signal(entry_hit=True, ai_source="model-b", direction=Direction.SHORT,
                    stop_loss=103.0, take_profit=94.0)
    prices = {"BTCUSDT": 101.0}

    evaluation = evaluate_signals([winner, loser], prices, NOW + timedelta(hours=6), config)

    assert winner.result is TradeResult.WIN
    assert loser.result is TradeResult.LOSS
    assert evaluation.summary()["wins"] == 1
    assert evaluation.summary()["losses"] == 1


def test_missing_price_stays_pending(config):
    signal = _signal(entry_hit=True)
    evaluation = evaluate_signals([signal], {}, NOW + timedelta(hours=7), config)
    assert evaluation.still_pending == [signal]


async def test_tracker_dedups_per_symbol_and_source(store):
    tracker = ShadowTracker(store)
    proposals = [normalize_proposal(proposal(), "model-a"), normalize_proposal(proposal(), "model-b")]

    added = await tracker.add(proposals, tier=Tier.SILVER, now=NOW)
    again = await tracker.add(proposals, now=NOW)

    assert len(added) == 2
    assert again == []
    assert len(await tracker.load()) == 2

    stats = await tracker.load_stats()
    assert stats.models["model-a"].signals == 1
    assert stats.models["model-a"].avg_confidence == 80


async def test_tracker_evaluate_updates_stats_and_prunes(store):
    tracker = ShadowTracker(store)
    await tracker.add([normalize_proposal(proposal(), "model-a")], now=NOW)

    await tracker.evaluate({"BTCUSDT": 100.0}, NOW + timedelta(minutes=1))
    evaluation = await tracker.evaluate({"BTCUSDT": 107.0}, NOW + timedelta(hours=1))

    assert len(evaluation.wins) == 1
    assert await tracker.load() == []
    stats = await tracker.load_stats()
    assert stats.models["model-a"].wins == 1
    assert stats.models["model-a"].win_rate == 1.0


async def test_record_consensus_counts_tiers(store):
    tracker = ShadowTracker(store)
    await tracker.record_consensus(Tier.GOLD, NOW)
    await tracker.record_consensus(Tier.SILVER, NOW)
    await tracker.record_consensus(Tier.GOLD, NOW)

    stats = await tracker.load_stats()
    assert stats.gold.signals == 2
    assert stats.silver.signals == 1


async def test_invalid_documents_are_dropped(store):
    await store.set(StoreKeys.PENDING_SIGNALS, [{"symbol": "BTCUSDT"}, _signal().model_dump(mode="json")])
    signals = await ShadowTracker(store).load()
    assert len(signals) == 1


async def test_store_keeps_last_max_signals(store):
    tracker = ShadowTracker(store, ShadowConfig(max_signals=3))
    await tracker.save([_signal(symbol=f"S{i}USDT") for i in range(5)])

    symbols = [s.symbol for s in await tracker.load()]
    assert symbols == ["S2USDT", "S3USDT", "S4USDT"]
