"""
Tests for TradingView confirmation: webhook endpoint and consensus filter
"""
from datetime import timedelta

import pytest

from config.trading_config import TVConfirmationConfig
from src.core.exceptions import WebhookAuthError
from src.services.consensus.tv_confirmation import (
    TVConfirmationService,
    TVWebhookPayload,
    normalize_symbol,
    verify_secret,
)

from factories import NOW, make_signal


@pytest.mark.parametrize("raw,expected", [
    ("BTCUSD", "BTCUSDT"),
    ("BTC", "BTCUSDT"),
    ("BTCPERP", "BTCUSDT"),
    ("BTC.P", "BTCUSDT"),
    (" ethusdt ", "ETHUSDT"),
])
def test_normalize_symbol(raw, expected):
    assert normalize_symbol(raw) == expected


def test_verify_secret():
    with pytest.raises(WebhookAuthError) as exc:
        verify_secret("x", "")
    assert exc.value.status_code == 500

    with pytest.raises(WebhookAuthError) as exc:
        verify_secret("wrong", "right")
    assert exc.value.status_code == 401

    verify_secret("right", "right")


@pytest.mark.parametrize("provided", [12345, None, ["s"], {"s": 1}])
def test_verify_secret_rejects_non_string(provided):
    with pytest.raises(WebhookAuthError) as exc:
        verify_secret(provided, "12345")
    assert exc.value.status_code == 401


def _payload(**overrides):
    data = {"secret": "s", "symbol": "BTCUSD", "signal": "buy", "price": "100"}
    data.update(overrides)
    return TVWebhookPayload.model_validate(data)


async def test_receive_stores_with_ttl(store):
    service = TVConfirmationService(store)
    tv_signal = await service.receive(_payload(tp="106", sl="98"), "s", NOW)

    assert tv_signal.symbol == "BTCUSDT"
    assert tv_signal.signal == "BUY"
    assert tv_signal.expires_at == NOW + timedelta(minutes=30)
    assert (await service.get("BTCUSDT", NOW)).tp == 106.0
    assert await service.get("BTCUSDT", NOW + timedelta(minutes=31)) is None
    assert len(await service.history()) == 1


async def test_receive_with_bad_secret_changes_nothing(store):
    service = TVConfirmationService(store)
    with pytest.raises(WebhookAuthError):
        await service.receive(_payload(secret="nope"), "s", NOW)
    assert await service.history() == []


async def test_confirm_boosts_confidence(store):
    service = TVConfirmationService(store)
    await service.receive(_payload(tp="108", sl="98"), "s", NOW)

    result = await service.confirm(make_signal(confidence=80), NOW)

    assert result.accepted
    assert result.reason == "tv_confirmed"
    assert result.signal.confidence == 85


async def test_confirm_keeps_consensus_levels(store):
    service = TVConfirmationService(store)
    await service.receive(_payload(tp="100.5", sl="99"), "s", NOW)

    signal = make_signal()
    result = await service.confirm(signal, NOW)

    assert result.accepted
    assert result.signal.stop_loss == signal.stop_loss == 97
    assert result.signal.take_profit == signal.take_profit == 106
    assert result.signal.risk_reward >= 2.0


async def test_confirm_rejects_opposite_direction(store):
    service = TVConfirmationService(store)
    await service.receive(_payload(signal="SELL"), "s", NOW)

    result = await service.confirm(make_signal(), NOW)
    assert not result.accepted
    assert result.reason == "tv_conflict"


async def test_confirm_without_signal(store):
    relaxed = TVConfirmationService(store)
    strict = TVConfirmationService(store, TVConfirmationConfig(strict=True))

    assert (await relaxed.confirm(make_signal(), NOW)).accepted
    assert not (await strict.confirm(make_signal(), NOW)).accepted


class TestWebhookEndpoint:
    def test_success(self, client, secrets):
        response = client.post("/api/tv-webhook", json={
            "secret": secrets["tv"], "symbol": "ETHUSD", "signal": "SELL", "price": 2000,
        })

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["stored"]["symbol"] == "ETHUSDT"
        assert data["ttl_minutes"] == 30
        # без tp / sl сделка в TV портфеле не открывается
        assert data["tv_trade"] is None

        listing = client.get("/api/tv-webhook").json()
        assert [s["symbol"] for s in listing["signals"]] == ["ETHUSDT"]
        assert len(listing["history"]) == 1

    def test_secret_not_configured(self, client, monkeypatch):
        from config import config as app_config

        monkeypatch.setattr(app_config, "TV_WEBHOOK_SECRET", "")
        response = client.post("/api/tv-webhook", json={"secret": "x", "symbol": "BTC", "signal": "BUY"})

        assert response.status_code == 500
        assert "error" in response.json()

    def test_wrong_secret(self, client):
        response = client.post("/api/tv-webhook", json={"secret": "x", "symbol": "BTC", "signal": "BUY"})
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid secret"}

    @pytest.mark.parametrize("secret", [12345, None, {"value": "tv-secret"}])
    def test_non_string_secret_is_unauthorized(self, client, secret):
        response = client.post("/api/tv-webhook", json={"secret": secret, "symbol": "BTC", "signal": "BUY"})
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid secret"}

    def test_missing_symbol(self, client, secrets):
        response = client.post("/api/tv-webhook", json={"secret": secrets["tv"], "signal": "BUY"})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing symbol or signal"}

    def test_bad_signal(self, client, secrets):
        response = client.post("/api/tv-webhook", json={
            "secret": secrets["tv"], "symbol": "BTC", "signal": "HOLD",
        })
        assert response.status_code == 400
        assert response.json() == {"error": "Signal must be BUY or SELL"}

    def test_rate_limited(self, client, secrets, monkeypatch):
        from config import config as app_config

        monkeypatch.setattr(app_config, "TV_WEBHOOK_RATE_LIMIT", "2/minute")
        body = {"secret": secrets["tv"], "symbol": "BTC", "signal": "BUY"}

        statuses = [client.post("/api/tv-webhook", json=body).status_code for _ in range(3)]

        assert statuses == [200, 200, 429]
