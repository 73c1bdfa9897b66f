"""
TradingView Webhook API

POST /tv-webhook - приём BUY/SELL alert от индикатора (+ сделка в TV портфеле)
GET  /tv-webhook - живые подтверждения + история
"""
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from loguru import logger
from pydantic import ValidationError

from config import config as app_config
from src.api.deps import Engine, check_secret, get_engine, limiter
from src.services.consensus.tv_confirmation import TVWebhookPayload


router = APIRouter(prefix="/tv-webhook", tags=["TradingView"])


def _first_error(e: ValidationError) -> str:
    error = e.errors()[0]
    message = str(error.get("msg", "Invalid payload"))
    # pydantic prefixes custom ValueError messages
    return message.removeprefix("Value error, ")


@router.post("")
@limiter.limit(lambda: app_config.TV_WEBHOOK_RATE_LIMIT)
async def receive_tv_signal(
    request: Request,  # Требуется для limiter
    body: Dict[str, Any] = Body(...),
    engine: Engine = Depends(get_engine),
) -> Dict[str, Any]:
    """
    Errors:
        500: TV_WEBHOOK_SECRET не настроен
        401: неверный secret
        400: нет symbol / signal не BUY или SELL
        429: превышен TV_WEBHOOK_RATE_LIMIT
    """
    check_secret(body.get("secret"), app_config.TV_WEBHOOK_SECRET)

    if not body.get("symbol") or not body.get("signal"):
        raise HTTPException(status_code=400, detail="Missing symbol or signal")
    try:
        payload = TVWebhookPayload.model_validate(body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=_first_error(e))

    tv_signal = await engine.tv.receive(payload, app_config.TV_WEBHOOK_SECRET)
    trade = await engine.tv_portfolio.open_from_alert(tv_signal, tv_signal.timestamp)
    logger.info(f"TV webhook accepted: {tv_signal.symbol} {tv_signal.signal}")
    return {
        "success": True,
        "stored": tv_signal.model_dump(mode="json"),
        "ttl_minutes": engine.tv.config.ttl_minutes,
        "tv_trade": trade.model_dump(mode="json") if trade else None,
    }


@router.get("")
async def list_tv_signals(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    active = await engine.tv.active()
    return {
        "enabled": engine.tv.config.enabled,
        "signals": [s.model_dump(mode="json") for s in active],
        "history": await engine.tv.history(),
    }
