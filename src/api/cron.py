"""
Cron API

Внешний cron (или ручной вызов) вместо встроенного scheduler.
Оба endpoint требуют X-Cron-Secret.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from config import config as app_config
from src.api.deps import Engine, get_engine, limiter, verify_cron_secret


router = APIRouter(prefix="/cron", tags=["Cron"], dependencies=[Depends(verify_cron_secret)])


@router.post("/scan")
@limiter.limit(lambda: app_config.CRON_RATE_LIMIT)
async def cron_scan(request: Request, engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    result = await engine.scheduler.trigger_scan_now()
    return {"success": True, **result.to_dict()}


@router.post("/monitor")
@limiter.limit(lambda: app_config.CRON_RATE_LIMIT)
async def cron_monitor(request: Request, engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    events = await engine.scheduler.trigger_monitor_now()
    return {
        "success": True,
        "events": [
            {"portfolio": label, "kind": e.kind, "symbol": e.symbol, "price": e.price, "pnl": e.pnl}
            for label, e in events
        ],
    }
