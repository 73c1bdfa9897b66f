"""
Cooldown API

GET    /cooldown           - активные записи last signal
GET    /cooldown/check     - решение gate для symbol/direction/entry
POST   /cooldown           - check + запись (ручная регистрация сигнала)
DELETE /cooldown           - очистить (symbol или все), нужен X-Cron-Secret
"""
from datetime import datetime, UTC
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator

from src.api.deps import Engine, get_engine, verify_cron_secret
from src.core.enums import Direction
from src.learning.optimization_config import load_optimization_config
from src.services.consensus.cooldown import cooldown_window_end


router = APIRouter(prefix="/cooldown", tags=["Cooldown"])


class CooldownRequest(BaseModel):
    symbol: str = Field(min_length=2)
    direction: Direction
    entry: float = Field(gt=0)

    @field_validator("symbol", mode="before")
    @classmethod
    def _upper(cls, v):
        return str(v).strip().upper()

    @field_validator("direction", mode="before")
    @classmethod
    def _direction(cls, v):
        direction = Direction.parse(v)
        if direction is None:
            raise ValueError("direction must be LONG or SHORT")
        return direction


async def _gate(engine: Engine):
    opt = await load_optimization_config(engine.store)
    return engine.cooldown(opt.cooldown_hours), opt.cooldown_hours


@router.get("")
async def list_cooldowns(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    gate, hours = await _gate(engine)
    now = datetime.now(UTC)
    records = []
    for record in await gate.active_records():
        ends = cooldown_window_end(record, hours)
        records.append({
            **record.model_dump(mode="json"),
            "cooldown_ends": ends.isoformat(),
            "active": now < ends,
        })
    return {"cooldown_hours": hours, "records": records}


@router.get("/check")
async def check_cooldown(
    symbol: str = Query(..., min_length=2),
    direction: str = Query(...),
    entry: float = Query(..., gt=0),
    engine: Engine = Depends(get_engine),
) -> Dict[str, Any]:
    parsed = Direction.parse(direction)
    if parsed is None:
        raise HTTPException(status_code=400, detail="direction must be LONG or SHORT")
    gate, _ = await _gate(engine)
    decision = await gate.check(symbol.upper(), parsed, entry)
    return decision.to_dict()


@router.post("")
async def record_signal(
    body: CooldownRequest,
    engine: Engine = Depends(get_engine),
) -> Dict[str, Any]:
    gate, _ = await _gate(engine)
    decision = await gate.check_and_record(body.symbol, body.direction, body.entry)
    return {"recorded": decision.allowed, **decision.to_dict()}


@router.delete("", dependencies=[Depends(verify_cron_secret)])
async def clear_cooldowns(
    symbol: Optional[str] = Query(default=None),
    engine: Engine = Depends(get_engine),
) -> Dict[str, Any]:
    gate, _ = await _gate(engine)
    if symbol:
        await gate.clear(symbol.upper())
        return {"cleared": 1, "symbols": [symbol.upper()]}
    records = await gate.active_records()
    for record in records:
        await gate.clear(record.symbol)
    return {"cleared": len(records), "symbols": [r.symbol for r in records]}
