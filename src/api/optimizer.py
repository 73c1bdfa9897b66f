"""
Optimizer API

GET  /optimizer        - текущий OptimizationConfig + audit log
POST /optimizer/run    - запустить цикл сейчас (X-Cron-Secret)
POST /optimizer/reset  - вернуть defaults (X-Cron-Secret)
"""
from datetime import datetime, UTC
from typing import Any, Dict

from fastapi import APIRouter, Depends

from src.api.deps import Engine, get_engine, verify_cron_secret
from src.learning.optimization_config import load_optimization_config


router = APIRouter(prefix="/optimizer", tags=["Optimizer"])


@router.get("")
async def get_optimizer_state(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    config = await load_optimization_config(engine.store)
    return {
        "config": config.model_dump(mode="json"),
        "paused": config.is_paused(datetime.now(UTC)),
        "log": await engine.optimizer.get_log(),
    }


@router.post("/run", dependencies=[Depends(verify_cron_secret)])
async def run_optimizer(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    result = await engine.optimizer.run()
    return {
        "success": True,
        "waiting": result.waiting,
        "report": result.report,
        "changes": result.changes,
        "config": result.config.model_dump(mode="json"),
    }


@router.post("/reset", dependencies=[Depends(verify_cron_secret)])
async def reset_optimizer(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    config = await engine.optimizer.reset()
    return {"success": True, "config": config.model_dump(mode="json")}
