"""
Backtest API

GET  /backtest - разбор закрытых сделок + replay дефолтной лестницы
POST /backtest - replay с своей лестницей (tp1Percent, tp2Percent, tp1CloseRatio, tp2CloseRatio)
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from src.api.deps import Engine, get_engine
from src.services.portfolio.backtest import BacktestParams


router = APIRouter(prefix="/backtest", tags=["Backtest"])


@router.get("")
async def get_backtest(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    report = await engine.backtest.summary()
    if not report["summary"]["total_trades"]:
        return {"success": True, "message": "No closed trades yet", **report}
    return {"success": True, **report}


@router.post("")
async def run_backtest(
    params: Optional[BacktestParams] = None,
    engine: Engine = Depends(get_engine),
) -> Dict[str, Any]:
    result = await engine.backtest.run(params or BacktestParams())
    return {"success": True, **result}
