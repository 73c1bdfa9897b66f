"""
Portfolio API

Dual portfolio (Silver / Gold), ручное закрытие, reset и shadow stats.
TV портфель - отдельный документ, /portfolio/tv.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from src.api.deps import Engine, get_engine, verify_cron_secret
from src.services.portfolio.models import Portfolio


router = APIRouter(prefix="/portfolio", tags=["Portfolio"])


class CloseRequest(BaseModel):
    price: float = Field(gt=0)


def _portfolio_view(p: Portfolio) -> Dict[str, Any]:
    return {
        "balance": round(p.balance, 2),
        "initial_balance": p.initial_balance,
        "kill_switch": p.kill_switch,
        "stats": p.stats.model_dump(mode="json"),
        "open_trades": [t.model_dump(mode="json") for t in p.open_trades()],
        "closed_trades": [t.model_dump(mode="json") for t in p.trades if t.is_closed][-20:],
        "equity_history": [e.model_dump(mode="json") for e in p.equity_history],
    }


@router.get("")
async def get_portfolio(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    dual = await engine.portfolio.load()
    return {tier.value: _portfolio_view(p) for tier, p in dual.portfolios().items()}


@router.get("/tv")
async def get_tv_portfolio(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    return {"enabled": engine.tv_portfolio.enabled, **_portfolio_view(await engine.tv_portfolio.load())}


@router.post("/tv/reset", dependencies=[Depends(verify_cron_secret)])
async def reset_tv_portfolio(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    portfolio = await engine.tv_portfolio.reset()
    return {"success": True, "balance": portfolio.balance}


@router.post("/close/{trade_id}", dependencies=[Depends(verify_cron_secret)])
async def close_trade(
    trade_id: str,
    body: CloseRequest,
    engine: Engine = Depends(get_engine),
) -> Dict[str, Any]:
    events = await engine.portfolio.close(trade_id, body.price)
    if not events:
        raise HTTPException(status_code=404, detail="Open trade not found")
    return {
        "success": True,
        "events": [{"tier": tier.value, "kind": e.kind, "pnl": e.pnl, **e.detail} for tier, e in events],
    }


@router.post("/reset", dependencies=[Depends(verify_cron_secret)])
async def reset_portfolio(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    dual = await engine.portfolio.reset()
    return {
        "success": True,
        "balances": {tier.value: p.balance for tier, p in dual.portfolios().items()},
    }


@router.get("/shadow")
async def get_shadow_signals(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    signals = await engine.shadow.load()
    stats = await engine.shadow.load_stats()
    return {
        "pending": [s.model_dump(mode="json") for s in signals if not s.resolved],
        "ai_stats": {
            source: {**m.model_dump(), "win_rate": round(m.win_rate, 4)}
            for source, m in stats.models.items()
        },
        "consensus": {
            "gold": stats.gold.model_dump(),
            "silver": stats.silver.model_dump(),
        },
    }
