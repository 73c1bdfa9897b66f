"""
Health API
"""
from datetime import datetime, UTC
from typing import Any, Dict

from fastapi import APIRouter, Depends

from src.api.deps import Engine, get_engine
from src.learning.optimization_config import load_optimization_config


router = APIRouter(tags=["Health"])


@router.get("/health")
async def health(engine: Engine = Depends(get_engine)) -> Dict[str, Any]:
    """Store, scheduler и пауза optimizer."""
    now = datetime.now(UTC)
    opt = await load_optimization_config(engine.store)
    store_ok = engine.store.is_available()
    return {
        "status": "healthy" if store_ok else "degraded",
        "timestamp": now.isoformat(),
        "store": engine.store.get_stats() if hasattr(engine.store, "get_stats") else {"is_available": store_ok},
        "scheduler": engine.scheduler.get_status(),
        "trading_paused": opt.is_paused(now),
        "models": list(getattr(engine.ai, "models", [])),
    }
