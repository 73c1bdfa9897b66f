"""
FastAPI Router для signal engine API
"""

from fastapi import APIRouter

# Import sub-routers
from src.api.tv_webhook import router as tv_webhook_router
from src.api.cooldown import router as cooldown_router
from src.api.portfolio import router as portfolio_router
from src.api.optimizer import router as optimizer_router
from src.api.cron import router as cron_router
from src.api.backtest import router as backtest_router
from src.api.health import router as health_router


# Создаем главный router
router = APIRouter()

# Include sub-routers (они уже имеют префиксы)
router.include_router(tv_webhook_router)  # TradingView confirmation webhook (secret)
router.include_router(cooldown_router)
router.include_router(portfolio_router)
router.include_router(optimizer_router)
router.include_router(cron_router)  # Manual scan / monitor triggers (X-Cron-Secret)
router.include_router(backtest_router)  # Partial TP replay по закрытым сделкам
router.include_router(health_router)
