"""
FastAPI Server для signal engine
Webhook, cron triggers, portfolio / optimizer / cooldown endpoints
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from config.config import SCHEDULER_ENABLED, validate_config
from config.logging import setup_logging
from src.api.deps import build_engine, limiter
from src.api.router import router as api_router
from src.cache import get_document_store

# Setup logging at module level (must run before app creation)
# This ensures logging works when uvicorn imports the module
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager для startup/shutdown events
    """
    # Startup
    logger.info("Starting Signal Engine API Server...")

    # ValueError здесь останавливает startup
    validate_config()

    store = None
    engine = getattr(app.state, "engine", None)
    if engine is None:
        store = get_document_store()
        if hasattr(store, "initialize"):
            await store.initialize()
        engine = build_engine(store)
        app.state.engine = engine

    if SCHEDULER_ENABLED:
        engine.scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down Signal Engine API Server...")
    engine.scheduler.stop()

    close_notifier = getattr(engine.notifier, "close", None)
    if close_notifier:
        await close_notifier()

    if store is not None and hasattr(store, "close"):
        await store.close()
        logger.info("Document store connections closed")


# Создаем FastAPI приложение
app = FastAPI(
    title="Signal Consensus Engine API",
    description="Multi-model consensus signals, paper portfolio and adaptive optimizer",
    version="1.0.0",
    lifespan=lifespan,
)

# Добавляем limiter state в app
app.state.limiter = limiter

# Регистрируем обработчик ошибок rate limit
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# default_limits для всех routes без собственного @limiter.limit
app.add_middleware(SlowAPIMiddleware)


# Подключаем API router, префикс /api для всех endpoints
app.include_router(api_router, prefix="/api")


# Root endpoint
@app.get("/")
async def root():
    return {
        "service": "Signal Consensus Engine API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


# Error handler for HTTPException (must be before generic Exception handler)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Handle HTTPException properly - return correct status code and detail
    """
    # Log 4xx as warning, 5xx as error
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}")
    elif exc.status_code >= 400:
        logger.warning(f"HTTP {exc.status_code}: {exc.detail}")

    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=content
    )


# Error handler for unexpected exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unexpected errors
    """
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
        }
    )


if __name__ == "__main__":
    import uvicorn

    # Validate configuration
    try:
        validate_config()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        exit(1)

    logger.info("Configuration validated successfully")

    uvicorn.run(
        "api_server:app",
        host=os.getenv("API_HOST", "127.0.0.1"),
        port=int(os.getenv("API_PORT", "8003")),
        log_level="info",
    )
