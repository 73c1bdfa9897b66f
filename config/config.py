"""
Configuration module for Signal Consensus Engine

Loads configuration from environment variables using python-dotenv
"""

import os
from pathlib import Path
from typing import List
from dotenv import load_dotenv

# Load .env file (override=True ensures .env has priority over shell environment)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path, override=True)


# Environment
ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
SENTRY_DSN: str = os.getenv("SENTRY_DSN", "")

# Redis document store
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# =============================================================================
# AI PROPOSAL SOURCES
# =============================================================================
# OpenAI-compatible API (each model id below is one independent proposal source)
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "")

# Comma-separated model ids, e.g. "gpt-5-mini,deepseek-chat,grok-3"
AI_MODELS: List[str] = [
    model.strip()
    for model in os.getenv("AI_MODELS", "gpt-5-mini,deepseek-chat,grok-3").split(",")
    if model.strip()
]

AI_TIMEOUT_SEC: float = float(os.getenv("AI_TIMEOUT_SEC", "45"))
AI_TEMPERATURE: float = float(os.getenv("AI_TEMPERATURE", "0.3"))

# =============================================================================
# MARKET DATA
# =============================================================================
BINANCE_FUTURES_URL: str = os.getenv("BINANCE_FUTURES_URL", "https://fapi.binance.com")
BYBIT_API_URL: str = os.getenv("BYBIT_API_URL", "https://api.bybit.com")
MARKET_DATA_TIMEOUT_SEC: float = float(os.getenv("MARKET_DATA_TIMEOUT_SEC", "8"))

SCAN_SYMBOLS: List[str] = [
    symbol.strip().upper()
    for symbol in os.getenv(
        "SCAN_SYMBOLS",
        "BTCUSDT,ETHUSDT,SOLUSDT,BNBUSDT,XRPUSDT,DOGEUSDT,AVAXUSDT,LINKUSDT",
    ).split(",")
    if symbol.strip()
]
SCAN_INTERVAL: str = os.getenv("SCAN_INTERVAL", "1h")
SCAN_CANDLE_LIMIT: int = int(os.getenv("SCAN_CANDLE_LIMIT", "200"))

# Whole-scan deadline for the concurrent indicator/AI fan-out
SCAN_DEADLINE_SEC: float = float(os.getenv("SCAN_DEADLINE_SEC", "120"))

# =============================================================================
# NOTIFICATIONS (Telegram)
# =============================================================================
TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID: str = os.getenv("TELEGRAM_CHAT_ID", "")

# =============================================================================
# SECRETS
# =============================================================================
# Shared secret for the TradingView confirmation webhook
TV_WEBHOOK_SECRET: str = os.getenv("TV_WEBHOOK_SECRET", "")

# Shared secret for external cron triggers (X-Cron-Secret header)
CRON_SECRET: str = os.getenv("CRON_SECRET", "")

# API rate limit (slowapi format)
API_RATE_LIMIT: str = os.getenv("API_RATE_LIMIT", "120/minute")

# Webhook и cron endpoints (отдельный, более строгий лимит)
TV_WEBHOOK_RATE_LIMIT: str = os.getenv("TV_WEBHOOK_RATE_LIMIT", "30/minute")
CRON_RATE_LIMIT: str = os.getenv("CRON_RATE_LIMIT", "10/minute")

# Scheduler
SCHEDULER_ENABLED: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"


def validate_config() -> bool:
    """Validate required configuration variables"""
    errors = []

    if ENVIRONMENT == "production":
        if not TV_WEBHOOK_SECRET:
            errors.append("TV_WEBHOOK_SECRET is required in production")

        if not CRON_SECRET:
            errors.append("CRON_SECRET is required in production")

    if not AI_MODELS:
        errors.append("AI_MODELS must list at least one model")

    if errors:
        error_message = "\n".join(f"  - {error}" for error in errors)
        raise ValueError(
            f"Configuration validation failed:\n{error_message}\n\n"
            "Please check your .env file and ensure all required variables are set."
        )

    return True
