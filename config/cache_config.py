# coding: utf-8
"""
Document store configuration (Redis) and TTL settings

Every durable document of the engine lives in Redis; TTLs below bound the
short-lived ones (cooldown records, indicator confirmations).
"""
import os


class CacheTTL:
    """
    Time-to-live (TTL) settings for stored documents in seconds
    """

    LAST_SIGNAL = int(os.getenv("CACHE_TTL_LAST_SIGNAL", str(24 * 3600)))
    """Last accepted signal per symbol - 24h (never shorter than the cooldown window)"""

    TV_SIGNAL = int(os.getenv("CACHE_TTL_TV_SIGNAL", str(30 * 60)))
    """TradingView confirmation - 30 minutes"""

    TV_SIGNAL_HISTORY = int(os.getenv("CACHE_TTL_TV_SIGNAL_HISTORY", str(7 * 24 * 3600)))
    """Webhook history list - 7 days"""

    PORTFOLIO = int(os.getenv("CACHE_TTL_PORTFOLIO", str(365 * 24 * 3600)))
    """Dual portfolio document - effectively persistent"""

    SHADOW_SIGNALS = int(os.getenv("CACHE_TTL_SHADOW_SIGNALS", str(30 * 24 * 3600)))
    """Pending shadow signals and AI stats - 30 days"""

    OPTIMIZATION = int(os.getenv("CACHE_TTL_OPTIMIZATION", str(365 * 24 * 3600)))
    """Optimizer config and audit log - effectively persistent"""

    DEFAULT = int(os.getenv("CACHE_TTL_DEFAULT", "300"))
    """Default TTL when none specified"""


class CacheConfig:
    """
    General Redis configuration
    """

    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    """Redis connection URL"""

    REDIS_MAX_CONNECTIONS = int(os.getenv("REDIS_MAX_CONNECTIONS", "20"))
    """Maximum connections in pool"""

    REDIS_SOCKET_TIMEOUT = int(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))
    """Socket timeout in seconds"""

    REDIS_SOCKET_CONNECT_TIMEOUT = int(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "5"))
    """Connection timeout in seconds"""

    CACHE_ENABLED = os.getenv("CACHE_ENABLED", "true").lower() == "true"
    """Use Redis at all (false = in-memory store only)"""

    CACHE_NAMESPACE = os.getenv("CACHE_NAMESPACE", "")
    """Optional key prefix, empty keeps the bare document keys"""

    CACHE_KEY_SEPARATOR = ":"

    CACHE_RAISE_ON_ERROR = os.getenv("CACHE_RAISE_ON_ERROR", "false").lower() == "true"
    """Raise store errors instead of degrading to defaults"""

    CACHE_LOG_MISSES = os.getenv("CACHE_LOG_MISSES", "false").lower() == "true"
    """Log document misses at DEBUG"""
