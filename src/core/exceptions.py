"""
Domain exceptions.
"""
from typing import Optional


class EngineError(Exception):
    """Base error for the signal engine."""


class InvalidProposalError(EngineError):
    """Upstream proposal cannot be normalized (dropped, never fatal)."""


class StoreUnavailableError(EngineError):
    """Document store is down and CACHE_RAISE_ON_ERROR is set."""


class TradeRejectedError(EngineError):
    """Portfolio guard refused to open a trade."""

    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class WebhookAuthError(EngineError):
    """Webhook secret missing or mismatched."""

    def __init__(self, message: str, status_code: int = 401):
        self.status_code = status_code
        super().__init__(message)
