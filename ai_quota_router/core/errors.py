"""
Error taxonomy for quota and routing decisions.

Every failure surfaced by the engine is one of these types so callers can
tell "you're out of budget" apart from "try again later" and "try a
different query".
"""

from typing import Optional


class QuotaRouterError(Exception):
    """Base class for all quota router errors."""
    retryable: bool = False


class UnknownTier(QuotaRouterError):
    """Raised when a user references a tier absent from the catalog."""

    def __init__(self, tier: object):
        super().__init__(f"Unknown tier: {tier!r}")
        self.tier = tier


class StoreUnavailable(QuotaRouterError):
    """Raised when the usage store cannot be read or written.

    No write can be assumed to have succeeded when this is raised.
    """
    retryable = True


class ModelInvocationFailed(QuotaRouterError):
    """Raised when a model or classification backend errors or times out."""

    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message)
        self.model = model


class InvalidRequest(QuotaRouterError):
    """Raised for a missing identity, malformed query or bad cost figure."""


class QuotaExceeded(QuotaRouterError):
    """Raised when a request is denied by the quota evaluator."""

    def __init__(self, reason, message: Optional[str] = None):
        super().__init__(message or f"Request denied: {reason.name}")
        self.reason = reason
