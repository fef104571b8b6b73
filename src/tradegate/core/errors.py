"""
Error taxonomy for the decision engine.

Everything below CRITICAL is absorbed at the orchestrator boundary and turned
into a structured response. ImmutabilityViolation and ConfigurationError are
the only errors that are allowed to stop the process.
"""

from typing import Optional


class TradegateError(Exception):
    """Base class for all engine errors."""
    pass


class ConfigurationError(TradegateError):
    """Raised at startup when configuration violates an invariant."""
    pass


class ValidationError(TradegateError):
    """
    Raised when a webhook payload is malformed.

    Attributes:
        source: Declared or detected source, when known
        details: Field-level problems reported by the payload model
    """

    def __init__(self, message: str, source: Optional[str] = None, details: Optional[list] = None):
        super().__init__(message)
        self.source = source
        self.details = details or []


class UnrecognizedSource(ValidationError):
    """Raised when no detection rule matches a payload."""
    pass


class IncompleteContextError(TradegateError):
    """Raised when a decision is forced on a context missing required fragments."""

    def __init__(self, symbol: str, missing: list):
        super().__init__(f"Context for {symbol} missing required fragments: {', '.join(missing)}")
        self.symbol = symbol
        self.missing = missing


# ============================================================================
# Provider errors
# ============================================================================

class ProviderError(TradegateError):
    """
    Failure of one external market data provider.

    Only timeouts, network failures and 5xx responses are retryable.
    """

    kind = "PROVIDER_ERROR"
    retryable = False

    def __init__(self, provider: str, message: str, status: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status = status


class FeedTimeout(ProviderError):
    kind = "TIMEOUT"
    retryable = True


class FeedNetworkError(ProviderError):
    kind = "NETWORK_ERROR"
    retryable = True


class FeedServerError(ProviderError):
    kind = "SERVER_ERROR"
    retryable = True


class FeedAuthError(ProviderError):
    kind = "AUTH_ERROR"


class FeedRateLimited(ProviderError):
    kind = "RATE_LIMITED"


class FeedMalformedResponse(ProviderError):
    kind = "MALFORMED_RESPONSE"


class FeedRequestError(ProviderError):
    """4xx other than auth and rate limiting."""
    kind = "REQUEST_ERROR"


class FeedDisabled(ProviderError):
    kind = "DISABLED"


class ProviderDegradation(TradegateError):
    """Recorded (not raised) when one or more providers fell back."""

    def __init__(self, failed_providers: list):
        super().__init__(f"Degraded market context: {', '.join(failed_providers)}")
        self.failed_providers = failed_providers


# ============================================================================
# Critical / internal errors
# ============================================================================

class ImmutabilityViolation(TradegateError):
    """The rule registry changed or contains a mutable node."""
    pass


class VersionMismatch(TradegateError):
    """Replay requested for a record produced by a different engine version."""

    def __init__(self, recorded: str, current: str):
        super().__init__(f"Recorded engine version {recorded} != current {current}")
        self.recorded = recorded
        self.current = current


class EngineFault(TradegateError):
    """Unexpected failure inside the decision cycle."""
    pass
