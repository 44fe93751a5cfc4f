"""
Execution Engine - Error Taxonomy.

============================================================
PURPOSE
============================================================
Exceptions raised by the coordinator, the resolver and the
exchange clients.

ERROR KINDS:
1. ValidationError - malformed intent, raised before any
   network call, never retried
2. UpstreamAuthError - credentials or environment mismatch
3. UpstreamRejectionError - the exchange declined the request
4. TransientNetworkError - timeout, connection failure,
   rate limit, exchange-side outage

Upstream errors carry the normalized exchange payload
(adapters.errors.ExchangeError) so callers can see the raw
exchange code and message.

NO AUTOMATIC RETRY:
    Retrying a market order is not idempotent. Whether to retry
    is the caller's decision; is_transient is only a hint.

============================================================
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

from core.exceptions import ErrorClassification, Severity, TradingException

if TYPE_CHECKING:
    from .adapters.errors import ExchangeError


AUTH_GUIDANCE = (
    "Check that OKX_API_KEY, OKX_SECRET and OKX_PASSWORD belong to the "
    "selected environment: demo-trading keys need OKX_SANDBOX=true, "
    "live keys need OKX_SANDBOX=false."
)


class ExecutionError(TradingException):
    """Base class for execution failures."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class ValidationError(ExecutionError):
    """Intent failed a local check. No request was sent."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if field:
            context["field"] = field
        super().__init__(message, context=context, **kwargs)
        self.field = field


class UpstreamError(ExecutionError):
    """The exchange call failed. Carries the raw exchange payload."""

    def __init__(
        self,
        message: str,
        payload: Optional["ExchangeError"] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if payload is not None:
            context.update({
                k: v for k, v in payload.to_dict().items()
                if k in ("category", "exchange_code", "exchange_message", "http_status", "operation", "symbol")
                and v is not None
            })
        super().__init__(message, context=context, **kwargs)
        self.payload = payload

    @property
    def exchange_code(self) -> Optional[str]:
        return self.payload.exchange_code if self.payload else None

    @property
    def raw(self) -> Dict[str, Any]:
        return self.payload.to_dict() if self.payload else {}


class UpstreamAuthError(UpstreamError):
    """Credentials rejected, or keys used against the wrong environment."""

    default_severity = Severity.CRITICAL

    def __init__(self, message: str, payload: Optional["ExchangeError"] = None, **kwargs):
        super().__init__(message, payload=payload, **kwargs)
        self.guidance = AUTH_GUIDANCE

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["guidance"] = self.guidance
        return data


class UpstreamRejectionError(UpstreamError):
    """Exchange declined the order: margin, size, instrument and so on."""

    default_severity = Severity.MEDIUM


class TransientNetworkError(UpstreamError):
    """Timeout, connection failure, throttling or exchange outage."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT
