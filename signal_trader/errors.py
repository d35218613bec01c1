"""
Structured Error Taxonomy — Typed exceptions for the signal trader.

Design principles:
  - Every error carries `retryable` + `error_code` for automated decisions
  - `stage` names the processing step that failed (parse → bind → size → submit)
    so the consumer can emit one log line per terminal failure
  - Hierarchy mirrors the layers: Validation → Precondition → Connector
  - HTTP-safe: each class maps to a recommended status code
"""

from __future__ import annotations

__all__ = [
    # Base
    "SignalTraderError",
    # Validation layer
    "SignalValidationError",
    "MalformedMessageError",
    "InvalidFieldError",
    # Precondition layer
    "ExecutionPreconditionError",
    "NoActiveMarketError",
    "MarketMismatchError",
    # Connector layer
    "ConnectorError",
    "MarketResolutionError",
    "BalanceFetchError",
    "OrderSubmissionError",
    "EventSourceConnectionError",
    # Service layer
    "TraderNotReadyError",
    "EventSourceUpdateRejectedError",
]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Base
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SignalTraderError(Exception):
    """Root exception for the signal trader.

    Attributes:
        retryable: If True, the caller should consider retrying the operation.
        error_code: Machine-readable code for dashboards and alerting.
        http_status: Suggested HTTP status code for API responses.
        stage: Processing stage the failure belongs to.
    """

    retryable: bool = False
    error_code: str = "SIGNAL_TRADER_ERROR"
    http_status: int = 500
    stage: str = "process"

    def __init__(self, message: str, *, detail: str | None = None):
        self.detail = detail
        super().__init__(message)

    def to_dict(self) -> dict:
        """Serialize for structured logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": str(self),
            "detail": self.detail,
            "retryable": self.retryable,
            "http_status": self.http_status,
            "stage": self.stage,
        }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Validation Layer — Inbound payloads that cannot become events
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SignalValidationError(SignalTraderError):
    """Base for all inbound message validation errors."""

    error_code = "SIGNAL_VALIDATION"
    http_status = 422
    stage = "parse"


class MalformedMessageError(SignalValidationError):
    """Payload is not valid JSON, or is JSON but not an object."""

    error_code = "MALFORMED_MESSAGE"


class InvalidFieldError(SignalValidationError):
    """A required field is missing, unrecognized or out of range."""

    error_code = "INVALID_FIELD"

    def __init__(self, message: str, *, field: str = "", **kwargs):
        self.field = field
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["field"] = self.field
        return d


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Precondition Layer — Valid signals that cannot run right now
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ExecutionPreconditionError(SignalTraderError):
    """Base for execution precondition failures."""

    error_code = "EXECUTION_PRECONDITION"
    http_status = 409
    stage = "bind"


class NoActiveMarketError(ExecutionPreconditionError):
    """A signal arrived before any market was bound."""

    error_code = "NO_ACTIVE_MARKET"


class MarketMismatchError(ExecutionPreconditionError):
    """The signal targets a market other than the bound one."""

    error_code = "MARKET_MISMATCH"

    def __init__(
        self, message: str, *, active_slug: str = "", signal_slug: str = "", **kwargs
    ):
        self.active_slug = active_slug
        self.signal_slug = signal_slug
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["active_slug"] = self.active_slug
        d["signal_slug"] = self.signal_slug
        return d


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Connector Layer — Errors from Gamma, CLOB and the event source
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ConnectorError(SignalTraderError):
    """Base for all connector/integration errors."""

    error_code = "CONNECTOR_ERROR"
    http_status = 502

    def __init__(self, message: str, *, connector_name: str | None = None, **kwargs):
        self.connector_name = connector_name or getattr(self, "connector_name", None)
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["connector_name"] = self.connector_name
        return d


class MarketResolutionError(ConnectorError):
    """Gamma lookup failed or returned an unusable market."""

    retryable = True
    error_code = "MARKET_RESOLUTION"
    stage = "bind"

    def __init__(self, message: str, *, slug: str = "", **kwargs):
        self.slug = slug
        kwargs.setdefault("connector_name", "gamma")
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["slug"] = self.slug
        return d


class BalanceFetchError(ConnectorError):
    """Authoritative balance lookup failed; callers fall back to the cache."""

    retryable = True
    error_code = "BALANCE_FETCH"
    stage = "size"

    def __init__(self, message: str, *, token_id: str = "", **kwargs):
        self.token_id = token_id
        kwargs.setdefault("connector_name", "clob")
        super().__init__(message, **kwargs)


class OrderSubmissionError(ConnectorError):
    """Signing or posting a FOK order failed, or the order was rejected."""

    retryable = True
    error_code = "ORDER_SUBMISSION"
    stage = "submit"

    def __init__(self, message: str, *, summary: str = "", **kwargs):
        self.summary = summary
        kwargs.setdefault("connector_name", "clob")
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["summary"] = self.summary
        return d


class EventSourceConnectionError(ConnectorError):
    """Connecting or subscribing to the event source failed."""

    retryable = True
    error_code = "EVENT_SOURCE_CONNECTION"
    http_status = 503
    stage = "transport"

    def __init__(self, message: str, *, target: str = "", **kwargs):
        self.target = target
        kwargs.setdefault("connector_name", "redis")
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["target"] = self.target
        return d


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Service Layer — Operator API errors
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TraderNotReadyError(SignalTraderError):
    """The runtime has not finished starting (or is shutting down)."""

    retryable = True
    error_code = "TRADER_NOT_READY"
    http_status = 503
    stage = "api"


class EventSourceUpdateRejectedError(SignalTraderError):
    """A reconfiguration request resolved to an invalid target."""

    error_code = "EVENT_SOURCE_UPDATE_REJECTED"
    http_status = 422
    stage = "api"
