"""
Order Gateway - Error Taxonomy.

============================================================
PURPOSE
============================================================
Typed failures raised by the gateway.

ERROR CATEGORIES:
1. Validation Errors - Request shape invalid, never sent
2. Routing Errors - Exchange identifier not supported
3. Account Errors - Credentials or balance problems
4. Network Errors - Retries exhausted
5. Exchange Errors - Structured business rejection
6. Confirmation Errors - Order may still be live

PROPAGATION:
- ValidationError and UnsupportedExchange fail before any I/O
- InsufficientBalance and BelowMinimumOrderSize are never retried
- ConfirmationTimeout is distinct from BackendRejected

Every error carries exchange_id, side and pair for correlation.

============================================================
"""

from enum import Enum
from typing import Optional, Dict, Any
from dataclasses import dataclass
from decimal import Decimal


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Error category classification."""

    VALIDATION = "VALIDATION"
    """Request shape invalid."""

    ROUTING = "ROUTING"
    """Exchange cannot be resolved."""

    AUTHENTICATION = "AUTHENTICATION"
    """Backend rejected credentials."""

    BALANCE = "BALANCE"
    """Balance cannot satisfy the order."""

    NETWORK = "NETWORK"
    """Communication failure after retries."""

    RATE_LIMIT = "RATE_LIMIT"
    """Still rate limited after retries."""

    EXCHANGE = "EXCHANGE"
    """Backend returned a business error."""

    CONFIRMATION = "CONFIRMATION"
    """Order state could not be confirmed."""

    PROTOCOL = "PROTOCOL"
    """Backend response did not match the expected shape."""


class ErrorSeverity(Enum):
    """Error severity levels."""

    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ============================================================
# ERROR CODE REGISTRY
# ============================================================

@dataclass
class ErrorCodeInfo:
    """Information about an error code."""

    code: str
    """Error code."""

    category: ErrorCategory
    """Error category."""

    severity: ErrorSeverity
    """Error severity."""

    is_retryable: bool
    """Whether the caller may retry the same request."""

    description: str
    """Human-readable description."""

    recommended_action: str
    """Recommended action to take."""


ERROR_CODES: Dict[str, ErrorCodeInfo] = {
    "VALIDATION_ERROR": ErrorCodeInfo(
        code="VALIDATION_ERROR",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description="Order request is malformed",
        recommended_action="Fix the request before resubmitting",
    ),
    "UNSUPPORTED_EXCHANGE": ErrorCodeInfo(
        code="UNSUPPORTED_EXCHANGE",
        category=ErrorCategory.ROUTING,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description="Exchange identifier is not registered",
        recommended_action="Use one of the supported exchange identifiers",
    ),
    "AUTHENTICATION_FAILED": ErrorCodeInfo(
        code="AUTHENTICATION_FAILED",
        category=ErrorCategory.AUTHENTICATION,
        severity=ErrorSeverity.CRITICAL,
        is_retryable=False,
        description="Backend rejected the supplied credentials",
        recommended_action="Check API key permissions, IP whitelist and clock",
    ),
    "INSUFFICIENT_BALANCE": ErrorCodeInfo(
        code="INSUFFICIENT_BALANCE",
        category=ErrorCategory.BALANCE,
        severity=ErrorSeverity.CRITICAL,
        is_retryable=False,
        description="No usable balance for the asset being sold",
        recommended_action="Reconcile position data with the exchange",
    ),
    "BELOW_MINIMUM_ORDER_SIZE": ErrorCodeInfo(
        code="BELOW_MINIMUM_ORDER_SIZE",
        category=ErrorCategory.BALANCE,
        severity=ErrorSeverity.CRITICAL,
        is_retryable=False,
        description="Adjusted sell quantity is below the backend minimum lot",
        recommended_action="Manual intervention: asset likely moved outside the system",
    ),
    "NETWORK_ERROR": ErrorCodeInfo(
        code="NETWORK_ERROR",
        category=ErrorCategory.NETWORK,
        severity=ErrorSeverity.ERROR,
        is_retryable=True,
        description="Network failure persisted through all retries",
        recommended_action="Check connectivity and backend health",
    ),
    "RATE_LIMITED": ErrorCodeInfo(
        code="RATE_LIMITED",
        category=ErrorCategory.RATE_LIMIT,
        severity=ErrorSeverity.WARNING,
        is_retryable=True,
        description="Backend kept rate limiting through all retries",
        recommended_action="Reduce request rate",
    ),
    "BACKEND_REJECTED": ErrorCodeInfo(
        code="BACKEND_REJECTED",
        category=ErrorCategory.EXCHANGE,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description="Backend returned a structured business error",
        recommended_action="Inspect backend reason",
    ),
    "CONFIRMATION_TIMEOUT": ErrorCodeInfo(
        code="CONFIRMATION_TIMEOUT",
        category=ErrorCategory.CONFIRMATION,
        severity=ErrorSeverity.CRITICAL,
        is_retryable=False,
        description="Order submitted but no terminal state observed",
        recommended_action="Query the order before assuming it did not execute",
    ),
    "UNKNOWN_RESPONSE_SHAPE": ErrorCodeInfo(
        code="UNKNOWN_RESPONSE_SHAPE",
        category=ErrorCategory.PROTOCOL,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description="Backend response lacks a required field",
        recommended_action="Check for backend API version drift",
    ),
}


def get_error_info(code: str) -> ErrorCodeInfo:
    """
    Get error info for a code.

    Args:
        code: Error code

    Returns:
        ErrorCodeInfo or default unknown error
    """
    return ERROR_CODES.get(code, ErrorCodeInfo(
        code=code,
        category=ErrorCategory.EXCHANGE,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description=f"Unknown error: {code}",
        recommended_action="Investigate error",
    ))


# ============================================================
# EXCEPTIONS
# ============================================================

class GatewayError(Exception):
    """
    Base exception for the Order Gateway.

    Carries the correlation triple (exchange_id, side, pair) so every
    failure can be matched back to the caller's request.
    """

    code = "GATEWAY_ERROR"

    def __init__(
        self,
        message: str,
        exchange_id: Optional[str] = None,
        pair: Optional[str] = None,
        side: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.exchange_id = exchange_id
        self.pair = pair
        self.side = side
        self.context = dict(context or {})

    @property
    def info(self) -> ErrorCodeInfo:
        return get_error_info(self.code)

    @property
    def retryable(self) -> bool:
        return self.info.is_retryable

    def with_context(
        self,
        exchange_id: Optional[str] = None,
        pair: Optional[str] = None,
        side: Optional[Any] = None,
    ) -> "GatewayError":
        """Fill in missing correlation fields, keeping existing ones."""
        if self.exchange_id is None:
            self.exchange_id = exchange_id
        if self.pair is None:
            self.pair = pair
        if self.side is None:
            self.side = side
        return self

    def to_dict(self) -> Dict[str, Any]:
        side = getattr(self.side, "value", self.side)
        return {
            "code": self.code,
            "message": self.message,
            "exchange_id": self.exchange_id,
            "pair": self.pair,
            "side": side,
            "retryable": self.retryable,
            "context": {k: str(v) for k, v in self.context.items()},
        }

    def __str__(self) -> str:
        side = getattr(self.side, "value", self.side)
        where = "/".join(str(p) for p in (self.exchange_id, side, self.pair) if p)
        if where:
            return f"[{self.code}] {where}: {self.message}"
        return f"[{self.code}] {self.message}"


class ValidationError(GatewayError):
    """Request shape invalid; never sent over the network."""

    code = "VALIDATION_ERROR"


class UnsupportedExchange(GatewayError):
    """Exchange identifier could not be resolved."""

    code = "UNSUPPORTED_EXCHANGE"


class AuthenticationError(GatewayError):
    """Signing succeeded but the backend rejected the credentials."""

    code = "AUTHENTICATION_FAILED"


class InsufficientBalance(GatewayError):
    """No balance entry for the asset, or nothing available."""

    code = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        message: str,
        available: Decimal = Decimal("0"),
        requested: Optional[Decimal] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.available = available
        self.requested = requested
        self.context.update(available=available, requested=requested)


class BelowMinimumOrderSize(GatewayError):
    """Adjusted quantity still below the backend minimum lot."""

    code = "BELOW_MINIMUM_ORDER_SIZE"

    def __init__(
        self,
        message: str,
        available: Decimal,
        requested: Decimal,
        adjusted: Decimal,
        minimum_lot: Decimal,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.available = available
        self.requested = requested
        self.adjusted = adjusted
        self.minimum_lot = minimum_lot
        self.shortfall = requested - available
        self.context.update(
            available=available,
            requested=requested,
            adjusted=adjusted,
            minimum_lot=minimum_lot,
            shortfall=self.shortfall,
        )


class NetworkError(GatewayError):
    """Transient failures persisted through every retry."""

    code = "NETWORK_ERROR"

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_cause: Optional[BaseException] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.last_cause = last_cause
        self.context.update(attempts=attempts, last_cause=repr(last_cause))


class RateLimited(NetworkError):
    """Backend still rate limiting after every retry."""

    code = "RATE_LIMITED"

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        retry_after: Optional[float] = None,
        last_cause: Optional[BaseException] = None,
        **kwargs,
    ):
        super().__init__(message, attempts=attempts, last_cause=last_cause, **kwargs)
        self.retry_after = retry_after
        self.context.update(retry_after=retry_after)


class BackendRejected(GatewayError):
    """Backend returned a structured business error."""

    code = "BACKEND_REJECTED"

    def __init__(
        self,
        message: str,
        backend_code: Optional[str] = None,
        reason: Optional[str] = None,
        http_status: Optional[int] = None,
        filled_quantity: Optional[Decimal] = None,
        filled_value: Optional[Decimal] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.backend_code = backend_code
        self.reason = reason or message
        self.http_status = http_status
        self.context.update(
            backend_code=backend_code,
            reason=self.reason,
            http_status=http_status,
        )
        self.filled_quantity = filled_quantity
        self.filled_value = filled_value
        if self.partially_filled:
            self.context.update(filled_quantity=filled_quantity, filled_value=filled_value)

    @property
    def partially_filled(self) -> bool:
        """Some base asset moved before the order was cancelled or failed."""
        return bool(self.filled_quantity) and self.filled_quantity > 0


class ConfirmationTimeout(GatewayError):
    """
    No terminal status observed in time.

    The order may still be live on the backend.
    """

    code = "CONFIRMATION_TIMEOUT"

    def __init__(
        self,
        message: str,
        order_id: Optional[str] = None,
        attempts: int = 0,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.order_id = order_id
        self.attempts = attempts
        self.context.update(order_id=order_id, attempts=attempts)


class UnknownResponseShape(GatewayError):
    """Success response missing a field the mapper requires."""

    code = "UNKNOWN_RESPONSE_SHAPE"

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field_name = field_name
        self.context.update(field=field_name)
