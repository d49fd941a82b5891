"""
Order Gateway Package.

============================================================
PURPOSE
============================================================
Places spot market orders on many crypto exchanges behind one
interface and returns normalized results.

CRITICAL PRINCIPLE:
    "The gateway executes; it does not decide."
    Callers choose what to trade. The gateway only signs, sizes
    sells to the real balance, submits and confirms.

AUTHORITY BOUNDARIES:
    CAN:
        - Submit market (or fallback IOC limit) orders
        - Query order status and balances
        - Reduce a sell to the available balance
        - Retry transient transport failures

    MUST NOT:
        - Increase an order size
        - Persist credentials or order state
        - Log secrets in cleartext

============================================================
MODULES
============================================================
- types: Sides, statuses, requests, results, balances
- config: Retry, timeout, rate limit and confirmation settings
- errors: Error taxonomy and codes
- pairs: Canonical pair to exchange symbol mapping
- signing: Request signing families
- rate_limiter: Per-exchange request spacing
- transport: HTTP transport with retry and backoff
- balance_guard: Sell quantity clamping
- confirmation: Fill confirmation state machine
- adapters: Exchange adapters and registry
- gateway: OrderGateway facade

============================================================
"""

# ============================================================
# TYPES
# ============================================================
from .types import (
    OrderSide,
    OrderStatus,
    Credentials,
    QuoteNotional,
    BaseQuantity,
    OrderRequest,
    BalanceEntry,
    BalanceSnapshot,
    AdjustedQuantity,
    OrderSubmission,
    OrderResult,
    OrderStatusDetail,
)

# ============================================================
# CONFIG
# ============================================================
from .config import (
    RetryConfig,
    RateLimitConfig,
    TimeoutConfig,
    ConfirmationConfig,
    BalanceGuardConfig,
    GatewayConfig,
)

# ============================================================
# ERRORS
# ============================================================
from .errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorCodeInfo,
    get_error_info,
    GatewayError,
    ValidationError,
    UnsupportedExchange,
    AuthenticationError,
    InsufficientBalance,
    BelowMinimumOrderSize,
    NetworkError,
    RateLimited,
    BackendRejected,
    ConfirmationTimeout,
    UnknownResponseShape,
)

# ============================================================
# COMPONENTS
# ============================================================
from .pairs import normalize_pair, split_pair, is_canonical_pair
from .signing import Clock, FixedClock, Signer, SigningInput, SignedParts, get_signer
from .rate_limiter import RateLimiter
from .transport import HttpRequest, TransportResponse, ResilientTransport
from .balance_guard import BalanceGuard, compute_adjustment
from .confirmation import (
    PollPolicy,
    TrustInstantPolicy,
    ConfirmationState,
    OrderConfirmer,
)
from .adapters import ExchangeAdapter, AdapterFactory

# ============================================================
# GATEWAY
# ============================================================
from .gateway import OrderGateway, validate_order_request


__all__ = [
    # Types
    "OrderSide",
    "OrderStatus",
    "Credentials",
    "QuoteNotional",
    "BaseQuantity",
    "OrderRequest",
    "BalanceEntry",
    "BalanceSnapshot",
    "AdjustedQuantity",
    "OrderSubmission",
    "OrderResult",
    "OrderStatusDetail",
    # Config
    "RetryConfig",
    "RateLimitConfig",
    "TimeoutConfig",
    "ConfirmationConfig",
    "BalanceGuardConfig",
    "GatewayConfig",
    # Errors
    "ErrorCategory",
    "ErrorSeverity",
    "ErrorCodeInfo",
    "get_error_info",
    "GatewayError",
    "ValidationError",
    "UnsupportedExchange",
    "AuthenticationError",
    "InsufficientBalance",
    "BelowMinimumOrderSize",
    "NetworkError",
    "RateLimited",
    "BackendRejected",
    "ConfirmationTimeout",
    "UnknownResponseShape",
    # Components
    "normalize_pair",
    "split_pair",
    "is_canonical_pair",
    "Clock",
    "FixedClock",
    "Signer",
    "SigningInput",
    "SignedParts",
    "get_signer",
    "RateLimiter",
    "HttpRequest",
    "TransportResponse",
    "ResilientTransport",
    "BalanceGuard",
    "compute_adjustment",
    "PollPolicy",
    "TrustInstantPolicy",
    "ConfirmationState",
    "OrderConfirmer",
    "ExchangeAdapter",
    "AdapterFactory",
    # Gateway
    "OrderGateway",
    "validate_order_request",
]
