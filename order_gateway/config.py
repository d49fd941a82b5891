"""
Order Gateway - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the Order Gateway.

CRITICAL CONSTRAINTS:
- No blind retries
- No infinite loops
- Credentials never come from configuration

============================================================
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional
from decimal import Decimal

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


# ============================================================
# RETRY CONFIGURATION
# ============================================================

@dataclass
class RetryConfig:
    """
    Retry configuration for outbound requests.

    SAFETY: Limited attempts with exponential backoff.
    """

    max_retries: int = 3
    """Maximum number of attempts per request."""

    initial_delay_seconds: float = 1.0
    """Delay before the second attempt."""

    max_delay_seconds: float = 30.0
    """Maximum delay between attempts."""

    backoff_multiplier: float = 2.0
    """Exponential backoff multiplier."""

    retry_on_timeout: bool = True
    """Whether to retry on timeout errors."""

    retry_on_network_error: bool = True
    """Whether to retry on connection errors."""

    retry_on_server_error: bool = True
    """Whether to retry on HTTP 5xx."""

    def delay_for(self, retry_index: int) -> float:
        """Backoff delay before retry number retry_index (0-based)."""
        delay = self.initial_delay_seconds * (self.backoff_multiplier ** retry_index)
        return min(delay, self.max_delay_seconds)

    def total_backoff_bound(self) -> float:
        """Upper bound of wall-clock time spent sleeping between attempts."""
        return sum(self.delay_for(i) for i in range(max(self.max_retries - 1, 0)))


# ============================================================
# RATE LIMIT CONFIGURATION
# ============================================================

@dataclass
class RateLimitConfig:
    """
    Per-backend request spacing.
    """

    min_interval_seconds: float = 0.2
    """Default minimum gap between request starts."""

    per_backend: Dict[str, float] = field(default_factory=dict)
    """Overrides by backend identifier."""

    def interval_for(self, backend_id: str) -> float:
        return self.per_backend.get(backend_id, self.min_interval_seconds)


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """
    Timeout configuration.
    """

    connection_timeout_seconds: float = 5.0
    """Connection timeout."""

    request_timeout_seconds: float = 30.0
    """Hard timeout per attempt."""


# ============================================================
# CONFIRMATION CONFIGURATION
# ============================================================

@dataclass
class ConfirmationConfig:
    """
    Order confirmation polling.
    """

    max_attempts: int = 10
    """Status polls before ConfirmationTimeout."""

    interval_seconds: float = 1.0
    """Wait before each poll."""


# ============================================================
# BALANCE GUARD CONFIGURATION
# ============================================================

@dataclass
class BalanceGuardConfig:
    """
    Sell quantity clamping.
    """

    safety_factor: Decimal = Decimal("0.999")
    """Fraction of available balance used when it falls short."""

    default_precision: int = 8
    """Decimal places kept after clamping."""

    precision_overrides: Dict[str, Dict[str, int]] = field(default_factory=dict)
    """Per backend, per asset decimal places."""

    minimum_lots: Dict[str, Dict[str, Decimal]] = field(default_factory=dict)
    """Per backend, per asset minimum order size, merged over defaults."""


# ============================================================
# GATEWAY CONFIGURATION
# ============================================================

@dataclass
class GatewayConfig:
    """
    Complete Order Gateway configuration.
    """

    retry: RetryConfig = field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    confirmation: ConfirmationConfig = field(default_factory=ConfirmationConfig)
    balance_guard: BalanceGuardConfig = field(default_factory=BalanceGuardConfig)

    limit_fallback_enabled: bool = True
    """Retry as IOC limit when a backend says market orders are unavailable."""

    limit_fallback_slippage: Decimal = Decimal("0.005")
    """Price offset used for the limit fallback."""

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "GatewayConfig":
        """
        Build configuration from ORDER_GATEWAY_* environment variables.

        A .env file is loaded first when present.
        """
        load_dotenv(env_file)

        config = cls()

        def _get(name: str) -> Optional[str]:
            return os.environ.get(f"ORDER_GATEWAY_{name}")

        if _get("MAX_RETRIES"):
            config.retry.max_retries = int(_get("MAX_RETRIES"))
        if _get("BACKOFF_INITIAL_SECONDS"):
            config.retry.initial_delay_seconds = float(_get("BACKOFF_INITIAL_SECONDS"))
        if _get("REQUEST_TIMEOUT_SECONDS"):
            config.timeout.request_timeout_seconds = float(_get("REQUEST_TIMEOUT_SECONDS"))
        if _get("MIN_INTERVAL_SECONDS"):
            config.rate_limit.min_interval_seconds = float(_get("MIN_INTERVAL_SECONDS"))
        if _get("CONFIRM_MAX_ATTEMPTS"):
            config.confirmation.max_attempts = int(_get("CONFIRM_MAX_ATTEMPTS"))
        if _get("CONFIRM_INTERVAL_SECONDS"):
            config.confirmation.interval_seconds = float(_get("CONFIRM_INTERVAL_SECONDS"))
        if _get("SAFETY_FACTOR"):
            config.balance_guard.safety_factor = Decimal(_get("SAFETY_FACTOR"))
        if _get("LIMIT_FALLBACK"):
            config.limit_fallback_enabled = _get("LIMIT_FALLBACK").lower() in ("1", "true", "yes")

        logger.debug(f"Loaded gateway config from environment: {config}")
        return config
