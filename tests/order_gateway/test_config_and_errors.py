"""
Configuration and Error Taxonomy Tests.

============================================================
PURPOSE
============================================================
Environment loading and error code metadata.

============================================================
"""

from decimal import Decimal

import pytest

from order_gateway import (
    BackendRejected,
    BelowMinimumOrderSize,
    ConfirmationTimeout,
    ErrorCategory,
    GatewayConfig,
    GatewayError,
    InsufficientBalance,
    NetworkError,
    OrderSide,
    RateLimited,
    ValidationError,
    get_error_info,
)
from order_gateway.adapters import MockExchangeAdapter


# ============================================================
# CONFIG TESTS
# ============================================================

class TestGatewayConfig:
    """Tests for GatewayConfig."""

    def test_defaults(self):
        config = GatewayConfig()

        assert config.retry.max_retries == 3
        assert config.retry.initial_delay_seconds == 1.0
        assert config.timeout.request_timeout_seconds == 30.0
        assert config.confirmation.max_attempts == 10
        assert config.confirmation.interval_seconds == 1.0
        assert config.balance_guard.safety_factor == Decimal("0.999")
        assert config.balance_guard.default_precision == 8
        assert config.rate_limit.min_interval_seconds == 0.2
        assert config.limit_fallback_enabled is True

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ORDER_GATEWAY_MAX_RETRIES", "5")
        monkeypatch.setenv("ORDER_GATEWAY_REQUEST_TIMEOUT_SECONDS", "12.5")
        monkeypatch.setenv("ORDER_GATEWAY_CONFIRM_MAX_ATTEMPTS", "4")
        monkeypatch.setenv("ORDER_GATEWAY_SAFETY_FACTOR", "0.995")
        monkeypatch.setenv("ORDER_GATEWAY_LIMIT_FALLBACK", "false")
        env_file = tmp_path / ".env"
        env_file.write_text("")

        config = GatewayConfig.from_env(str(env_file))

        assert config.retry.max_retries == 5
        assert config.timeout.request_timeout_seconds == 12.5
        assert config.confirmation.max_attempts == 4
        assert config.balance_guard.safety_factor == Decimal("0.995")
        assert config.limit_fallback_enabled is False

    def test_from_env_file(self, monkeypatch, tmp_path):
        # setenv then delenv so teardown removes whatever the file loaded
        monkeypatch.setenv("ORDER_GATEWAY_MIN_INTERVAL_SECONDS", "0")
        monkeypatch.delenv("ORDER_GATEWAY_MIN_INTERVAL_SECONDS")
        env_file = tmp_path / ".env"
        env_file.write_text("ORDER_GATEWAY_MIN_INTERVAL_SECONDS=0.75\n")

        config = GatewayConfig.from_env(str(env_file))

        assert config.rate_limit.min_interval_seconds == 0.75

    def test_confirmation_config_reaches_adapter(self):
        config = GatewayConfig()
        config.confirmation.max_attempts = 3
        config.confirmation.interval_seconds = 0.25

        adapter = MockExchangeAdapter(config=config)

        assert adapter.confirmation_policy.max_attempts == 3
        assert adapter.confirmation_policy.interval_seconds == 0.25


# ============================================================
# ERROR TESTS
# ============================================================

class TestErrors:
    """Tests for the error taxonomy."""

    def test_error_info(self):
        assert get_error_info("CONFIRMATION_TIMEOUT").category == ErrorCategory.CONFIRMATION
        assert get_error_info("NETWORK_ERROR").is_retryable is True
        assert get_error_info("BELOW_MINIMUM_ORDER_SIZE").is_retryable is False
        assert get_error_info("SOMETHING_ELSE").description == "Unknown error: SOMETHING_ELSE"

    def test_all_errors_are_gateway_errors(self):
        for cls in (ValidationError, NetworkError, RateLimited, BackendRejected, ConfirmationTimeout):
            assert issubclass(cls, GatewayError)
        assert issubclass(RateLimited, NetworkError)

    def test_with_context_keeps_existing_fields(self):
        error = BackendRejected("nope", exchange_id="kraken")
        error.with_context(exchange_id="binance", pair="XRPUSD", side=OrderSide.SELL)

        assert error.exchange_id == "kraken"
        assert error.pair == "XRPUSD"
        assert error.side == OrderSide.SELL

    def test_str_includes_correlation(self):
        error = InsufficientBalance("empty", exchange_id="valr", pair="XRPZAR", side=OrderSide.SELL)
        assert str(error) == "[INSUFFICIENT_BALANCE] valr/SELL/XRPZAR: empty"

    def test_below_minimum_context(self):
        error = BelowMinimumOrderSize(
            "too small",
            available=Decimal("1"),
            requested=Decimal("2"),
            adjusted=Decimal("0.999"),
            minimum_lot=Decimal("1.5"),
        )
        data = error.to_dict()

        assert data["code"] == "BELOW_MINIMUM_ORDER_SIZE"
        assert data["retryable"] is False
        assert data["context"]["shortfall"] == "1"
        assert data["context"]["minimum_lot"] == "1.5"

    def test_confirmation_timeout_distinct_from_rejection(self):
        timeout = ConfirmationTimeout("still open", order_id="42", attempts=10)

        assert not isinstance(timeout, BackendRejected)
        assert timeout.context["order_id"] == "42"

    def test_rate_limited_retry_after(self):
        error = RateLimited("slow down", attempts=3, retry_after=2.0)

        assert error.code == "RATE_LIMITED"
        assert error.attempts == 3
        assert error.retryable is True

    @pytest.mark.parametrize("reason,expected", [
        (None, "fallback message"),
        ("explicit", "explicit"),
    ])
    def test_backend_rejected_reason(self, reason, expected):
        error = BackendRejected("fallback message", reason=reason)
        assert error.reason == expected

    def test_backend_rejected_partial_fill(self):
        plain = BackendRejected("cancelled")
        partial = BackendRejected(
            "cancelled after a partial fill",
            filled_quantity=Decimal("40"),
            filled_value=Decimal("20"),
        )
        empty = BackendRejected("cancelled", filled_quantity=Decimal("0"))

        assert plain.partially_filled is False
        assert "filled_quantity" not in plain.context
        assert empty.partially_filled is False
        assert partial.partially_filled is True
        assert partial.to_dict()["context"]["filled_quantity"] == "40"
        assert partial.to_dict()["context"]["filled_value"] == "20"
