"""
Order Gateway Facade Tests.

============================================================
PURPOSE
============================================================
End-to-end behaviour of OrderGateway against the fake session and
the mock backend.

TEST CATEGORIES:
- Validation: refused before any I/O
- Buy and sell paths
- Limit fallback
- Deadlines
- Error correlation and bookkeeping

============================================================
"""

import asyncio
import time
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from order_gateway import (
    BackendRejected,
    BalanceGuardConfig,
    BaseQuantity,
    BelowMinimumOrderSize,
    ConfirmationTimeout,
    Credentials,
    FixedClock,
    GatewayConfig,
    InsufficientBalance,
    NetworkError,
    OrderGateway,
    OrderRequest,
    OrderSide,
    OrderStatus,
    QuoteNotional,
    RateLimiter,
    ResilientTransport,
    UnsupportedExchange,
    ValidationError,
    get_signer,
    validate_order_request,
)
from order_gateway.adapters import MetricType, get_audit_log

from conftest import FIXED_MS, FakeResponse, ok


BINANCE_FILLED = {
    "orderId": 1,
    "transactTime": 1700000000000,
    "executedQty": "200",
    "cummulativeQuoteQty": "100",
    "status": "FILLED",
    "fills": [{"price": "0.5", "qty": "200", "commission": "0.2"}],
}


def audit_events(exchange_id):
    return [e["event"] for e in get_audit_log().get_entries(exchange_id=exchange_id)]


# ============================================================
# VALIDATION TESTS
# ============================================================

class TestValidation:
    """Requests refused before any network call."""

    @pytest.mark.parametrize("amount", ["-5", "0", "abc", "NaN", "Infinity", True, None])
    @pytest.mark.asyncio
    async def test_bad_amounts(self, session, make_gateway, credentials, amount):
        gateway = make_gateway()

        with pytest.raises(ValidationError) as exc_info:
            await gateway.execute_buy_order("binance", "XRPUSDT", amount, credentials)

        assert exc_info.value.exchange_id == "binance"
        assert exc_info.value.pair == "XRPUSDT"
        assert exc_info.value.side == OrderSide.BUY
        assert session.requests == []

    @pytest.mark.parametrize("pair, amount", [("XRPUSDT", "0.001"), ("XRPZAR", "0.009"), ("XRPBTC", "0.000000009")])
    @pytest.mark.asyncio
    async def test_notional_below_quote_unit(self, session, make_gateway, credentials, pair, amount):
        gateway = make_gateway()

        with pytest.raises(ValidationError, match="smallest unit"):
            await gateway.execute_buy_order("binance", pair, amount, credentials)

        assert session.requests == []

    @pytest.mark.parametrize("pair", ["XRP-USDT", "", "x"])
    @pytest.mark.asyncio
    async def test_bad_pairs(self, session, make_gateway, credentials, pair):
        gateway = make_gateway()

        with pytest.raises(ValidationError):
            await gateway.execute_sell_order("binance", pair, "10", credentials)

        assert session.requests == []

    @pytest.mark.asyncio
    async def test_missing_credentials(self, session, make_gateway):
        gateway = make_gateway()

        with pytest.raises(ValidationError):
            await gateway.execute_buy_order("valr", "XRPZAR", "100", None)
        with pytest.raises(ValidationError):
            await gateway.execute_buy_order("valr", "XRPZAR", "100", Credentials(api_key="k", api_secret=""))

        assert session.requests == []

    @pytest.mark.asyncio
    async def test_passphrase_required(self, session, make_gateway, credentials):
        gateway = make_gateway()

        with pytest.raises(ValidationError, match="passphrase"):
            await gateway.execute_buy_order("okx", "XRPUSDT", "100", credentials)

        assert session.requests == []

    @pytest.mark.asyncio
    async def test_memo_required(self, session, make_gateway):
        gateway = make_gateway()
        creds = Credentials(api_key="k", api_secret="s", passphrase="p")

        with pytest.raises(ValidationError, match="memo"):
            await gateway.execute_sell_order("bitmart", "XRPUSDT", "10", creds)

    @pytest.mark.asyncio
    async def test_unsupported_exchange(self, session, make_gateway, credentials):
        gateway = make_gateway()

        with pytest.raises(UnsupportedExchange) as exc_info:
            await gateway.execute_sell_order("ftx", "XRPUSDT", "10", credentials)

        error = exc_info.value
        assert (error.exchange_id, error.pair, error.side) == ("ftx", "XRPUSDT", OrderSide.SELL)
        assert session.requests == []

    def test_sizing_must_match_side(self, credentials):
        request = OrderRequest(
            exchange_id="binance",
            pair="XRPUSDT",
            side=OrderSide.BUY,
            sizing=BaseQuantity(Decimal("10")),
            credentials=credentials,
        )

        with pytest.raises(ValidationError, match="quote notional"):
            validate_order_request(request)

    def test_valid_request_passes(self, credentials):
        request = OrderRequest(
            exchange_id="binance",
            pair="XRPUSDT",
            side=OrderSide.BUY,
            sizing=QuoteNotional(Decimal("100")),
            credentials=credentials,
        )

        validate_order_request(request, get_signer("binance"))


# ============================================================
# BUY / SELL TESTS
# ============================================================

class TestBuyOrders:
    """Tests for execute_buy_order."""

    @pytest.mark.asyncio
    async def test_binance_buy_filled(self, session, make_gateway, credentials):
        session.queue(ok(BINANCE_FILLED))
        gateway = make_gateway()

        result = await gateway.execute_buy_order("Binance", "XRPUSDT", Decimal("100"), credentials)

        assert result.order_id == "1"
        assert result.exchange_id == "binance"
        assert result.side == OrderSide.BUY
        assert result.status == OrderStatus.FILLED
        assert result.executed_price == Decimal("0.5")
        assert result.executed_quantity == Decimal("200")
        assert result.executed_value == Decimal("100")
        assert result.fee == Decimal("0.2")
        assert result.estimated is False
        assert result.adjustment is None
        assert len(session.requests) == 1
        assert audit_events("binance") == ["submit", "submitted", "filled"]

    @pytest.mark.asyncio
    async def test_float_amount_kept_exact(self, session, make_gateway, credentials):
        session.queue(ok(BINANCE_FILLED))
        gateway = make_gateway()

        await gateway.execute_buy_order("binance", "XRPUSDT", 100.1, credentials)

        assert "quoteOrderQty=100.10&" in session.requests[0]["url"]

    @pytest.mark.asyncio
    async def test_btc_quoted_buy(self, session, make_gateway, credentials):
        session.queue(ok(BINANCE_FILLED))
        gateway = make_gateway()

        result = await gateway.execute_buy_order("binance", "XRPBTC", "0.005", credentials)

        assert "quoteOrderQty=0.005&" in session.requests[0]["url"]
        assert result.pair == "XRPBTC"
        assert result.executed_quantity == Decimal("200")

    @pytest.mark.asyncio
    async def test_valr_buy_trusted_and_estimated(self, session, make_gateway, credentials):
        session.queue(
            ok({"id": "valr-1"}),
            ok({"currencyPair": "XRPZAR", "lastTradedPrice": "10"}),
        )
        gateway = make_gateway()

        result = await gateway.execute_buy_order("valr", "XRPZAR", "100", credentials)

        assert result.estimated is True
        assert result.executed_price == Decimal("10")
        assert result.executed_quantity == Decimal("10")
        assert result.fee == Decimal("0.1")
        assert "/v1/public/XRPZAR/marketsummary" in session.requests[1]["url"]
        assert gateway.get_statistics()["estimated"] == 1

    @pytest.mark.asyncio
    async def test_mock_buy_polled(self, make_gateway, credentials, mock_exchange):
        mock_exchange.status_script = [OrderStatus.SUBMITTED, OrderStatus.FILLED]
        gateway = make_gateway()

        result = await gateway.execute_buy_order("mock", "XRPUSDT", "100", credentials)

        adapter = gateway.adapter("mock")
        assert adapter.status_calls == 2
        assert result.executed_quantity == Decimal("200")
        assert adapter.metrics.count(MetricType.ORDER_FILLED) == 1


class TestSellOrders:
    """Tests for execute_sell_order and the balance guard."""

    @pytest.mark.asyncio
    async def test_sell_clamped_to_balance(self, make_gateway, credentials, mock_exchange):
        mock_exchange.balances = {"XRP": Decimal("199.5")}
        gateway = make_gateway()

        result = await gateway.execute_sell_order("mock", "XRPUSDT", "200", credentials)

        adapter = gateway.adapter("mock")
        assert adapter.orders[0].quantity == Decimal("199.3005")
        assert result.executed_quantity == Decimal("199.3005")
        assert result.adjustment.was_adjusted is True
        assert result.adjustment.requested == Decimal("200")

    @pytest.mark.asyncio
    async def test_sell_within_balance_unchanged(self, make_gateway, credentials, mock_exchange):
        gateway = make_gateway()

        result = await gateway.execute_sell_order("mock", "XRPUSDT", "100", credentials)

        assert result.executed_quantity == Decimal("100")
        assert result.adjustment.was_adjusted is False

    @pytest.mark.asyncio
    async def test_below_minimum_blocks_order(self, make_gateway, credentials, mock_exchange):
        mock_exchange.balances = {"XRP": Decimal("1")}
        config = GatewayConfig(balance_guard=BalanceGuardConfig(minimum_lots={"mock": {"XRP": Decimal("1.5")}}))
        gateway = make_gateway(config)

        with pytest.raises(BelowMinimumOrderSize) as exc_info:
            await gateway.execute_sell_order("mock", "XRPUSDT", "2", credentials)

        assert exc_info.value.side == OrderSide.SELL
        assert gateway.adapter("mock").orders == []
        assert audit_events("mock")[-1] == "blocked"

    @pytest.mark.asyncio
    async def test_adjusted_quantity_submitted(self, make_gateway, credentials, mock_exchange):
        gateway = make_gateway()
        adapter = gateway.adapter("mock")

        with patch.object(adapter, "place_market_sell", AsyncMock(wraps=adapter.place_market_sell)) as place:
            await gateway.execute_sell_order("mock", "XRPUSDT", "600", credentials)

        place.assert_awaited_once()
        assert place.await_args.args[1] == Decimal("499.5")

    @pytest.mark.asyncio
    async def test_no_balance_entry(self, make_gateway, credentials, mock_exchange):
        mock_exchange.balances = {}
        gateway = make_gateway()

        with pytest.raises(InsufficientBalance):
            await gateway.execute_sell_order("mock", "XRPUSDT", "2", credentials)

        assert gateway.adapter("mock").orders == []

    @pytest.mark.asyncio
    async def test_buy_skips_balance_guard(self, make_gateway, credentials, mock_exchange):
        gateway = make_gateway()

        await gateway.execute_buy_order("mock", "XRPUSDT", "100", credentials)

        assert gateway.adapter("mock").balance_calls == 0

    def test_sell_lock_shared_per_base_asset(self, make_gateway):
        gateway = make_gateway()

        assert gateway._sell_lock("binance", "XRPUSDT") is gateway._sell_lock("binance", "XRPUSDC")
        assert gateway._sell_lock("binance", "XRPUSDT") is not gateway._sell_lock("binance", "ETHUSDT")


# ============================================================
# LIMIT FALLBACK TESTS
# ============================================================

class TestLimitFallback:
    """Tests for the IOC limit fallback."""

    @pytest.mark.asyncio
    async def test_buy_falls_back_to_ioc(self, make_gateway, credentials, mock_exchange):
        mock_exchange.market_unavailable = True
        gateway = make_gateway()

        result = await gateway.execute_buy_order("mock", "XRPUSDT", "100", credentials)

        order = gateway.adapter("mock").orders[0]
        assert order.kind == "limit_ioc"
        assert order.limit_price == Decimal("0.5025")
        assert order.quantity == Decimal("100") / Decimal("0.5025")
        assert result.status == OrderStatus.FILLED
        assert gateway.get_statistics()["limit_fallbacks"] == 1

    @pytest.mark.asyncio
    async def test_sell_falls_back_below_market(self, make_gateway, credentials, mock_exchange):
        mock_exchange.market_unavailable = True
        gateway = make_gateway()

        await gateway.execute_sell_order("mock", "XRPUSDT", "10", credentials)

        order = gateway.adapter("mock").orders[0]
        assert order.limit_price == Decimal("0.4975")
        assert order.quantity == Decimal("10")

    @pytest.mark.asyncio
    async def test_disabled_fallback_raises(self, make_gateway, credentials, mock_exchange):
        mock_exchange.market_unavailable = True
        gateway = make_gateway(GatewayConfig(limit_fallback_enabled=False))

        with pytest.raises(BackendRejected):
            await gateway.execute_buy_order("mock", "XRPUSDT", "100", credentials)

        assert gateway.adapter("mock").orders == []

    @pytest.mark.asyncio
    async def test_other_rejections_not_retried(self, make_gateway, credentials, mock_exchange):
        mock_exchange.reject_reason = "insufficient funds"
        gateway = make_gateway()

        with pytest.raises(BackendRejected) as exc_info:
            await gateway.execute_buy_order("mock", "XRPUSDT", "100", credentials)

        assert exc_info.value.reason == "insufficient funds"
        assert gateway.get_statistics()["limit_fallbacks"] == 0

    @pytest.mark.asyncio
    async def test_binance_fallback_wire_format(self, session, make_gateway, credentials):
        session.queue(
            FakeResponse(400, {"code": -1013, "msg": "Market orders are not supported for this symbol."}),
            ok({"symbol": "XRPUSDT", "price": "0.5"}),
            ok({
                "orderId": 2,
                "status": "FILLED",
                "executedQty": "199",
                "cummulativeQuoteQty": "99.9975",
                "fills": [{"price": "0.5025", "qty": "199", "commission": "0"}],
            }),
        )
        gateway = make_gateway()

        result = await gateway.execute_buy_order("binance", "XRPUSDT", "100", credentials)

        ioc_url = session.requests[2]["url"]
        assert "type=LIMIT&timeInForce=IOC" in ioc_url
        assert "price=0.5025" in ioc_url
        assert result.order_id == "2"
        assert result.executed_quantity == Decimal("199")


# ============================================================
# DEADLINE TESTS
# ============================================================

class TestDeadlines:
    """Tests for the caller deadline."""

    @pytest.mark.asyncio
    async def test_deadline_before_submission(self, credentials, mock_exchange):
        mock_exchange.latency_seconds = 1.0
        gateway = OrderGateway()

        with pytest.raises(NetworkError) as exc_info:
            await gateway.execute_buy_order("mock", "XRPUSDT", "100", credentials, deadline=0.05)

        assert exc_info.value.exchange_id == "mock"
        assert exc_info.value.side == OrderSide.BUY
        assert gateway.get_statistics()["failed"] == 1

    @pytest.mark.asyncio
    async def test_deadline_during_confirmation(self, credentials, mock_exchange):
        mock_exchange.status_script = [OrderStatus.SUBMITTED]
        gateway = OrderGateway()

        with pytest.raises(ConfirmationTimeout) as exc_info:
            await gateway.execute_buy_order("mock", "XRPUSDT", "100", credentials, deadline=0.05)

        adapter = gateway.adapter("mock")
        assert exc_info.value.order_id == adapter.orders[0].order_id
        assert adapter.metrics.count(MetricType.ORDER_TIMED_OUT) == 1
        assert audit_events("mock")[-1] == "timeout"

    @pytest.mark.asyncio
    async def test_deadline_interrupts_backoff(self, session, credentials):
        session.queue(FakeResponse(503, text="unavailable"))
        interrupted = []

        async def stalled_sleep(delay):
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                interrupted.append(delay)
                raise

        gateway = OrderGateway(
            transport=ResilientTransport(session=session, sleep=stalled_sleep),
            rate_limiter=RateLimiter(),
            clock=FixedClock(FIXED_MS),
        )
        started = time.monotonic()

        with pytest.raises(NetworkError) as exc_info:
            await gateway.execute_buy_order("binance", "XRPUSDT", "100", credentials, deadline=0.05)

        assert time.monotonic() - started < 1.0
        assert interrupted == [1.0]
        assert len(session.requests) == 1
        assert exc_info.value.exchange_id == "binance"
        assert "Deadline" in exc_info.value.message


# ============================================================
# QUERY AND LIFECYCLE TESTS
# ============================================================

class TestQueries:
    """Tests for get_order_status and get_balances."""

    @pytest.mark.asyncio
    async def test_order_status(self, session, make_gateway, credentials):
        session.queue(ok({"orderId": 5, "status": "FILLED", "executedQty": "2", "cummulativeQuoteQty": "1"}))
        gateway = make_gateway()

        detail = await gateway.get_order_status("binance", "5", credentials, pair="XRPUSDT")

        assert detail.status == OrderStatus.FILLED
        assert detail.executed_price == Decimal("0.5")

    @pytest.mark.asyncio
    async def test_order_status_error_has_context(self, session, make_gateway, credentials):
        gateway = make_gateway()

        with pytest.raises(ValidationError) as exc_info:
            await gateway.get_order_status("okx", "5", Credentials("k", "s", passphrase="p"))

        assert exc_info.value.exchange_id == "okx"
        assert session.requests == []

    @pytest.mark.asyncio
    async def test_balances(self, make_gateway, credentials, mock_exchange):
        gateway = make_gateway()

        snapshot = await gateway.get_balances("mock", credentials)

        assert snapshot.get("USDT").available == Decimal("1000")
        assert snapshot.get("XRP").total == Decimal("500")


class TestBookkeeping:
    """Tests for correlation, statistics and lifecycle."""

    @pytest.mark.asyncio
    async def test_backend_error_carries_request_context(self, session, make_gateway, credentials):
        session.queue(FakeResponse(400, {"code": -2010, "msg": "Account has insufficient balance"}))
        gateway = make_gateway()

        with pytest.raises(BackendRejected) as exc_info:
            await gateway.execute_buy_order("binance", "XRPUSDT", "100", credentials)

        error = exc_info.value
        assert (error.exchange_id, error.pair, error.side) == ("binance", "XRPUSDT", OrderSide.BUY)
        assert error.to_dict()["side"] == "BUY"
        assert audit_events("binance")[-1] == "rejected"
        assert gateway.adapter("binance").metrics.count(MetricType.ORDER_REJECTED) == 1

    @pytest.mark.asyncio
    async def test_statistics(self, make_gateway, credentials, mock_exchange):
        gateway = make_gateway()

        await gateway.execute_buy_order("mock", "XRPUSDT", "100", credentials)
        mock_exchange.reject_reason = "halted"
        with pytest.raises(BackendRejected):
            await gateway.execute_buy_order("mock", "XRPUSDT", "100", credentials)

        stats = gateway.get_statistics()
        assert stats["orders"] == 2
        assert stats["filled"] == 1
        assert stats["failed"] == 1

    @pytest.mark.asyncio
    async def test_adapters_cached_and_share_transport(self, transport, make_gateway):
        gateway = make_gateway()

        adapter = gateway.adapter("gate.io")

        assert gateway.adapter("GATEIO") is adapter
        assert adapter.transport is transport

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, session, make_gateway):
        async with make_gateway() as gateway:
            gateway.adapter("binance")

        assert gateway._adapters == {}
        assert session.closed is False
