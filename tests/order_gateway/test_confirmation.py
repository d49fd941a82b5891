"""
Order Confirmation Tests.

============================================================
PURPOSE
============================================================
Polling, terminal states, timeouts and trusted instant fills.

============================================================
"""

from decimal import Decimal

import pytest

from order_gateway import (
    BackendRejected,
    BaseQuantity,
    ConfirmationTimeout,
    Credentials,
    OrderConfirmer,
    OrderSide,
    OrderStatus,
    OrderSubmission,
    PollPolicy,
    QuoteNotional,
    TrustInstantPolicy,
    UnknownResponseShape,
)
from order_gateway.adapters import MockConfig, MockExchangeAdapter
from order_gateway.confirmation import (
    VALID_TRANSITIONS,
    ConfirmationState,
    ConfirmationTrace,
    result_from_fill,
)

from conftest import SleepRecorder


CREDS = Credentials(api_key="k", api_secret="s")


async def place_buy(adapter, notional="100"):
    return await adapter.place_market_buy("XRPUSDT", Decimal(notional), CREDS)


async def confirm(confirmer, adapter, submission, side=OrderSide.BUY, sizing=None, policy=None):
    sizing = sizing or QuoteNotional(Decimal("100"))
    return await confirmer.confirm(adapter, submission, "XRPUSDT", side, sizing, CREDS, policy=policy)


# ============================================================
# POLLING TESTS
# ============================================================

class TestPolling:
    """Tests for the PollPolicy path."""

    @pytest.fixture
    def sleeper(self):
        return SleepRecorder()

    @pytest.fixture
    def confirmer(self, sleeper):
        return OrderConfirmer(sleep=sleeper)

    @pytest.mark.asyncio
    async def test_filled_on_tenth_poll(self, confirmer, sleeper):
        adapter = MockExchangeAdapter(MockConfig(status_script=[OrderStatus.SUBMITTED] * 9 + [OrderStatus.FILLED]))
        submission = await place_buy(adapter)

        result = await confirm(confirmer, adapter, submission)

        assert result.status == OrderStatus.FILLED
        assert result.estimated is False
        assert adapter.status_calls == 10
        assert result.executed_price == Decimal("0.5")
        assert result.executed_quantity == Decimal("200")
        assert result.executed_value == Decimal("100")
        assert sleeper.delays == [1.0] * 10

    @pytest.mark.asyncio
    async def test_timeout_after_exactly_max_attempts(self, confirmer):
        adapter = MockExchangeAdapter(MockConfig(status_script=[OrderStatus.SUBMITTED]))
        submission = await place_buy(adapter)

        with pytest.raises(ConfirmationTimeout) as exc_info:
            await confirm(confirmer, adapter, submission)

        assert adapter.status_calls == 10
        assert exc_info.value.order_id == submission.order_id
        assert exc_info.value.attempts == 10
        assert exc_info.value.exchange_id == "mock"
        assert exc_info.value.side == OrderSide.BUY

    @pytest.mark.asyncio
    async def test_custom_policy(self, confirmer, sleeper):
        adapter = MockExchangeAdapter(MockConfig(status_script=[OrderStatus.PARTIALLY_FILLED]))
        submission = await place_buy(adapter)

        with pytest.raises(ConfirmationTimeout):
            await confirm(confirmer, adapter, submission, policy=PollPolicy(max_attempts=3, interval_seconds=0.5))

        assert adapter.status_calls == 3
        assert sleeper.delays == [0.5, 0.5, 0.5]

    @pytest.mark.asyncio
    async def test_failed_status_raises_backend_rejected(self, confirmer):
        adapter = MockExchangeAdapter(MockConfig(status_script=[OrderStatus.SUBMITTED, OrderStatus.FAILED]))
        submission = await place_buy(adapter)

        with pytest.raises(BackendRejected) as exc_info:
            await confirm(confirmer, adapter, submission)

        assert exc_info.value.reason == "mock order not filled"
        assert adapter.status_calls == 2

    @pytest.mark.asyncio
    async def test_cancelled_status_raises_backend_rejected(self, confirmer):
        adapter = MockExchangeAdapter(MockConfig(status_script=[OrderStatus.CANCELLED]))
        submission = await place_buy(adapter)

        with pytest.raises(BackendRejected):
            await confirm(confirmer, adapter, submission)

    @pytest.mark.asyncio
    async def test_network_errors_count_as_polls(self, confirmer):
        adapter = MockExchangeAdapter(MockConfig(
            status_script=[OrderStatus.FILLED],
            poll_network_failures=2,
        ))
        submission = await place_buy(adapter)

        result = await confirm(confirmer, adapter, submission)

        assert result.status == OrderStatus.FILLED
        assert adapter.status_calls == 3

    @pytest.mark.asyncio
    async def test_filled_submission_skips_polling(self, confirmer):
        adapter = MockExchangeAdapter(MockConfig(fill_on_submit=True))
        submission = await place_buy(adapter)

        result = await confirm(confirmer, adapter, submission)

        assert adapter.status_calls == 0
        assert result.executed_quantity == Decimal("200")
        assert result.fee == Decimal("0.1")

    @pytest.mark.asyncio
    async def test_failed_submission_rejected_without_polling(self, confirmer):
        adapter = MockExchangeAdapter()
        submission = OrderSubmission(order_id="x", status=OrderStatus.FAILED)

        with pytest.raises(BackendRejected):
            await confirm(confirmer, adapter, submission)

        assert adapter.status_calls == 0


# ============================================================
# TRUST INSTANT TESTS
# ============================================================

class TestTrustInstant:
    """Tests for the TrustInstantPolicy path."""

    @pytest.mark.asyncio
    async def test_buy_estimated_from_current_price(self):
        adapter = MockExchangeAdapter(MockConfig(trust_instant=True, price=Decimal("0.5")))
        submission = await place_buy(adapter)

        result = await confirm(OrderConfirmer(), adapter, submission)

        assert result.estimated is True
        assert result.status == OrderStatus.FILLED
        assert result.executed_price == Decimal("0.5")
        assert result.executed_quantity == Decimal("200")
        assert result.executed_value == Decimal("100")
        assert result.fee == Decimal("0.1")
        assert adapter.status_calls == 0
        assert adapter.price_calls == 1

    @pytest.mark.asyncio
    async def test_sell_estimated_from_quantity(self):
        adapter = MockExchangeAdapter(MockConfig(trust_instant=True, price=Decimal("2")))
        submission = await adapter.place_market_sell("XRPUSDT", Decimal("10"), CREDS)

        result = await confirm(
            OrderConfirmer(), adapter, submission, side=OrderSide.SELL, sizing=BaseQuantity(Decimal("10"))
        )

        assert result.executed_quantity == Decimal("10")
        assert result.executed_value == Decimal("20")
        assert result.fee == Decimal("0.02")

    @pytest.mark.asyncio
    async def test_submission_amounts_preferred(self):
        adapter = MockExchangeAdapter(MockConfig(fill_on_submit=True, price=Decimal("0.4")))
        submission = await place_buy(adapter)
        policy = TrustInstantPolicy(taker_fee_rate=Decimal("0.002"))

        result = await confirm(OrderConfirmer(), adapter, submission, policy=policy)

        assert result.estimated is True
        assert result.executed_price == Decimal("0.4")
        assert result.executed_quantity == Decimal("250")
        assert adapter.price_calls == 0


# ============================================================
# STATE MACHINE TESTS
# ============================================================

class TestConfirmationStateMachine:
    """Tests for confirmation state transitions."""

    def test_terminal_states_have_no_exits(self):
        for state in (
            ConfirmationState.FILLED,
            ConfirmationState.FILLED_ESTIMATED,
            ConfirmationState.FAILED,
            ConfirmationState.TIMED_OUT,
        ):
            assert VALID_TRANSITIONS[state] == set()

    def test_invalid_transition_raises(self):
        trace = ConfirmationTrace(order_id="1", exchange_id="mock")
        with pytest.raises(ValueError):
            trace.transition(ConfirmationState.TIMED_OUT)

    def test_history_recorded(self):
        trace = ConfirmationTrace(order_id="1", exchange_id="mock")
        trace.transition(ConfirmationState.POLLING)
        trace.transition(ConfirmationState.FILLED)

        assert trace.state == ConfirmationState.FILLED
        assert [state for state, _ in trace.history] == [
            ConfirmationState.SUBMITTED,
            ConfirmationState.POLLING,
        ]


class TestResultFromFill:
    """Tests for fill result construction."""

    def test_price_derived_from_value(self):
        result = result_from_fill("x", "1", "XRPUSDT", OrderSide.BUY, None, Decimal("200"), Decimal("100"), None)
        assert result.executed_price == Decimal("0.5")
        assert result.fee == Decimal("0")

    def test_missing_quantity_raises(self):
        with pytest.raises(UnknownResponseShape):
            result_from_fill("x", "1", "XRPUSDT", OrderSide.BUY, None, None, Decimal("100"), None)
