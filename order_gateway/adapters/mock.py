"""
Order Gateway - Mock Exchange Adapter.

============================================================
PURPOSE
============================================================
In-memory adapter for exercising the gateway without a backend.

FEATURES:
- Scripted status sequence for confirmation polling
- Configurable balances and price
- Error injection: rejection, market-order unavailability,
  network failures while polling
- Full call tracking

============================================================
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from ..confirmation import TrustInstantPolicy
from ..errors import BackendRejected, NetworkError
from ..signing import ApiKeyHeaderSigner
from ..types import (
    BalanceEntry,
    BalanceSnapshot,
    Credentials,
    OrderSide,
    OrderStatus,
    OrderStatusDetail,
    OrderSubmission,
)
from .base import ExchangeAdapter


logger = logging.getLogger(__name__)


# ============================================================
# MOCK CONFIGURATION
# ============================================================

@dataclass
class MockConfig:
    """Configuration for the mock adapter."""

    price: Decimal = Decimal("0.5")
    """Price used for fills and fetch_current_price."""

    balances: Dict[str, Decimal] = field(default_factory=dict)
    """Available balance per currency."""

    status_script: List[OrderStatus] = field(default_factory=lambda: [OrderStatus.FILLED])
    """Statuses returned by successive polls; the last one repeats."""

    fill_on_submit: bool = False
    """Submission already reports a complete fill."""

    trust_instant: bool = False
    """Use a trust-instant confirmation policy."""

    taker_fee_rate: Decimal = Decimal("0.001")

    reject_reason: Optional[str] = None
    """Reject every market order with this reason."""

    market_unavailable: bool = False
    """Reject market orders so that the limit fallback is exercised."""

    poll_network_failures: int = 0
    """Number of initial status polls that fail with NetworkError."""

    latency_seconds: float = 0.0
    """Delay applied to each order placement."""


@dataclass
class MockOrder:
    """Order recorded by the mock adapter."""

    order_id: str
    pair: str
    side: OrderSide
    kind: str
    notional: Optional[Decimal] = None
    quantity: Optional[Decimal] = None
    limit_price: Optional[Decimal] = None


# ============================================================
# MOCK EXCHANGE ADAPTER
# ============================================================

class MockExchangeAdapter(ExchangeAdapter):
    """
    Mock exchange adapter for testing.

    Accepts the same dependencies as real adapters; none of them is
    used for I/O.
    """

    exchange_id = "mock"
    base_url = "mock://exchange"
    supports_limit_fallback = True
    MARKET_UNAVAILABLE_HINTS = ("market orders are not supported",)

    def __init__(self, mock_config: Optional[MockConfig] = None, **kwargs):
        kwargs.setdefault("signer", ApiKeyHeaderSigner("X-MOCK-KEY"))
        super().__init__(**kwargs)
        self.mock_config = mock_config or MockConfig()
        if self.mock_config.trust_instant:
            self.confirmation_policy = TrustInstantPolicy(taker_fee_rate=self.mock_config.taker_fee_rate)
        self.orders: List[MockOrder] = []
        self.status_calls = 0
        self.balance_calls = 0
        self.price_calls = 0

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def _accept(self, order: MockOrder) -> OrderSubmission:
        if self.mock_config.latency_seconds:
            await asyncio.sleep(self.mock_config.latency_seconds)
        self.orders.append(order)
        self.metrics.record_order_submitted()
        logger.debug(f"Mock accepted {order.kind} {order.side.value} {order.pair} as {order.order_id}")

        if not self.mock_config.fill_on_submit:
            return OrderSubmission(order_id=order.order_id)

        price = order.limit_price or self.mock_config.price
        quantity = order.quantity if order.quantity is not None else order.notional / price
        return OrderSubmission(
            order_id=order.order_id,
            status=OrderStatus.FILLED,
            executed_price=price,
            executed_quantity=quantity,
            executed_value=price * quantity,
            fee=price * quantity * self.mock_config.taker_fee_rate,
        )

    def _check_market(self, pair: str) -> None:
        if self.mock_config.market_unavailable:
            raise BackendRejected(
                "mock rejected request: market orders are not supported for this symbol",
                backend_code="-1013",
                reason="Market orders are not supported for this symbol",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        if self.mock_config.reject_reason:
            raise BackendRejected(
                f"mock rejected request: {self.mock_config.reject_reason}",
                reason=self.mock_config.reject_reason,
                exchange_id=self.exchange_id,
                pair=pair,
            )

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        self._check_market(pair)
        return await self._accept(
            MockOrder(order_id=uuid.uuid4().hex, pair=pair, side=OrderSide.BUY, kind="market", notional=notional)
        )

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        self._check_market(pair)
        return await self._accept(
            MockOrder(order_id=uuid.uuid4().hex, pair=pair, side=OrderSide.SELL, kind="market", quantity=quantity)
        )

    async def place_limit_ioc(
        self,
        pair: str,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
        credentials: Credentials,
    ) -> OrderSubmission:
        return await self._accept(
            MockOrder(
                order_id=uuid.uuid4().hex,
                pair=pair,
                side=side,
                kind="limit_ioc",
                quantity=quantity,
                limit_price=price,
            )
        )

    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        self.status_calls += 1
        if self.status_calls <= self.mock_config.poll_network_failures:
            raise NetworkError("mock status poll failed", attempts=1, exchange_id=self.exchange_id)

        script = self.mock_config.status_script
        status = script[min(self.status_calls, len(script)) - 1]
        order = next((o for o in self.orders if o.order_id == order_id), None)

        detail = OrderStatusDetail(
            order_id=order_id,
            status=status,
            raw_status=status.value,
            pair=pair,
            side=order.side if order else None,
        )
        if status == OrderStatus.FILLED and order is not None:
            price = order.limit_price or self.mock_config.price
            quantity = order.quantity if order.quantity is not None else order.notional / price
            detail.executed_price = price
            detail.executed_quantity = quantity
            detail.executed_value = price * quantity
            detail.fee = price * quantity * self.mock_config.taker_fee_rate
        if status in (OrderStatus.FAILED, OrderStatus.CANCELLED):
            detail.reason = "mock order not filled"
        return detail

    # --------------------------------------------------------
    # ACCOUNT / MARKET DATA
    # --------------------------------------------------------

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        self.balance_calls += 1
        return BalanceSnapshot(
            exchange_id=self.exchange_id,
            entries=[BalanceEntry.normalized(c, amount) for c, amount in self.mock_config.balances.items()],
        )

    async def fetch_current_price(self, pair: str) -> Decimal:
        self.price_calls += 1
        return self.mock_config.price


