"""
Order Gateway - VALR Adapter.

============================================================
PURPOSE
============================================================
VALR spot market orders.

NOTES:
- HMAC-SHA512 hex over timestamp + METHOD + path + body
- Market orders execute atomically; the status endpoint can report
  a spurious failure right after execution because the balance has
  already moved, so fills are trusted (estimated=True)

============================================================
"""

import logging
from decimal import Decimal
from typing import Optional

from ..confirmation import TrustInstantPolicy
from ..errors import UnknownResponseShape
from ..types import (
    BalanceSnapshot,
    Credentials,
    OrderStatus,
    OrderStatusDetail,
    OrderSubmission,
)
from .base import ExchangeAdapter, first_present, format_notional, format_quantity, to_decimal


logger = logging.getLogger(__name__)


class ValrAdapter(ExchangeAdapter):
    """VALR exchange adapter."""

    exchange_id = "valr"
    base_url = "https://api.valr.com"
    confirmation_policy = TrustInstantPolicy(taker_fee_rate=Decimal("0.001"))

    STATUS_MAP = {
        "PLACED": OrderStatus.SUBMITTED,
        "ACTIVE": OrderStatus.SUBMITTED,
        "PARTIALLY FILLED": OrderStatus.PARTIALLY_FILLED,
        "FILLED": OrderStatus.FILLED,
        "INSTANTLY FILLED": OrderStatus.FILLED,
        "CANCELLED": OrderStatus.CANCELLED,
        "EXPIRED": OrderStatus.CANCELLED,
        "FAILED": OrderStatus.FAILED,
    }

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "side": "BUY",
            "currencyPair": self.normalize_pair(pair),
            "quoteAmount": format_notional(notional, pair),
        }
        return await self._place(payload, credentials, "place_market_buy")

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "side": "SELL",
            "currencyPair": self.normalize_pair(pair),
            "baseAmount": format_quantity(quantity),
        }
        return await self._place(payload, credentials, "place_market_sell")

    async def _place(self, payload: dict, credentials: Credentials, operation: str) -> OrderSubmission:
        response = await self.request("POST", "/v1/orders/market", credentials, body=payload, operation=operation)
        data = response.data or {}
        raw_status = first_present(data, "orderStatus", "status")
        return self.submission(
            response,
            order_id=first_present(data, "id", "orderId"),
            status=self.map_status(raw_status) if raw_status else OrderStatus.SUBMITTED,
            price=first_present(data, "averagePrice"),
            quantity=first_present(data, "originalQuantity", "quantity"),
            value=first_present(data, "total"),
            fee=first_present(data, "totalFee"),
            timestamp=first_present(data, "createdAt"),
        )

    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        response = await self.request("GET", f"/v1/orders/{order_id}", credentials, operation="get_order_status")
        data = response.data or {}
        raw_status = first_present(data, "orderStatus", "status")
        return OrderStatusDetail(
            order_id=str(first_present(data, "id", "orderId") or order_id),
            status=self.map_status(raw_status),
            raw_status=raw_status,
            pair=first_present(data, "currencyPair") or pair,
            side=self.side_from(data.get("side")),
            executed_quantity=to_decimal(first_present(data, "originalQuantity", "quantity")),
            executed_price=to_decimal(first_present(data, "averagePrice")),
            executed_value=to_decimal(first_present(data, "total")),
            fee=to_decimal(first_present(data, "totalFee")),
            reason=first_present(data, "failedReason"),
            raw=data,
        )

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        response = await self.request("GET", "/v1/account/balances", credentials, operation="get_balances")
        return self.balance_entries(
            response.data if isinstance(response.data, list) else [],
            currency_keys=("currency",),
            available_keys=("available",),
            reserved_keys=("reserved",),
            total_keys=("total",),
        )

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request(
            "GET", f"/v1/public/{symbol}/marketsummary", operation="fetch_current_price"
        )
        price = to_decimal(first_present(response.data, "lastTradedPrice", "markPrice"))
        if not price:
            raise UnknownResponseShape(
                f"VALR market summary for {symbol} has no price",
                field_name="lastTradedPrice",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price
