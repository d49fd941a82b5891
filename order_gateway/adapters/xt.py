"""
Order Gateway - XT.com Adapter.

============================================================
PURPOSE
============================================================
XT.com v4 spot market orders.

Responses use {rc, mc, ma, result}; rc != 0 is an error and mc holds
the symbolic error code.

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

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


class XtAdapter(ExchangeAdapter):
    """XT.com exchange adapter."""

    exchange_id = "xt"
    base_url = "https://sapi.xt.com"

    STATUS_MAP = {
        "NEW": OrderStatus.SUBMITTED,
        "PARTIALLY_FILLED": OrderStatus.PARTIALLY_FILLED,
        "FILLED": OrderStatus.FILLED,
        "CANCELED": OrderStatus.CANCELLED,
        "EXPIRED": OrderStatus.CANCELLED,
        "REJECTED": OrderStatus.FAILED,
    }
    AUTH_ERROR_CODES = (
        "AUTH_001",
        "AUTH_002",
        "AUTH_003",
        "AUTH_004",
        "AUTH_101",
        "AUTH_102",
        "AUTH_103",
        "AUTH_104",
        "AUTH_105",
        "AUTH_106",
    )

    @staticmethod
    def _envelope_error(data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict) and str(data.get("rc", 0)) != "0":
            return str(data.get("mc", data["rc"])), str(data.get("ma") or data.get("mc") or "")
        return None

    def business_error(self, data: Any) -> Optional[Tuple[str, str]]:
        return self._envelope_error(data) or super().business_error(data)

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        return self._envelope_error(data)

    @staticmethod
    def _result(data: Any) -> Any:
        return (data or {}).get("result") if isinstance(data, dict) else None

    async def _place(self, payload: dict, credentials: Credentials, operation: str) -> OrderSubmission:
        response = await self.request("POST", "/v4/order", credentials, body=payload, operation=operation)
        result = self._result(response.data) or {}
        return self.submission(response, order_id=result.get("orderId"), status=OrderStatus.SUBMITTED)

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "symbol": self.normalize_pair(pair),
            "side": "BUY",
            "type": "MARKET",
            "bizType": "SPOT",
            "quoteQty": format_notional(notional, pair),
        }
        return await self._place(payload, credentials, "place_market_buy")

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "symbol": self.normalize_pair(pair),
            "side": "SELL",
            "type": "MARKET",
            "bizType": "SPOT",
            "quantity": format_quantity(quantity),
        }
        return await self._place(payload, credentials, "place_market_sell")

    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        response = await self.request(
            "GET", "/v4/order", credentials, query={"orderId": order_id}, operation="get_order_status"
        )
        result: Dict[str, Any] = self._result(response.data) or {}
        quantity = to_decimal(result.get("executedQty"))
        price = to_decimal(result.get("avgPrice"))
        value = to_decimal(first_present(result, "executedQuoteQty"))
        if value is None and price is not None and quantity is not None:
            value = price * quantity
        return OrderStatusDetail(
            order_id=str(result.get("orderId") or order_id),
            status=self.map_status(result.get("state")),
            raw_status=result.get("state"),
            pair=result.get("symbol") or pair,
            side=self.side_from(result.get("side")),
            executed_quantity=quantity,
            executed_price=price,
            executed_value=value,
            fee=to_decimal(result.get("fee")),
            raw=result,
        )

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        response = await self.request("GET", "/v4/balances", credentials, operation="get_balances")
        return self.balance_entries(
            (self._result(response.data) or {}).get("assets") or [],
            currency_keys=("currency",),
            available_keys=("availableAmount",),
            reserved_keys=("frozenAmount",),
            total_keys=("totalAmount",),
        )

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request(
            "GET", "/v4/public/ticker/price", query={"symbol": symbol}, operation="fetch_current_price"
        )
        rows = self._result(response.data) or []
        price = to_decimal(first_present(rows[0], "p")) if rows else None
        if not price:
            raise UnknownResponseShape(
                f"XT ticker for {symbol} has no price",
                field_name="p",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price
