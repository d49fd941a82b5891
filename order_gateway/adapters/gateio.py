"""
Order Gateway - Gate.io Adapter.

============================================================
PURPOSE
============================================================
Gate.io v4 spot market orders (IOC).

Errors come back as {label, message} with a non-2xx status.

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


class GateioAdapter(ExchangeAdapter):
    """Gate.io exchange adapter."""

    exchange_id = "gateio"
    base_url = "https://api.gateio.ws"

    STATUS_MAP = {
        "OPEN": OrderStatus.SUBMITTED,
        "CLOSED": OrderStatus.FILLED,
        "CANCELLED": OrderStatus.CANCELLED,
    }
    AUTH_ERROR_CODES = ("INVALID_KEY", "INVALID_SIGNATURE", "FORBIDDEN", "MISSING_REQUIRED_HEADER")
    requires_pair_for_status = True

    def business_error(self, data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict) and (data.get("label") or data.get("message")):
            return str(data.get("label", "")), str(data.get("message", ""))
        return None

    def order_status(self, data: Dict[str, Any]) -> OrderStatus:
        # IOC orders that filled completely may close as "cancelled" with finish_as=filled
        if data.get("finish_as") == "filled":
            return OrderStatus.FILLED
        if data.get("finish_as") == "ioc":
            return OrderStatus.CANCELLED
        return self.map_status(data.get("status"))

    @staticmethod
    def _filled_quantity(data: Dict[str, Any]) -> Optional[Decimal]:
        filled = to_decimal(data.get("filled_amount"))
        if filled is not None:
            return filled
        amount = to_decimal(data.get("amount"))
        left = to_decimal(data.get("left"))
        if amount is not None and left is not None and data.get("side") == "sell":
            return amount - left
        return None

    async def _place(self, payload: dict, credentials: Credentials, operation: str) -> OrderSubmission:
        response = await self.request("POST", "/api/v4/spot/orders", credentials, body=payload, operation=operation)
        data = response.data or {}
        return self.submission(
            response,
            order_id=data.get("id"),
            status=self.order_status(data) if data.get("status") else OrderStatus.SUBMITTED,
            price=first_present(data, "avg_deal_price"),
            quantity=self._filled_quantity(data),
            value=first_present(data, "filled_total"),
            fee=first_present(data, "fee"),
            timestamp=first_present(data, "create_time_ms", "create_time"),
        )

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "currency_pair": self.normalize_pair(pair),
            "side": "buy",
            "type": "market",
            "amount": format_notional(notional, pair),
            "time_in_force": "ioc",
        }
        return await self._place(payload, credentials, "place_market_buy")

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "currency_pair": self.normalize_pair(pair),
            "side": "sell",
            "type": "market",
            "amount": format_quantity(quantity),
            "time_in_force": "ioc",
        }
        return await self._place(payload, credentials, "place_market_sell")

    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        pair = self.require_pair(pair, order_id)
        response = await self.request(
            "GET",
            f"/api/v4/spot/orders/{order_id}",
            credentials,
            query={"currency_pair": self.normalize_pair(pair)},
            operation="get_order_status",
        )
        data = response.data or {}
        return OrderStatusDetail(
            order_id=str(data.get("id") or order_id),
            status=self.order_status(data),
            raw_status=data.get("finish_as") or data.get("status"),
            pair=pair,
            side=self.side_from(data.get("side")),
            executed_quantity=self._filled_quantity(data),
            executed_price=to_decimal(data.get("avg_deal_price")),
            executed_value=to_decimal(data.get("filled_total")),
            fee=to_decimal(data.get("fee")),
            raw=data,
        )

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        response = await self.request("GET", "/api/v4/spot/accounts", credentials, operation="get_balances")
        return self.balance_entries(
            response.data if isinstance(response.data, list) else [],
            currency_keys=("currency",),
            available_keys=("available",),
            reserved_keys=("locked",),
        )

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request(
            "GET", "/api/v4/spot/tickers", query={"currency_pair": symbol}, operation="fetch_current_price"
        )
        rows = response.data if isinstance(response.data, list) else []
        price = to_decimal(first_present(rows[0], "last")) if rows else None
        if not price:
            raise UnknownResponseShape(
                f"Gate.io ticker for {symbol} has no last price",
                field_name="last",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price
