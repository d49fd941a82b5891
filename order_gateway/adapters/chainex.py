"""
Order Gateway - ChainEX Adapter.

============================================================
PURPOSE
============================================================
ChainEX market orders, authenticated by API key header only.

Fills are trusted; the submission response already carries the
executed amounts when ChainEX reports them.

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Optional, Tuple

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


class ChainexAdapter(ExchangeAdapter):
    """ChainEX exchange adapter."""

    exchange_id = "chainex"
    base_url = "https://api.chainex.io"
    confirmation_policy = TrustInstantPolicy(taker_fee_rate=Decimal("0.002"))

    STATUS_MAP = {
        "OPEN": OrderStatus.SUBMITTED,
        "PENDING": OrderStatus.SUBMITTED,
        "PARTIAL": OrderStatus.PARTIALLY_FILLED,
        "COMPLETE": OrderStatus.FILLED,
        "COMPLETED": OrderStatus.FILLED,
        "FILLED": OrderStatus.FILLED,
        "CANCELLED": OrderStatus.CANCELLED,
        "CANCELED": OrderStatus.CANCELLED,
        "FAILED": OrderStatus.FAILED,
    }

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict) and data.get("status") == "error":
            return str(data.get("code", "")), str(data.get("message", ""))
        return None

    @staticmethod
    def _payload(data: Any) -> dict:
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            return data["data"]
        return data or {}

    async def _place(self, payload: dict, credentials: Credentials, operation: str) -> OrderSubmission:
        response = await self.request("POST", "/trading/order", credentials, body=payload, operation=operation)
        data = self._payload(response.data)
        raw_status = first_present(data, "status")
        return self.submission(
            response,
            order_id=first_present(data, "id", "order_id"),
            status=self.map_status(raw_status) if raw_status else OrderStatus.FILLED,
            price=first_present(data, "average_price", "price"),
            quantity=first_present(data, "filled_amount", "amount"),
            value=first_present(data, "filled_value"),
            fee=first_present(data, "fee"),
            timestamp=first_present(data, "created_at"),
        )

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "type": "market",
            "side": "buy",
            "pair": self.normalize_pair(pair),
            "quote_amount": format_notional(notional, pair),
        }
        return await self._place(payload, credentials, "place_market_buy")

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "type": "market",
            "side": "sell",
            "pair": self.normalize_pair(pair),
            "base_amount": format_quantity(quantity),
        }
        return await self._place(payload, credentials, "place_market_sell")

    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        response = await self.request("GET", f"/trading/order/{order_id}", credentials, operation="get_order_status")
        data = self._payload(response.data)
        raw_status = first_present(data, "status")
        return OrderStatusDetail(
            order_id=str(first_present(data, "id", "order_id") or order_id),
            status=self.map_status(raw_status),
            raw_status=raw_status,
            pair=first_present(data, "pair") or pair,
            side=self.side_from(data.get("side")),
            executed_quantity=to_decimal(first_present(data, "filled_amount", "amount")),
            executed_price=to_decimal(first_present(data, "average_price", "price")),
            executed_value=to_decimal(first_present(data, "filled_value")),
            fee=to_decimal(first_present(data, "fee")),
            raw=data,
        )

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        response = await self.request("GET", "/wallet/balances", credentials, operation="get_balances")
        rows = response.data.get("data", []) if isinstance(response.data, dict) else response.data
        return self.balance_entries(
            rows or [],
            currency_keys=("code", "currency"),
            available_keys=("balance_available", "available"),
            reserved_keys=("balance_held", "held", "reserved"),
            total_keys=("balance", "total"),
        )

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request("GET", f"/market/summary/{symbol}", operation="fetch_current_price")
        price = to_decimal(first_present(self._payload(response.data), "last_price", "price"))
        if not price:
            raise UnknownResponseShape(
                f"ChainEX summary for {symbol} has no price",
                field_name="last_price",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price
