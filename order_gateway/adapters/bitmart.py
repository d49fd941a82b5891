"""
Order Gateway - BitMart Adapter.

============================================================
PURPOSE
============================================================
BitMart spot market orders.

NOTES:
- Requires the API memo; it is part of the signed text
- Market buys are sized in base currency from the last price
- code != 1000 is an error; fills are trusted

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from ..confirmation import TrustInstantPolicy
from ..errors import UnknownResponseShape
from ..types import (
    BalanceSnapshot,
    Credentials,
    OrderStatus,
    OrderStatusDetail,
    OrderSubmission,
)
from .base import ExchangeAdapter, first_present, format_quantity, to_decimal


logger = logging.getLogger(__name__)


BITMART_SUCCESS_CODE = "1000"


class BitmartAdapter(ExchangeAdapter):
    """BitMart exchange adapter."""

    exchange_id = "bitmart"
    base_url = "https://api-cloud.bitmart.com"
    confirmation_policy = TrustInstantPolicy(taker_fee_rate=Decimal("0.0025"))

    STATUS_MAP = {
        "NEW": OrderStatus.SUBMITTED,
        "PARTIALLY_FILLED": OrderStatus.PARTIALLY_FILLED,
        "FILLED": OrderStatus.FILLED,
        "CANCELED": OrderStatus.CANCELLED,
        "PARTIALLY_CANCELED": OrderStatus.CANCELLED,
        "FAILED": OrderStatus.FAILED,
    }
    AUTH_ERROR_CODES = ("30002", "30003", "30004", "30005", "30006", "30007", "30010")

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict) and str(data.get("code", BITMART_SUCCESS_CODE)) != BITMART_SUCCESS_CODE:
            return str(data["code"]), str(data.get("message", ""))
        return None

    async def _place(
        self,
        payload: dict,
        credentials: Credentials,
        operation: str,
        price: Optional[Decimal] = None,
    ) -> OrderSubmission:
        response = await self.request("POST", "/spot/v2/submit_order", credentials, body=payload, operation=operation)
        data = (response.data or {}).get("data") or {}
        return self.submission(
            response,
            order_id=data.get("order_id"),
            status=OrderStatus.SUBMITTED,
            price=price,
            quantity=payload["size"] if price is not None else None,
        )

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        price = await self.fetch_current_price(pair)
        payload = {
            "symbol": self.normalize_pair(pair),
            "side": "buy",
            "type": "market",
            "size": format_quantity(notional / price),
        }
        return await self._place(payload, credentials, "place_market_buy", price=price)

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "symbol": self.normalize_pair(pair),
            "side": "sell",
            "type": "market",
            "size": format_quantity(quantity),
        }
        return await self._place(payload, credentials, "place_market_sell")

    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        response = await self.request(
            "POST",
            "/spot/v4/query/order",
            credentials,
            body={"orderId": order_id},
            operation="get_order_status",
        )
        data: Dict[str, Any] = (response.data or {}).get("data") or {}
        return OrderStatusDetail(
            order_id=str(data.get("orderId") or order_id),
            status=self.map_status(data.get("state")),
            raw_status=data.get("state"),
            pair=data.get("symbol") or pair,
            side=self.side_from(data.get("side")),
            executed_quantity=to_decimal(data.get("filledSize")),
            executed_price=to_decimal(data.get("priceAvg")),
            executed_value=to_decimal(data.get("filledNotional")),
            raw=data,
        )

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        response = await self.request("GET", "/spot/v1/wallet", credentials, operation="get_balances")
        return self.balance_entries(
            ((response.data or {}).get("data") or {}).get("wallet") or [],
            currency_keys=("id", "currency"),
            available_keys=("available",),
            reserved_keys=("frozen",),
        )

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request(
            "GET", "/spot/v1/ticker", query={"symbol": symbol}, operation="fetch_current_price"
        )
        data = (response.data or {}).get("data") or {}
        tickers = data.get("tickers") or []
        if tickers:
            data = tickers[0]
        price = to_decimal(first_present(data, "last_price"))
        if not price:
            raise UnknownResponseShape(
                f"BitMart ticker for {symbol} has no last_price",
                field_name="last_price",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price
