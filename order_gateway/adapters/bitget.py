"""
Order Gateway - Bitget Adapter.

============================================================
PURPOSE
============================================================
Bitget spot v1 market orders.

NOTES:
- Requires a passphrase
- Symbols carry the _SPBL suffix
- Market buys are sized in base currency from the ticker close
- code != "00000" is an error; fills are trusted

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
from .base import ExchangeAdapter, first_present, format_quantity, to_decimal


logger = logging.getLogger(__name__)


BITGET_SUCCESS_CODE = "00000"


class BitgetAdapter(ExchangeAdapter):
    """Bitget exchange adapter."""

    exchange_id = "bitget"
    base_url = "https://api.bitget.com"
    confirmation_policy = TrustInstantPolicy(taker_fee_rate=Decimal("0.001"))

    STATUS_MAP = {
        "INIT": OrderStatus.SUBMITTED,
        "NEW": OrderStatus.SUBMITTED,
        "PARTIAL_FILL": OrderStatus.PARTIALLY_FILLED,
        "FULL_FILL": OrderStatus.FILLED,
        "CANCELLED": OrderStatus.CANCELLED,
    }
    AUTH_ERROR_CODES = ("40001", "40002", "40003", "40004", "40005", "40006", "40012", "40037")
    requires_pair_for_status = True

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict) and str(data.get("code", BITGET_SUCCESS_CODE)) != BITGET_SUCCESS_CODE:
            return str(data["code"]), str(data.get("msg", ""))
        return None

    async def _place(
        self,
        payload: dict,
        credentials: Credentials,
        operation: str,
        price: Optional[Decimal] = None,
    ) -> OrderSubmission:
        response = await self.request(
            "POST", "/api/spot/v1/trade/orders", credentials, body=payload, operation=operation
        )
        data = (response.data or {}).get("data") or {}
        return self.submission(
            response,
            order_id=data.get("orderId"),
            status=OrderStatus.SUBMITTED,
            price=price,
            quantity=first_present(data, "fillSize") or (payload["size"] if price is not None else None),
        )

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        price = await self.fetch_current_price(pair)
        payload = {
            "symbol": self.normalize_pair(pair),
            "side": "buy",
            "orderType": "market",
            "force": "gtc",
            "size": format_quantity(notional / price),
        }
        return await self._place(payload, credentials, "place_market_buy", price=price)

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "symbol": self.normalize_pair(pair),
            "side": "sell",
            "orderType": "market",
            "force": "gtc",
            "size": format_quantity(quantity),
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
            "POST",
            "/api/spot/v1/trade/orderInfo",
            credentials,
            body={"symbol": self.normalize_pair(pair), "orderId": order_id},
            operation="get_order_status",
        )
        rows = (response.data or {}).get("data") or []
        data = rows[0] if isinstance(rows, list) and rows else (rows if isinstance(rows, dict) else {})
        return OrderStatusDetail(
            order_id=str(data.get("orderId") or order_id),
            status=self.map_status(data.get("status")),
            raw_status=data.get("status"),
            pair=pair,
            side=self.side_from(data.get("side")),
            executed_quantity=to_decimal(data.get("fillQuantity")),
            executed_price=to_decimal(data.get("fillPrice")),
            executed_value=to_decimal(data.get("fillTotalAmount")),
            raw=data,
        )

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        response = await self.request("GET", "/api/spot/v1/account/assets", credentials, operation="get_balances")
        return self.balance_entries(
            (response.data or {}).get("data") or [],
            currency_keys=("coinName",),
            available_keys=("available",),
            reserved_keys=("frozen", "lock"),
        )

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request(
            "GET", "/api/spot/v1/market/ticker", query={"symbol": symbol}, operation="fetch_current_price"
        )
        price = to_decimal(first_present((response.data or {}).get("data"), "close"))
        if not price:
            raise UnknownResponseShape(
                f"Bitget ticker for {symbol} has no close",
                field_name="close",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price
