"""
Order Gateway - KuCoin Adapter.

============================================================
PURPOSE
============================================================
KuCoin spot market orders (API key version 2).

Success envelopes carry code "200000"; anything else is an error.
Buys are sized with funds (quote), sells with size (base).

============================================================
"""

import logging
import uuid
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
from .base import ExchangeAdapter, format_notional, format_quantity, to_decimal


logger = logging.getLogger(__name__)


KUCOIN_SUCCESS_CODE = "200000"


class KucoinAdapter(ExchangeAdapter):
    """KuCoin exchange adapter."""

    exchange_id = "kucoin"
    base_url = "https://api.kucoin.com"

    # KuCoin reports isActive/cancelExist flags; order_state() folds them into these
    STATUS_MAP = {
        "ACTIVE": OrderStatus.SUBMITTED,
        "DONE": OrderStatus.FILLED,
        "CANCELLED": OrderStatus.CANCELLED,
    }
    AUTH_ERROR_CODES = ("400001", "400002", "400003", "400004", "400005", "400006", "400007")

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict) and str(data.get("code", KUCOIN_SUCCESS_CODE)) != KUCOIN_SUCCESS_CODE:
            return str(data["code"]), str(data.get("msg", ""))
        return None

    @staticmethod
    def order_state(data: Dict[str, Any]) -> str:
        if data.get("isActive"):
            return "ACTIVE"
        filled = to_decimal(data.get("dealSize")) or Decimal("0")
        if data.get("cancelExist") and filled == 0:
            return "CANCELLED"
        return "DONE"

    async def _place(self, payload: dict, credentials: Credentials, operation: str) -> OrderSubmission:
        payload = {"clientOid": uuid.uuid4().hex, **payload}
        response = await self.request("POST", "/api/v1/orders", credentials, body=payload, operation=operation)
        data = (response.data or {}).get("data") or {}
        return self.submission(response, order_id=data.get("orderId"), status=OrderStatus.SUBMITTED)

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "side": "buy",
            "symbol": self.normalize_pair(pair),
            "type": "market",
            "funds": format_notional(notional, pair),
        }
        return await self._place(payload, credentials, "place_market_buy")

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "side": "sell",
            "symbol": self.normalize_pair(pair),
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
        response = await self.request("GET", f"/api/v1/orders/{order_id}", credentials, operation="get_order_status")
        data = (response.data or {}).get("data") or {}
        state = self.order_state(data)
        quantity = to_decimal(data.get("dealSize"))
        value = to_decimal(data.get("dealFunds"))
        return OrderStatusDetail(
            order_id=str(data.get("id") or order_id),
            status=self.map_status(state),
            raw_status=state,
            pair=data.get("symbol") or pair,
            side=self.side_from(data.get("side")),
            executed_quantity=quantity,
            executed_price=value / quantity if quantity and value is not None else None,
            executed_value=value,
            fee=to_decimal(data.get("fee")),
            raw=data,
        )

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        response = await self.request(
            "GET", "/api/v1/accounts", credentials, query={"type": "trade"}, operation="get_balances"
        )
        return self.balance_entries(
            (response.data or {}).get("data") or [],
            currency_keys=("currency",),
            available_keys=("available",),
            reserved_keys=("holds",),
            total_keys=("balance",),
        )

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request(
            "GET", "/api/v1/market/orderbook/level1", query={"symbol": symbol}, operation="fetch_current_price"
        )
        price = to_decimal(((response.data or {}).get("data") or {}).get("price"))
        if not price:
            raise UnknownResponseShape(
                f"KuCoin level1 for {symbol} has no price",
                field_name="price",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price
