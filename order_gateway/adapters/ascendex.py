"""
Order Gateway - AscendEX Adapter.

============================================================
PURPOSE
============================================================
AscendEX cash (spot) market orders.

NOTES:
- Private paths are prefixed with the account group, resolved once
  per API key via /api/pro/v1/info
- Signature covers timestamp + "+" + the full request path
- code != 0 is an error

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from ..errors import UnknownResponseShape
from ..types import (
    BalanceEntry,
    BalanceSnapshot,
    Credentials,
    OrderStatus,
    OrderStatusDetail,
    OrderSubmission,
)
from .base import ExchangeAdapter, first_present, format_notional, format_quantity, require_field, to_decimal


logger = logging.getLogger(__name__)


class AscendexAdapter(ExchangeAdapter):
    """AscendEX exchange adapter."""

    exchange_id = "ascendex"
    base_url = "https://ascendex.com"

    STATUS_MAP = {
        "PENDINGNEW": OrderStatus.SUBMITTED,
        "NEW": OrderStatus.SUBMITTED,
        "ACK": OrderStatus.SUBMITTED,
        "PARTIALLYFILLED": OrderStatus.PARTIALLY_FILLED,
        "FILLED": OrderStatus.FILLED,
        "CANCELED": OrderStatus.CANCELLED,
        "REJECTED": OrderStatus.FAILED,
    }
    AUTH_ERROR_CODES = ("100005", "200001", "200002", "200003", "200004", "200005")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._account_groups: Dict[str, Any] = {}

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict) and str(data.get("code", 0)) != "0":
            return str(data["code"]), str(data.get("message", ""))
        return None

    async def account_group(self, credentials: Credentials) -> Any:
        """Account group for the API key, cached after the first lookup."""
        group = self._account_groups.get(credentials.api_key)
        if group is None:
            response = await self.request("GET", "/api/pro/v1/info", credentials, operation="account_group")
            group = require_field(
                (response.data or {}).get("data"),
                "accountGroup",
                exchange_id=self.exchange_id,
                operation="account_group",
            )
            self._account_groups[credentials.api_key] = group
            self.log.info(f"Resolved account group {group}")
        return group

    async def _place(self, payload: dict, credentials: Credentials, operation: str) -> OrderSubmission:
        group = await self.account_group(credentials)
        response = await self.request(
            "POST",
            f"/{group}/api/pro/v1/cash/order",
            credentials,
            body=payload,
            timestamp_field="time",
            timestamp_in="body",
            operation=operation,
        )
        data = (response.data or {}).get("data") or {}
        info = data.get("info") or {}
        return self.submission(
            response,
            order_id=first_present(info, "orderId") or first_present(data, "orderId"),
            status=OrderStatus.SUBMITTED,
        )

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "symbol": self.normalize_pair(pair),
            "orderQty": format_notional(notional, pair),
            "orderType": "market",
            "side": "buy",
            "respInst": "ACCEPT",
        }
        return await self._place(payload, credentials, "place_market_buy")

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "symbol": self.normalize_pair(pair),
            "orderQty": format_quantity(quantity),
            "orderType": "market",
            "side": "sell",
            "respInst": "ACCEPT",
        }
        return await self._place(payload, credentials, "place_market_sell")

    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        group = await self.account_group(credentials)
        response = await self.request(
            "GET",
            f"/{group}/api/pro/v1/cash/order/status",
            credentials,
            query={"orderId": order_id},
            operation="get_order_status",
        )
        data = (response.data or {}).get("data") or {}
        quantity = to_decimal(data.get("cumFilledQty"))
        price = to_decimal(data.get("avgPx"))
        return OrderStatusDetail(
            order_id=str(data.get("orderId") or order_id),
            status=self.map_status(data.get("status")),
            raw_status=data.get("status"),
            pair=data.get("symbol") or pair,
            side=self.side_from(data.get("side")),
            executed_quantity=quantity,
            executed_price=price,
            executed_value=price * quantity if price is not None and quantity is not None else None,
            fee=to_decimal(data.get("cumFee")),
            reason=data.get("errorCode") or None,
            raw=data,
        )

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        group = await self.account_group(credentials)
        response = await self.request(
            "GET", f"/{group}/api/pro/v1/cash/balance", credentials, operation="get_balances"
        )
        entries = []
        for row in (response.data or {}).get("data") or []:
            available = to_decimal(row.get("availableBalance")) or Decimal("0")
            total = to_decimal(row.get("totalBalance")) or available
            entries.append(BalanceEntry.normalized(row["asset"].upper(), available, total - available, total))
        return BalanceSnapshot(exchange_id=self.exchange_id, entries=entries)

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request(
            "GET", "/api/pro/v1/spot/ticker", query={"symbol": symbol}, operation="fetch_current_price"
        )
        price = to_decimal(first_present((response.data or {}).get("data"), "close"))
        if not price:
            raise UnknownResponseShape(
                f"AscendEX ticker for {symbol} has no close",
                field_name="close",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price
