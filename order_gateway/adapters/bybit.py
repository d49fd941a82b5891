"""
Order Gateway - Bybit Adapter.

============================================================
PURPOSE
============================================================
Bybit v5 spot market orders.

NOTES:
- retCode != 0 is an error even with HTTP 200
- Market buys use marketUnit=quoteCoin so qty is the notional
- Order creation returns only the orderId; fills are polled

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
from .base import ExchangeAdapter, first_present, format_notional, format_quantity, to_decimal


logger = logging.getLogger(__name__)


class BybitAdapter(ExchangeAdapter):
    """Bybit exchange adapter."""

    exchange_id = "bybit"
    base_url = "https://api.bybit.com"

    STATUS_MAP = {
        "CREATED": OrderStatus.SUBMITTED,
        "NEW": OrderStatus.SUBMITTED,
        "UNTRIGGERED": OrderStatus.SUBMITTED,
        "PARTIALLYFILLED": OrderStatus.PARTIALLY_FILLED,
        "FILLED": OrderStatus.FILLED,
        "CANCELLED": OrderStatus.CANCELLED,
        "PARTIALLYFILLEDCANCELED": OrderStatus.CANCELLED,
        "DEACTIVATED": OrderStatus.CANCELLED,
        "REJECTED": OrderStatus.FAILED,
    }
    AUTH_ERROR_CODES = ("10003", "10004", "10005", "10007", "33004")

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict) and str(data.get("retCode", 0)) != "0":
            return str(data["retCode"]), str(data.get("retMsg", ""))
        return None

    @staticmethod
    def _first_row(data: Any) -> Dict[str, Any]:
        rows = ((data or {}).get("result") or {}).get("list") or []
        return rows[0] if rows else {}

    async def _create(self, payload: dict, credentials: Credentials, operation: str) -> OrderSubmission:
        response = await self.request("POST", "/v5/order/create", credentials, body=payload, operation=operation)
        result = (response.data or {}).get("result") or {}
        return self.submission(response, order_id=result.get("orderId"), status=OrderStatus.SUBMITTED)

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "category": "spot",
            "symbol": self.normalize_pair(pair),
            "side": "Buy",
            "orderType": "Market",
            "marketUnit": "quoteCoin",
            "qty": format_notional(notional, pair),
        }
        return await self._create(payload, credentials, "place_market_buy")

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "category": "spot",
            "symbol": self.normalize_pair(pair),
            "side": "Sell",
            "orderType": "Market",
            "qty": format_quantity(quantity),
        }
        return await self._create(payload, credentials, "place_market_sell")

    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        response = await self.request(
            "GET",
            "/v5/order/realtime",
            credentials,
            query={"category": "spot", "orderId": order_id},
            operation="get_order_status",
        )
        row = self._first_row(response.data)
        if not row:
            raise UnknownResponseShape(
                f"Bybit has no order {order_id}",
                field_name="result.list",
                exchange_id=self.exchange_id,
            )
        raw_status = row.get("orderStatus")
        return OrderStatusDetail(
            order_id=str(row.get("orderId") or order_id),
            status=self.map_status(raw_status),
            raw_status=raw_status,
            pair=row.get("symbol") or pair,
            side=self.side_from(row.get("side")),
            executed_quantity=to_decimal(row.get("cumExecQty")),
            executed_price=to_decimal(row.get("avgPrice")) or None,
            executed_value=to_decimal(row.get("cumExecValue")),
            fee=to_decimal(row.get("cumExecFee")),
            reason=row.get("rejectReason") if row.get("rejectReason") not in (None, "", "EC_NoError") else None,
            raw=row,
        )

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        response = await self.request(
            "GET",
            "/v5/account/wallet-balance",
            credentials,
            query={"accountType": "UNIFIED"},
            operation="get_balances",
        )
        entries = []
        for coin in self._first_row(response.data).get("coin", []):
            total = to_decimal(coin.get("walletBalance")) or Decimal("0")
            locked = to_decimal(coin.get("locked")) or Decimal("0")
            entries.append(BalanceEntry.normalized(coin["coin"].upper(), total - locked, locked, total))
        return BalanceSnapshot(exchange_id=self.exchange_id, entries=entries)

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request(
            "GET",
            "/v5/market/tickers",
            query={"category": "spot", "symbol": symbol},
            operation="fetch_current_price",
        )
        price = to_decimal(first_present(self._first_row(response.data), "lastPrice"))
        if not price:
            raise UnknownResponseShape(
                f"Bybit ticker for {symbol} has no lastPrice",
                field_name="lastPrice",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price
