"""
Order Gateway - Kraken Adapter.

============================================================
PURPOSE
============================================================
Kraken spot market orders.

NOTES:
- Private endpoints are form-encoded POSTs carrying a microsecond nonce
- Errors arrive as a non-empty "error" list, usually with HTTP 200
- Market buys use oflags=viqc so volume is in quote currency
- AddOrder only returns the txid; fills are confirmed by polling

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Optional, Tuple

from ..errors import UnknownResponseShape
from ..types import (
    BalanceEntry,
    BalanceSnapshot,
    Credentials,
    OrderStatus,
    OrderStatusDetail,
    OrderSubmission,
)
from .base import ExchangeAdapter, format_notional, format_quantity, to_decimal


logger = logging.getLogger(__name__)


class KrakenAdapter(ExchangeAdapter):
    """Kraken exchange adapter."""

    exchange_id = "kraken"
    base_url = "https://api.kraken.com"

    STATUS_MAP = {
        "PENDING": OrderStatus.SUBMITTED,
        "OPEN": OrderStatus.SUBMITTED,
        "CLOSED": OrderStatus.FILLED,
        "CANCELED": OrderStatus.CANCELLED,
        "EXPIRED": OrderStatus.CANCELLED,
    }
    AUTH_ERROR_CODES = (
        "EAPI:Invalid key",
        "EAPI:Invalid signature",
        "EAPI:Invalid nonce",
        "EGeneral:Permission denied",
    )

    # --------------------------------------------------------
    # ENVELOPE
    # --------------------------------------------------------

    @staticmethod
    def _errors(data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict) and data.get("error"):
            errors = [str(e) for e in data["error"]]
            return errors[0], ", ".join(errors)
        return None

    def business_error(self, data: Any) -> Optional[Tuple[str, str]]:
        return self._errors(data)

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        return self._errors(data)

    async def _private(self, path: str, body: dict, credentials: Credentials, operation: str) -> Any:
        response = await self.request(
            "POST",
            path,
            credentials,
            body=body,
            body_format="form",
            timestamp_field="nonce",
            timestamp_in="body",
            operation=operation,
        )
        return response, (response.data or {}).get("result")

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def _add_order(self, body: dict, credentials: Credentials, operation: str) -> OrderSubmission:
        response, result = await self._private("/0/private/AddOrder", body, credentials, operation)
        txids = (result or {}).get("txid") or []
        return self.submission(
            response,
            order_id=txids[0] if txids else None,
            status=OrderStatus.SUBMITTED,
        )

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        body = {
            "ordertype": "market",
            "type": "buy",
            "volume": format_notional(notional, pair),
            "pair": self.normalize_pair(pair),
            "oflags": "viqc",
        }
        return await self._add_order(body, credentials, "place_market_buy")

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        body = {
            "ordertype": "market",
            "type": "sell",
            "volume": format_quantity(quantity),
            "pair": self.normalize_pair(pair),
        }
        return await self._add_order(body, credentials, "place_market_sell")

    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        _, result = await self._private(
            "/0/private/QueryOrders", {"txid": order_id}, credentials, "get_order_status"
        )
        order = (result or {}).get(order_id)
        if order is None:
            raise UnknownResponseShape(
                f"Kraken QueryOrders has no entry for {order_id}",
                field_name="result",
                exchange_id=self.exchange_id,
            )
        descr = order.get("descr") or {}
        quantity = to_decimal(order.get("vol_exec"))
        return OrderStatusDetail(
            order_id=order_id,
            status=self.map_status(order.get("status")),
            raw_status=order.get("status"),
            pair=descr.get("pair") or pair,
            side=self.side_from(descr.get("type")),
            executed_quantity=quantity,
            executed_price=to_decimal(order.get("price")) or None,
            executed_value=to_decimal(order.get("cost")),
            fee=to_decimal(order.get("fee")),
            reason=order.get("reason"),
            raw=order,
        )

    # --------------------------------------------------------
    # ACCOUNT / MARKET DATA
    # --------------------------------------------------------

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        _, result = await self._private("/0/private/Balance", {}, credentials, "get_balances")
        entries = [
            BalanceEntry.normalized(asset.upper(), to_decimal(amount) or Decimal("0"))
            for asset, amount in (result or {}).items()
        ]
        return BalanceSnapshot(exchange_id=self.exchange_id, entries=entries)

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request(
            "GET", "/0/public/Ticker", query={"pair": symbol}, operation="fetch_current_price"
        )
        result = (response.data or {}).get("result") or {}
        for ticker in result.values():
            last = ticker.get("c") or []
            price = to_decimal(last[0]) if last else None
            if price:
                return price
        raise UnknownResponseShape(
            f"Kraken ticker for {symbol} has no last trade",
            field_name="c",
            exchange_id=self.exchange_id,
            pair=pair,
        )
