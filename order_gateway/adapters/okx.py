"""
Order Gateway - OKX Adapter.

============================================================
PURPOSE
============================================================
OKX v5 spot (cash) market orders.

NOTES:
- Requires a passphrase
- code != "0" is an error; each data row also carries sCode/sMsg
- Market buys set tgtCcy=quote_ccy so sz is the notional

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
from .base import ExchangeAdapter, format_notional, format_quantity, to_decimal


logger = logging.getLogger(__name__)


class OkxAdapter(ExchangeAdapter):
    """OKX exchange adapter."""

    exchange_id = "okx"
    base_url = "https://www.okx.com"

    STATUS_MAP = {
        "LIVE": OrderStatus.SUBMITTED,
        "PARTIALLY_FILLED": OrderStatus.PARTIALLY_FILLED,
        "FILLED": OrderStatus.FILLED,
        "CANCELED": OrderStatus.CANCELLED,
        "MMP_CANCELED": OrderStatus.CANCELLED,
    }
    AUTH_ERROR_CODES = ("50100", "50101", "50103", "50104", "50105", "50111", "50113")
    requires_pair_for_status = True

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        if not isinstance(data, dict):
            return None
        rows = data.get("data") or []
        row = rows[0] if rows and isinstance(rows[0], dict) else {}
        if row.get("sCode") not in (None, "", "0"):
            return str(row["sCode"]), str(row.get("sMsg", ""))
        if str(data.get("code", "0")) != "0":
            return str(data["code"]), str(data.get("msg", ""))
        return None

    @staticmethod
    def _first_row(data: Any) -> Dict[str, Any]:
        rows = (data or {}).get("data") or []
        return rows[0] if rows else {}

    async def _place(self, payload: dict, credentials: Credentials, operation: str) -> OrderSubmission:
        response = await self.request("POST", "/api/v5/trade/order", credentials, body=payload, operation=operation)
        row = self._first_row(response.data)
        return self.submission(
            response,
            order_id=row.get("ordId"),
            status=OrderStatus.SUBMITTED,
            timestamp=row.get("ts"),
        )

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "instId": self.normalize_pair(pair),
            "tdMode": "cash",
            "side": "buy",
            "ordType": "market",
            "sz": format_notional(notional, pair),
            "tgtCcy": "quote_ccy",
        }
        return await self._place(payload, credentials, "place_market_buy")

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "instId": self.normalize_pair(pair),
            "tdMode": "cash",
            "side": "sell",
            "ordType": "market",
            "sz": format_quantity(quantity),
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
            "/api/v5/trade/order",
            credentials,
            query={"instId": self.normalize_pair(pair), "ordId": order_id},
            operation="get_order_status",
        )
        row = self._first_row(response.data)
        quantity = to_decimal(row.get("accFillSz"))
        price = to_decimal(row.get("avgPx"))
        fee = to_decimal(row.get("fee"))
        return OrderStatusDetail(
            order_id=str(row.get("ordId") or order_id),
            status=self.map_status(row.get("state")),
            raw_status=row.get("state"),
            pair=pair,
            side=self.side_from(row.get("side")),
            executed_quantity=quantity,
            executed_price=price,
            executed_value=price * quantity if price is not None and quantity is not None else None,
            fee=abs(fee) if fee is not None else None,
            raw=row,
        )

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        response = await self.request("GET", "/api/v5/account/balance", credentials, operation="get_balances")
        return self.balance_entries(
            self._first_row(response.data).get("details", []),
            currency_keys=("ccy",),
            available_keys=("availBal",),
            reserved_keys=("frozenBal",),
            total_keys=("cashBal",),
        )

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request(
            "GET", "/api/v5/market/ticker", query={"instId": symbol}, operation="fetch_current_price"
        )
        price = to_decimal(self._first_row(response.data).get("last"))
        if not price:
            raise UnknownResponseShape(
                f"OKX ticker for {symbol} has no last price",
                field_name="last",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price
