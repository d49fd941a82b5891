"""
Order Gateway - Luno Adapter.

============================================================
PURPOSE
============================================================
Luno market orders over basic auth.

Luno names Bitcoin XBT. Buys send counter_volume, sells base_volume.
The executed price is counter / base.

============================================================
"""

import logging
from decimal import Decimal
from typing import Optional

from ..errors import UnknownResponseShape
from ..types import (
    BalanceSnapshot,
    BalanceEntry,
    Credentials,
    OrderStatus,
    OrderStatusDetail,
    OrderSubmission,
)
from .base import ExchangeAdapter, first_present, format_notional, format_quantity, to_decimal


logger = logging.getLogger(__name__)


class LunoAdapter(ExchangeAdapter):
    """Luno exchange adapter."""

    exchange_id = "luno"
    base_url = "https://api.luno.com"

    STATUS_MAP = {
        "AWAITING": OrderStatus.SUBMITTED,
        "PENDING": OrderStatus.SUBMITTED,
        "COMPLETE": OrderStatus.FILLED,
    }

    async def _place(self, payload: dict, credentials: Credentials, operation: str) -> OrderSubmission:
        response = await self.request("POST", "/api/1/marketorder", credentials, body=payload, operation=operation)
        data = response.data or {}
        base = to_decimal(data.get("base"))
        counter = to_decimal(data.get("counter"))
        price = counter / base if base and counter is not None else None
        state = first_present(data, "state")
        if state:
            status = self.map_status(state)
        else:
            status = OrderStatus.FILLED if base else OrderStatus.SUBMITTED
        return self.submission(
            response,
            order_id=first_present(data, "order_id"),
            status=status,
            price=price,
            quantity=base,
            value=counter,
            fee=first_present(data, "fee_counter"),
        )

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "pair": self.normalize_pair(pair),
            "type": "BUY",
            "counter_volume": format_notional(notional, pair),
        }
        return await self._place(payload, credentials, "place_market_buy")

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        payload = {
            "pair": self.normalize_pair(pair),
            "type": "SELL",
            "base_volume": format_quantity(quantity),
        }
        return await self._place(payload, credentials, "place_market_sell")

    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        response = await self.request("GET", f"/api/1/orders/{order_id}", credentials, operation="get_order_status")
        data = response.data or {}
        base = to_decimal(data.get("base"))
        counter = to_decimal(data.get("counter"))
        return OrderStatusDetail(
            order_id=str(data.get("order_id") or order_id),
            status=self.map_status(data.get("state")),
            raw_status=data.get("state"),
            pair=data.get("pair") or pair,
            side=self.side_from({"BID": "buy", "ASK": "sell"}.get(data.get("type"), data.get("type"))),
            executed_quantity=base,
            executed_price=counter / base if base and counter is not None else None,
            executed_value=counter,
            fee=to_decimal(data.get("fee_counter")),
            raw=data,
        )

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        response = await self.request("GET", "/api/1/balance", credentials, operation="get_balances")
        entries = []
        for row in (response.data or {}).get("balance", []):
            balance = to_decimal(row.get("balance")) or Decimal("0")
            reserved = to_decimal(row.get("reserved")) or Decimal("0")
            entries.append(BalanceEntry.normalized(row["asset"].upper(), balance - reserved, reserved, balance))
        return BalanceSnapshot(exchange_id=self.exchange_id, entries=entries)

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request("GET", "/api/1/ticker", query={"pair": symbol}, operation="fetch_current_price")
        price = to_decimal(first_present(response.data, "last_trade", "bid"))
        if not price:
            raise UnknownResponseShape(
                f"Luno ticker for {symbol} has no price",
                field_name="last_trade",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price
