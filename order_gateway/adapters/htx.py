"""
Order Gateway - HTX (Huobi) Adapter.

============================================================
PURPOSE
============================================================
HTX spot market orders.

NOTES:
- Signature version 2 travels in the query string (AccessKeyId,
  Timestamp, Signature); the host is part of the signed text
- Orders need the spot account id, looked up once per API key
- status != "ok" is an error, with err-code / err-msg

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


class HtxAdapter(ExchangeAdapter):
    """HTX exchange adapter."""

    exchange_id = "htx"
    base_url = "https://api.huobi.pro"

    STATUS_MAP = {
        "CREATED": OrderStatus.SUBMITTED,
        "SUBMITTED": OrderStatus.SUBMITTED,
        "CANCELING": OrderStatus.SUBMITTED,
        "PARTIAL-FILLED": OrderStatus.PARTIALLY_FILLED,
        "FILLED": OrderStatus.FILLED,
        "PARTIAL-CANCELED": OrderStatus.CANCELLED,
        "CANCELED": OrderStatus.CANCELLED,
    }
    AUTH_ERROR_CODES = ("api-signature-not-valid", "login-required", "invalid-access-key")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._account_ids: Dict[str, Any] = {}

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict) and data.get("status") not in (None, "ok"):
            return str(data.get("err-code", data["status"])), str(data.get("err-msg", ""))
        return None

    async def account_id(self, credentials: Credentials) -> Any:
        """Spot account id for the API key, cached after the first lookup."""
        account_id = self._account_ids.get(credentials.api_key)
        if account_id is None:
            response = await self.request("GET", "/v1/account/accounts", credentials, operation="account_id")
            spot = [a for a in (response.data or {}).get("data") or [] if a.get("type") == "spot"]
            if not spot:
                raise UnknownResponseShape(
                    "HTX account list has no spot account",
                    field_name="data[type=spot]",
                    exchange_id=self.exchange_id,
                )
            account_id = spot[0]["id"]
            self._account_ids[credentials.api_key] = account_id
            self.log.info(f"Resolved spot account {account_id}")
        return account_id

    async def _place(self, order_type: str, pair: str, amount: str, credentials: Credentials, operation: str) -> OrderSubmission:
        payload = {
            "account-id": str(await self.account_id(credentials)),
            "symbol": self.normalize_pair(pair),
            "type": order_type,
            "amount": amount,
        }
        response = await self.request(
            "POST", "/v1/order/orders/place", credentials, body=payload, operation=operation
        )
        return self.submission(response, order_id=(response.data or {}).get("data"), status=OrderStatus.SUBMITTED)

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        return await self._place("buy-market", pair, format_notional(notional, pair), credentials, "place_market_buy")

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        return await self._place("sell-market", pair, format_quantity(quantity), credentials, "place_market_sell")

    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        response = await self.request(
            "GET", f"/v1/order/orders/{order_id}", credentials, operation="get_order_status"
        )
        data = (response.data or {}).get("data") or {}
        quantity = to_decimal(first_present(data, "field-amount", "filled-amount"))
        value = to_decimal(first_present(data, "field-cash-amount", "filled-cash-amount"))
        return OrderStatusDetail(
            order_id=str(data.get("id") or order_id),
            status=self.map_status(data.get("state")),
            raw_status=data.get("state"),
            pair=data.get("symbol") or pair,
            side=self.side_from(data.get("type")),
            executed_quantity=quantity,
            executed_price=value / quantity if quantity and value is not None else None,
            executed_value=value,
            fee=to_decimal(first_present(data, "field-fees", "filled-fees")),
            raw=data,
        )

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        account_id = await self.account_id(credentials)
        response = await self.request(
            "GET", f"/v1/account/accounts/{account_id}/balance", credentials, operation="get_balances"
        )
        available: Dict[str, Decimal] = {}
        frozen: Dict[str, Decimal] = {}
        for row in ((response.data or {}).get("data") or {}).get("list") or []:
            currency = str(row.get("currency", "")).upper()
            amount = to_decimal(row.get("balance")) or Decimal("0")
            bucket = frozen if row.get("type") == "frozen" else available
            bucket[currency] = bucket.get(currency, Decimal("0")) + amount
        entries = [
            BalanceEntry.normalized(currency, available.get(currency, Decimal("0")), frozen.get(currency, Decimal("0")))
            for currency in dict.fromkeys(list(available) + list(frozen))
            if currency
        ]
        return BalanceSnapshot(exchange_id=self.exchange_id, entries=entries)

    async def fetch_current_price(self, pair: str) -> Decimal:
        symbol = self.normalize_pair(pair)
        response = await self.request(
            "GET", "/market/detail/merged", query={"symbol": symbol}, operation="fetch_current_price"
        )
        price = to_decimal(first_present((response.data or {}).get("tick"), "close"))
        if not price:
            raise UnknownResponseShape(
                f"HTX ticker for {symbol} has no close",
                field_name="tick.close",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price
