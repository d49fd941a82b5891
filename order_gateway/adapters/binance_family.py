"""
Order Gateway - Binance-Compatible Adapters.

============================================================
PURPOSE
============================================================
Binance spot and the backends that reuse its REST contract:
MEXC, Bitrue and BingX.

SHARED CONTRACT:
- Query-string HMAC-SHA256 signing, signature= appended
- POST {order_path}?symbol&side&type=MARKET&quoteOrderQty|quantity
- FULL responses carry fills; status defaults to FILLED
- IOC limit fallback when market orders are unavailable

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
    OrderSide,
    OrderStatus,
    OrderStatusDetail,
    OrderSubmission,
)
from ..transport import TransportResponse
from .base import (
    ExchangeAdapter,
    first_present,
    format_notional,
    format_quantity,
    require_field,
    to_decimal,
)


logger = logging.getLogger(__name__)


BINANCE_STATUS_MAP = {
    "NEW": OrderStatus.SUBMITTED,
    "PENDING_NEW": OrderStatus.SUBMITTED,
    "PENDING_CANCEL": OrderStatus.SUBMITTED,
    "PARTIALLY_FILLED": OrderStatus.PARTIALLY_FILLED,
    "FILLED": OrderStatus.FILLED,
    "CANCELED": OrderStatus.CANCELLED,
    "CANCELLED": OrderStatus.CANCELLED,
    "EXPIRED": OrderStatus.CANCELLED,
    "EXPIRED_IN_MATCH": OrderStatus.CANCELLED,
    "PARTIALLY_CANCELED": OrderStatus.CANCELLED,
    "REJECTED": OrderStatus.FAILED,
}


def average_fill_price(fills: Any) -> Optional[Decimal]:
    """
    Quantity-weighted fill price.

    Falls back to the first fill's price when fills carry no qty.
    """
    if not fills:
        return None
    total_qty = Decimal("0")
    total_value = Decimal("0")
    for fill in fills:
        price = to_decimal(fill.get("price"))
        qty = to_decimal(fill.get("qty"))
        if price is None or qty is None:
            continue
        total_qty += qty
        total_value += price * qty
    if total_qty > 0:
        return total_value / total_qty
    return to_decimal(fills[0].get("price"))


# ============================================================
# BINANCE
# ============================================================

class BinanceCompatibleAdapter(ExchangeAdapter):
    """
    Binance spot adapter; subclasses override paths and envelopes.
    """

    exchange_id = "binance"
    base_url = "https://api.binance.com"

    order_path = "/api/v3/order"
    status_path = "/api/v3/order"
    account_path = "/api/v3/account"
    ticker_path = "/api/v3/ticker/price"

    buy_sized_by_base = False
    """Convert the notional to a base quantity with the current price."""

    STATUS_MAP = BINANCE_STATUS_MAP
    AUTH_ERROR_CODES = ("-1022", "-2008", "-2014", "-2015")
    MARKET_UNAVAILABLE_HINTS = (
        "market orders are not supported",
        "order type not supported",
        "unsupported order combination",
        "market is closed",
    )
    supports_limit_fallback = True
    requires_pair_for_status = True

    # --------------------------------------------------------
    # ENVELOPE
    # --------------------------------------------------------

    def unwrap(self, data: Any) -> Any:
        """Payload inside the response envelope."""
        return data

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def _submit(self, params: Dict[str, Any], credentials: Credentials, operation: str) -> OrderSubmission:
        response = await self.request(
            "POST",
            self.order_path,
            credentials,
            query=params,
            timestamp_field="timestamp",
            operation=operation,
        )
        return self.map_order_response(response)

    def map_order_response(self, response: TransportResponse) -> OrderSubmission:
        data = self.unwrap(response.data) or {}
        fills = data.get("fills") or []
        raw_status = data.get("status")
        fee = None
        if fills:
            fee = sum((to_decimal(f.get("commission")) or Decimal("0") for f in fills), Decimal("0"))

        return self.submission(
            response,
            order_id=first_present(data, "orderId", "orderID", "id"),
            status=self.map_status(raw_status) if raw_status else OrderStatus.FILLED,
            price=average_fill_price(fills),
            quantity=first_present(data, "executedQty"),
            value=first_present(data, "cummulativeQuoteQty", "cumulativeQuoteQty"),
            fee=fee,
            timestamp=first_present(data, "transactTime", "transTime"),
        )

    async def place_market_buy(self, pair: str, notional: Decimal, credentials: Credentials) -> OrderSubmission:
        params = {
            "symbol": self.normalize_pair(pair),
            "side": "BUY",
            "type": "MARKET",
        }
        if self.buy_sized_by_base:
            price = await self.fetch_current_price(pair)
            params["quantity"] = format_quantity(notional / price)
        else:
            params["quoteOrderQty"] = format_notional(notional, pair)
        return await self._submit(params, credentials, "place_market_buy")

    async def place_market_sell(self, pair: str, quantity: Decimal, credentials: Credentials) -> OrderSubmission:
        params = {
            "symbol": self.normalize_pair(pair),
            "side": "SELL",
            "type": "MARKET",
            "quantity": format_quantity(quantity),
        }
        return await self._submit(params, credentials, "place_market_sell")

    async def place_limit_ioc(
        self,
        pair: str,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
        credentials: Credentials,
    ) -> OrderSubmission:
        params = {
            "symbol": self.normalize_pair(pair),
            "side": side.value,
            "type": "LIMIT",
            "timeInForce": "IOC",
            "quantity": format_quantity(quantity),
            "price": format_quantity(price),
        }
        return await self._submit(params, credentials, "place_limit_ioc")

    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        pair = self.require_pair(pair, order_id)
        response = await self.request(
            "GET",
            self.status_path,
            credentials,
            query={"symbol": self.normalize_pair(pair), "orderId": order_id},
            timestamp_field="timestamp",
            operation="get_order_status",
        )
        data = self.unwrap(response.data) or {}
        raw_status = first_present(data, "status")
        quantity = to_decimal(first_present(data, "executedQty"))
        value = to_decimal(first_present(data, "cummulativeQuoteQty", "cumulativeQuoteQty"))
        price = value / quantity if quantity and value is not None else None
        return OrderStatusDetail(
            order_id=str(first_present(data, "orderId") or order_id),
            status=self.map_status(raw_status),
            raw_status=raw_status,
            pair=pair,
            side=self.side_from(data.get("side")),
            executed_quantity=quantity,
            executed_price=price,
            executed_value=value,
            raw=data,
        )

    # --------------------------------------------------------
    # ACCOUNT / MARKET DATA
    # --------------------------------------------------------

    def balance_rows(self, data: Any) -> Any:
        return (self.unwrap(data) or {}).get("balances", [])

    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        response = await self.request(
            "GET",
            self.account_path,
            credentials,
            timestamp_field="timestamp",
            operation="get_balances",
        )
        return self.balance_entries(
            self.balance_rows(response.data),
            currency_keys=("asset", "coin"),
            available_keys=("free", "available"),
            reserved_keys=("locked", "frozen"),
        )

    def price_from_ticker(self, data: Any) -> Any:
        return require_field(data, "price", "lastPrice", exchange_id=self.exchange_id, operation="ticker")

    async def fetch_current_price(self, pair: str) -> Decimal:
        response = await self.request(
            "GET",
            self.ticker_path,
            query={"symbol": self.normalize_pair(pair)},
            operation="fetch_current_price",
        )
        price = to_decimal(self.price_from_ticker(response.data))
        if price is None or price <= 0:
            raise UnknownResponseShape(
                f"{self.exchange_id} ticker returned no usable price for {pair}",
                field_name="price",
                exchange_id=self.exchange_id,
                pair=pair,
            )
        return price


class BinanceAdapter(BinanceCompatibleAdapter):
    """Binance spot."""


# ============================================================
# MEXC
# ============================================================

class MexcAdapter(BinanceCompatibleAdapter):
    """MEXC spot v3 (Binance-compatible)."""

    exchange_id = "mexc"
    base_url = "https://api.mexc.com"
    AUTH_ERROR_CODES = ("700001", "700002", "700003", "10072")

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict) and data.get("code") not in (None, 200, "200", 0, "0"):
            return str(data["code"]), str(data.get("msg", ""))
        return None


# ============================================================
# BITRUE
# ============================================================

class BitrueAdapter(BinanceCompatibleAdapter):
    """
    Bitrue spot (Binance-compatible v1).

    Market buys are sized in base currency from the current price, and
    fills are trusted without polling.
    """

    exchange_id = "bitrue"
    base_url = "https://openapi.bitrue.com"
    order_path = "/api/v1/order"
    status_path = "/api/v1/order"
    account_path = "/api/v1/account"
    ticker_path = "/api/v1/ticker/24hr"
    buy_sized_by_base = True
    confirmation_policy = TrustInstantPolicy(taker_fee_rate=Decimal("0.00098"))

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict):
            code = to_decimal(data.get("code"))
            if code is not None and code < 0:
                return str(data["code"]), str(data.get("msg", ""))
        return None

    def price_from_ticker(self, data: Any) -> Any:
        if isinstance(data, list):
            data = data[0] if data else {}
        return require_field(data, "lastPrice", "price", exchange_id=self.exchange_id, operation="ticker")


# ============================================================
# BINGX
# ============================================================

class BingXAdapter(BinanceCompatibleAdapter):
    """BingX spot v1: Binance-style signing inside a {code, data} envelope."""

    exchange_id = "bingx"
    base_url = "https://open-api.bingx.com"
    order_path = "/openApi/spot/v1/trade/order"
    status_path = "/openApi/spot/v1/trade/query"
    account_path = "/openApi/spot/v1/account/balance"
    ticker_path = "/openApi/spot/v1/ticker/24hr"
    AUTH_ERROR_CODES = ("100001", "100413")
    supports_limit_fallback = False

    def unwrap(self, data: Any) -> Any:
        if isinstance(data, dict):
            return data.get("data")
        return None

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        if isinstance(data, dict) and str(data.get("code", 0)) != "0":
            return str(data["code"]), str(data.get("msg", ""))
        return None

    def price_from_ticker(self, data: Any) -> Any:
        payload = self.unwrap(data)
        if isinstance(payload, list):
            payload = payload[0] if payload else {}
        return require_field(payload, "lastPrice", "price", exchange_id=self.exchange_id, operation="ticker")
