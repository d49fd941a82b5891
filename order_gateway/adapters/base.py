"""
Order Gateway - Exchange Adapter Base.

============================================================
PURPOSE
============================================================
Abstract interface for exchange adapters and the shared request
pipeline every adapter uses.

PIPELINE:
    Rate Limiter -> Signer -> Resilient Transport -> error mapping

DESIGN PRINCIPLES:
- Exchange-agnostic interface
- Declarative status maps and confirmation policies
- Response field fallback chains instead of silent zero defaults
- Fully testable with a fake transport session

============================================================
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Optional, Dict, Any, List, Tuple
from urllib.parse import urlencode

from ..config import GatewayConfig
from ..confirmation import ConfirmationPolicy, PollPolicy
from ..errors import (
    AuthenticationError,
    BackendRejected,
    GatewayError,
    UnknownResponseShape,
    ValidationError,
)
from ..pairs import FIAT_QUOTE_PRECISION, normalize_pair, quote_precision
from ..rate_limiter import RateLimiter
from ..signing import Clock, Signer, SigningInput, SignedParts, get_signer
from ..transport import HttpRequest, ResilientTransport, TransportResponse
from ..types import (
    BalanceEntry,
    BalanceSnapshot,
    Credentials,
    OrderSide,
    OrderStatus,
    OrderStatusDetail,
    OrderSubmission,
)
from .logging_utils import AdapterLogger
from .metrics import AdapterMetrics, get_global_aggregator


logger = logging.getLogger(__name__)


# ============================================================
# RESPONSE HELPERS
# ============================================================

def first_present(data: Any, *keys: str) -> Any:
    """
    First value among keys that is present and non-empty.

    Backends rename fields between API versions; callers list every
    known spelling in preference order.
    """
    if not isinstance(data, dict):
        return None
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a numeric field; None when absent or unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def require_field(data: Any, *keys: str, exchange_id: str = None, operation: str = None) -> Any:
    """
    Like first_present, but a missing field is an error.

    Raises:
        UnknownResponseShape: None of the keys is present
    """
    value = first_present(data, *keys)
    if value is None:
        raise UnknownResponseShape(
            f"{operation or 'response'} missing field {'|'.join(keys)}",
            field_name="|".join(keys),
            exchange_id=exchange_id,
        )
    return value


def format_decimal(value: Decimal, places: int) -> str:
    """Fixed-point string rounded toward zero."""
    quantum = Decimal(1).scaleb(-places)
    return f"{value.quantize(quantum, rounding=ROUND_DOWN):f}"


def format_quantity(value: Decimal, places: int = 8) -> str:
    """Like format_decimal, without trailing zeros."""
    text = format_decimal(value, places)
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_notional(value: Decimal, pair: str) -> str:
    """
    Quote notional at the precision of the pair's quote currency.

    Fiat and stablecoin quotes keep two fixed decimals; crypto quotes
    are sent with up to eight.
    """
    places = quote_precision(pair)
    if places == FIAT_QUOTE_PRECISION:
        return format_decimal(value, places)
    return format_quantity(value, places)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse epoch seconds/milliseconds or an ISO-8601 string."""
    if value is None or value == "":
        return None
    number = to_decimal(value)
    if number is not None:
        seconds = number / 1000 if number > Decimal("100000000000") else number
        return datetime.utcfromtimestamp(float(seconds))
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


# ============================================================
# EXCHANGE ADAPTER
# ============================================================

class ExchangeAdapter(ABC):
    """
    Abstract exchange adapter.

    Capability set: sign, normalize_pair, place_market_buy,
    place_market_sell, get_order_status, get_balances, and the
    fetch_current_price collaborator.
    """

    exchange_id: str = ""
    """Registry identifier."""

    base_url: str = ""
    """REST base URL."""

    confirmation_policy: ConfirmationPolicy = PollPolicy()
    """Static confirmation policy."""

    STATUS_MAP: Dict[str, OrderStatus] = {}
    """Backend status string (upper case) -> OrderStatus."""

    AUTH_ERROR_CODES: Tuple[str, ...] = ()
    """Backend error codes meaning rejected credentials."""

    MARKET_UNAVAILABLE_HINTS: Tuple[str, ...] = ()
    """Lower-case fragments of rejections that allow a limit fallback."""

    supports_limit_fallback: bool = False
    requires_pair_for_status: bool = False

    def __init__(
        self,
        transport: Optional[ResilientTransport] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Optional[Clock] = None,
        signer: Optional[Signer] = None,
        config: Optional[GatewayConfig] = None,
    ):
        self.config = config or GatewayConfig()
        self.transport = transport or ResilientTransport(self.config.retry, self.config.timeout)
        self.rate_limiter = rate_limiter or RateLimiter(self.config.rate_limit)
        self.clock = clock or Clock()
        self.signer = signer or get_signer(self.exchange_id)
        if isinstance(self.confirmation_policy, PollPolicy):
            self.confirmation_policy = PollPolicy(
                max_attempts=self.config.confirmation.max_attempts,
                interval_seconds=self.config.confirmation.interval_seconds,
            )
        self.metrics = AdapterMetrics(self.exchange_id)
        self.log = AdapterLogger(self.exchange_id)
        get_global_aggregator().register(self.exchange_id, self.metrics)

    # --------------------------------------------------------
    # CAPABILITIES
    # --------------------------------------------------------

    def normalize_pair(self, pair: str) -> str:
        return normalize_pair(pair, self.exchange_id)

    def sign(self, request: SigningInput, credentials: Credentials) -> SignedParts:
        return self.signer.sign(request, credentials)

    def map_status(self, raw_status: Any) -> OrderStatus:
        if raw_status is None:
            return OrderStatus.UNKNOWN
        return self.STATUS_MAP.get(str(raw_status).upper(), OrderStatus.UNKNOWN)

    @abstractmethod
    async def place_market_buy(
        self,
        pair: str,
        notional: Decimal,
        credentials: Credentials,
    ) -> OrderSubmission:
        """Spend notional quote currency at market."""

    @abstractmethod
    async def place_market_sell(
        self,
        pair: str,
        quantity: Decimal,
        credentials: Credentials,
    ) -> OrderSubmission:
        """Sell quantity base currency at market."""

    @abstractmethod
    async def get_order_status(
        self,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        """Query one order."""

    @abstractmethod
    async def get_balances(self, credentials: Credentials) -> BalanceSnapshot:
        """Query account balances."""

    @abstractmethod
    async def fetch_current_price(self, pair: str) -> Decimal:
        """Last traded price, used to size or estimate orders."""

    async def place_limit_ioc(
        self,
        pair: str,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
        credentials: Credentials,
    ) -> OrderSubmission:
        """Immediate-or-cancel limit order used as market fallback."""
        raise NotImplementedError(f"{self.exchange_id} has no limit fallback")

    def is_market_unavailable(self, error: BackendRejected) -> bool:
        reason = (error.reason or "").lower()
        return any(hint in reason for hint in self.MARKET_UNAVAILABLE_HINTS)

    # --------------------------------------------------------
    # ERROR MAPPING
    # --------------------------------------------------------

    def business_error(self, data: Any) -> Optional[Tuple[str, str]]:
        """
        Extract (code, message) when a payload reports an error.

        Default looks for the common msg/message fields; adapters with a
        success-code envelope override this.
        """
        if isinstance(data, dict):
            message = first_present(data, "msg", "message", "error", "err-msg", "retMsg")
            code = first_present(data, "code", "err-code", "retCode")
            if message is not None or code is not None:
                return str(code) if code is not None else "", str(message or "")
        return None

    def map_error(self, code: str, message: str, http_status: Optional[int] = None) -> GatewayError:
        if http_status in (401, 403) or (code and code in self.AUTH_ERROR_CODES):
            return AuthenticationError(
                f"{self.exchange_id} rejected credentials: {message or code}",
                exchange_id=self.exchange_id,
                context={"backend_code": code, "http_status": http_status},
            )
        return BackendRejected(
            f"{self.exchange_id} rejected request: {message or code}",
            backend_code=code or None,
            reason=message or code,
            http_status=http_status,
            exchange_id=self.exchange_id,
        )

    def check_response(self, response: TransportResponse, operation: str) -> Any:
        """
        Raise a typed error for HTTP or business failures.

        Returns:
            Parsed response body
        """
        data = response.data
        if not response.ok:
            extracted = self.business_error(data)
            if extracted is None:
                extracted = (str(response.status), response.text[:200])
            code, message = extracted
            self.metrics.record_request(
                operation, response.latency_ms, False, response.status, code or str(response.status)
            )
            raise self.map_error(code, message, response.status)

        extracted = self.success_envelope_error(data)
        if extracted is not None:
            code, message = extracted
            self.metrics.record_request(operation, response.latency_ms, False, response.status, code)
            raise self.map_error(code, message, response.status)

        self.metrics.record_request(operation, response.latency_ms, True, response.status)
        return data

    def success_envelope_error(self, data: Any) -> Optional[Tuple[str, str]]:
        """Errors reported inside an HTTP 200 envelope."""
        return None

    # --------------------------------------------------------
    # REQUEST PIPELINE
    # --------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        credentials: Optional[Credentials] = None,
        query: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        body_format: str = "json",
        timestamp_field: Optional[str] = None,
        timestamp_in: str = "query",
        operation: str = "request",
        base_url: Optional[str] = None,
    ) -> TransportResponse:
        """
        Rate limit, sign, send and check one request.

        Args:
            method: HTTP method
            path: Request path
            credentials: Sign with these; None for public endpoints
            query: Query parameters in wire order
            body: Body fields
            body_format: "json" or "form"
            timestamp_field: Name of a timestamp/nonce field to inject
            timestamp_in: "query" or "body"
            operation: Name for logs and metrics

        Returns:
            TransportResponse with a checked body
        """
        query = dict(query or {})
        body = dict(body) if body is not None else None

        await self.rate_limiter.acquire(self.exchange_id)

        timestamp = self.signer.make_timestamp(self.clock) if credentials else ""
        if timestamp_field and credentials:
            if timestamp_in == "body":
                body = body if body is not None else {}
                body[timestamp_field] = timestamp
            else:
                query[timestamp_field] = timestamp

        query_string = urlencode([(k, str(v)) for k, v in query.items()])
        if body is None:
            body_text = ""
        elif body_format == "form":
            body_text = urlencode([(k, str(v)) for k, v in body.items()])
        else:
            body_text = json.dumps(body, separators=(",", ":"))

        url_base = base_url or self.base_url
        headers = {"Accept": "application/json"}
        if body is not None:
            headers["Content-Type"] = (
                "application/x-www-form-urlencoded" if body_format == "form" else "application/json"
            )

        if credentials is not None:
            parts = self.sign(
                SigningInput(
                    method=method.upper(),
                    path=path,
                    body=body_text,
                    query=query_string,
                    timestamp=timestamp,
                    host=url_base.split("://", 1)[-1],
                ),
                credentials,
            )
            headers.update(parts.headers)
            query_string = parts.query

        url = f"{url_base}{path}"
        if query_string:
            url = f"{url}?{query_string}"

        request_id = self.log.log_request(
            operation=operation,
            method=method.upper(),
            endpoint=url,
            headers=headers,
            body=body_text or None,
        )

        response = await self.transport.send(
            HttpRequest(
                method=method.upper(),
                url=url,
                headers=headers,
                body=body_text or None,
                operation=f"{self.exchange_id}.{operation}",
            )
        )
        if response.attempts > 1:
            self.metrics.record_retries(response.attempts - 1)

        try:
            self.check_response(response, operation)
        except GatewayError as e:
            self.log.log_response(
                operation=operation,
                request_id=request_id,
                status_code=response.status,
                latency_ms=response.latency_ms,
                success=False,
                error_code=e.code,
                error_message=e.message,
                response_body=response.data,
            )
            raise

        self.log.log_response(
            operation=operation,
            request_id=request_id,
            status_code=response.status,
            latency_ms=response.latency_ms,
            success=True,
            response_body=response.data,
        )
        return response

    # --------------------------------------------------------
    # SHARED MAPPING
    # --------------------------------------------------------

    def require_pair(self, pair: Optional[str], order_id: str) -> str:
        if not pair:
            raise ValidationError(
                f"{self.exchange_id} needs the pair to query order {order_id}",
                exchange_id=self.exchange_id,
            )
        return pair

    def submission(
        self,
        response: TransportResponse,
        order_id: Any,
        status: OrderStatus = OrderStatus.SUBMITTED,
        price: Any = None,
        quantity: Any = None,
        value: Any = None,
        fee: Any = None,
        timestamp: Any = None,
        raw: Optional[Dict[str, Any]] = None,
    ) -> OrderSubmission:
        """Build an OrderSubmission from mapped response fields."""
        if order_id is None or order_id == "":
            raise UnknownResponseShape(
                f"{self.exchange_id} order response without order id",
                field_name="order_id",
                exchange_id=self.exchange_id,
            )
        self.metrics.record_order_submitted()
        return OrderSubmission(
            order_id=str(order_id),
            status=status,
            executed_price=to_decimal(price),
            executed_quantity=to_decimal(quantity),
            executed_value=to_decimal(value),
            fee=to_decimal(fee),
            timestamp=parse_timestamp(timestamp),
            attempts=response.attempts,
            raw=raw if raw is not None else (response.data if isinstance(response.data, dict) else {"data": response.data}),
        )

    @staticmethod
    def side_from(raw_side: Any) -> Optional[OrderSide]:
        if raw_side is None:
            return None
        text = str(raw_side).lower()
        if text.startswith("buy") or text == "bid":
            return OrderSide.BUY
        if text.startswith("sell") or text == "ask":
            return OrderSide.SELL
        return None

    def balance_entries(
        self,
        rows: List[Dict[str, Any]],
        currency_keys: Tuple[str, ...],
        available_keys: Tuple[str, ...],
        reserved_keys: Tuple[str, ...],
        total_keys: Tuple[str, ...] = (),
    ) -> BalanceSnapshot:
        """Map a list of balance rows, skipping rows without a currency."""
        entries = []
        for row in rows or []:
            currency = first_present(row, *currency_keys)
            if currency is None:
                continue
            available = to_decimal(first_present(row, *available_keys)) or Decimal("0")
            reserved = to_decimal(first_present(row, *reserved_keys)) or Decimal("0")
            total = to_decimal(first_present(row, *total_keys)) if total_keys else None
            entries.append(BalanceEntry.normalized(str(currency).upper(), available, reserved, total))
        return BalanceSnapshot(exchange_id=self.exchange_id, entries=entries)

    async def close(self) -> None:
        await self.transport.close()
