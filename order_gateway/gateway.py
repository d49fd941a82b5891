"""
Order Gateway - Gateway Facade.

============================================================
PURPOSE
============================================================
Single entry point for placing market orders on any supported
backend and getting a normalized OrderResult back.

============================================================
EXECUTION WORKFLOW
============================================================
1. Resolve the backend name and validate the request (no I/O)
2. Sells: refresh balances and clamp the quantity (Balance Guard)
3. Submit the market order; fall back to an IOC limit order when
   the backend refuses market orders and fallback is enabled
4. Confirm the fill per the backend's confirmation policy
5. Return OrderResult, or raise a typed GatewayError carrying
   exchange_id, pair and side

The whole call runs under the caller's deadline.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Any, Dict, Optional, Tuple

from .adapters.base import ExchangeAdapter
from .adapters.factory import AdapterFactory
from .balance_guard import BalanceGuard
from .config import GatewayConfig
from .confirmation import OrderConfirmer
from .errors import (
    BackendRejected,
    BelowMinimumOrderSize,
    ConfirmationTimeout,
    GatewayError,
    InsufficientBalance,
    NetworkError,
    ValidationError,
)
from .pairs import base_asset, is_canonical_pair, quote_precision
from .rate_limiter import RateLimiter
from .signing import Clock, Signer
from .transport import ResilientTransport
from .types import (
    AdjustedQuantity,
    BaseQuantity,
    BalanceSnapshot,
    Credentials,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderStatusDetail,
    OrderSubmission,
    QuoteNotional,
)


logger = logging.getLogger(__name__)


# ============================================================
# REQUEST VALIDATION
# ============================================================

def to_amount(value: Any) -> Decimal:
    """
    Coerce a caller-supplied amount to Decimal.

    Floats go through str() so 0.1 stays 0.1.

    Raises:
        ValidationError: Value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationError(f"Amount must be numeric, got {value!r}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Amount must be numeric, got {value!r}")


def validate_credentials(credentials: Any, signer: Optional[Signer] = None) -> None:
    """
    Check credentials are present, plus passphrase/memo when required.

    Raises:
        ValidationError: Credentials missing or incomplete
    """
    if not isinstance(credentials, Credentials):
        raise ValidationError("Credentials are required")
    if not credentials.api_key or not credentials.api_secret:
        raise ValidationError("Credentials need both an API key and a secret")
    if signer is not None:
        if getattr(signer, "requires_passphrase", False) and not credentials.passphrase:
            raise ValidationError("This exchange requires an API passphrase")
        if getattr(signer, "requires_memo", False) and not credentials.memo:
            raise ValidationError("This exchange requires an API memo")


def validate_order_request(request: OrderRequest, signer: Optional[Signer] = None) -> None:
    """
    Validate an order request before any network call.

    Args:
        request: Order request
        signer: Backend signer, for passphrase/memo requirements

    Raises:
        ValidationError: With exchange_id, pair and side attached
    """
    try:
        if not request.exchange_id:
            raise ValidationError("Exchange id is required")

        if not isinstance(request.pair, str) or not is_canonical_pair(request.pair):
            raise ValidationError(
                f"Pair {request.pair!r} is not a canonical symbol such as XRPUSDT"
            )

        if not isinstance(request.side, OrderSide):
            raise ValidationError(f"Unknown order side {request.side!r}")

        if request.side == OrderSide.BUY and not isinstance(request.sizing, QuoteNotional):
            raise ValidationError("Buy orders are sized by quote notional")
        if request.side == OrderSide.SELL and not isinstance(request.sizing, BaseQuantity):
            raise ValidationError("Sell orders are sized by base quantity")

        amount = request.sizing.amount
        if not isinstance(amount, Decimal) or not amount.is_finite() or amount <= 0:
            raise ValidationError(f"Amount must be a positive finite number, got {amount}")
        if request.side == OrderSide.BUY:
            places = quote_precision(request.pair)
            if amount.scaleb(places).to_integral_value(rounding=ROUND_DOWN) == 0:
                raise ValidationError(
                    f"Notional {amount} is below the smallest unit the quote currency is sent in"
                )

        validate_credentials(request.credentials, signer)
    except ValidationError as e:
        e.with_context(exchange_id=request.exchange_id, pair=request.pair, side=request.side)
        raise


# ============================================================
# GATEWAY
# ============================================================

@dataclass
class _Attempt:
    """Progress of one order call, read when the deadline expires."""

    submission: Optional[OrderSubmission] = None


class OrderGateway:
    """
    Order execution gateway.

    Adapters are created lazily per backend and share this gateway's
    transport and rate limiter. The gateway keeps no order state
    between calls.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        transport: Optional[ResilientTransport] = None,
        rate_limiter: Optional[RateLimiter] = None,
        balance_guard: Optional[BalanceGuard] = None,
        confirmer: Optional[OrderConfirmer] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or GatewayConfig()
        self._transport = transport or ResilientTransport(self.config.retry, self.config.timeout)
        self._rate_limiter = rate_limiter or RateLimiter(self.config.rate_limit)
        self._balance_guard = balance_guard or BalanceGuard(self.config.balance_guard)
        self._confirmer = confirmer or OrderConfirmer()
        self._clock = clock or Clock()

        self._adapters: Dict[str, ExchangeAdapter] = {}
        self._sell_locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._stats = {
            "orders": 0,
            "filled": 0,
            "estimated": 0,
            "failed": 0,
            "limit_fallbacks": 0,
        }

    # --------------------------------------------------------
    # ADAPTERS
    # --------------------------------------------------------

    def adapter(self, exchange_id: str) -> ExchangeAdapter:
        """
        Get (or create) the adapter for a backend name or alias.

        Raises:
            UnsupportedExchange: Unknown backend
        """
        resolved = AdapterFactory.resolve(exchange_id)
        adapter = self._adapters.get(resolved)
        if adapter is None:
            adapter = AdapterFactory.create(
                resolved,
                transport=self._transport,
                rate_limiter=self._rate_limiter,
                clock=self._clock,
                config=self.config,
            )
            self._adapters[resolved] = adapter
        return adapter

    def _sell_lock(self, exchange_id: str, pair: str) -> asyncio.Lock:
        key = (exchange_id, base_asset(pair, exchange_id) or pair)
        lock = self._sell_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._sell_locks[key] = lock
        return lock

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def execute_buy_order(
        self,
        exchange_id: str,
        pair: str,
        quote_notional: Any,
        credentials: Credentials,
        deadline: Optional[float] = None,
    ) -> OrderResult:
        """
        Spend quote_notional of the quote currency at market.

        Args:
            exchange_id: Backend name or alias
            pair: Canonical pair, e.g. XRPUSDT
            quote_notional: Amount of quote currency to spend
            credentials: Per-call credentials
            deadline: Seconds allowed for the whole call

        Returns:
            OrderResult
        """
        return await self._execute(exchange_id, pair, OrderSide.BUY, quote_notional, credentials, deadline)

    async def execute_sell_order(
        self,
        exchange_id: str,
        pair: str,
        base_quantity: Any,
        credentials: Credentials,
        deadline: Optional[float] = None,
    ) -> OrderResult:
        """
        Sell base_quantity of the base currency at market.

        The quantity may be reduced to the available balance; the
        result's adjustment field records it.
        """
        return await self._execute(exchange_id, pair, OrderSide.SELL, base_quantity, credentials, deadline)

    async def _execute(
        self,
        exchange_id: str,
        pair: str,
        side: OrderSide,
        amount: Any,
        credentials: Credentials,
        deadline: Optional[float],
    ) -> OrderResult:
        try:
            adapter = self.adapter(exchange_id)
            value = to_amount(amount)
            sizing = QuoteNotional(value) if side == OrderSide.BUY else BaseQuantity(value)
            request = OrderRequest(
                exchange_id=adapter.exchange_id,
                pair=pair,
                side=side,
                sizing=sizing,
                credentials=credentials,
            )
            validate_order_request(request, adapter.signer)
        except GatewayError as e:
            e.with_context(exchange_id=exchange_id, pair=pair, side=side)
            logger.warning(f"Order request refused: {e}")
            raise

        self._stats["orders"] += 1
        attempt = _Attempt()
        try:
            if deadline is None:
                result = await self._run(adapter, request, attempt)
            else:
                result = await asyncio.wait_for(self._run(adapter, request, attempt), timeout=deadline)
        except asyncio.TimeoutError:
            error = self._deadline_error(request, attempt, deadline)
            self._record_failure(adapter, request, error)
            raise error
        except GatewayError as e:
            e.with_context(exchange_id=request.exchange_id, pair=request.pair, side=request.side)
            self._record_failure(adapter, request, e)
            raise

        self._record_success(adapter, request, result)
        return result

    async def _run(self, adapter: ExchangeAdapter, request: OrderRequest, attempt: _Attempt) -> OrderResult:
        adjustment: Optional[AdjustedQuantity] = None
        sizing = request.sizing

        if request.side == OrderSide.SELL:
            async with self._sell_lock(request.exchange_id, request.pair):
                adjustment = await self._balance_guard.adjust_sell_quantity(
                    adapter, request.pair, request.amount, request.credentials
                )
                sizing = BaseQuantity(adjustment.adjusted)
                attempt.submission = await self._submit(adapter, request, adjustment.adjusted)
        else:
            attempt.submission = await self._submit(adapter, request, request.amount)

        result = await self._confirmer.confirm(
            adapter,
            attempt.submission,
            request.pair,
            request.side,
            sizing,
            request.credentials,
        )
        result.adjustment = adjustment
        return result

    async def _submit(self, adapter: ExchangeAdapter, request: OrderRequest, amount: Decimal) -> OrderSubmission:
        adapter.log.log_order("submit", pair=request.pair, side=request.side.value, amount=amount)
        try:
            if request.side == OrderSide.BUY:
                submission = await adapter.place_market_buy(request.pair, amount, request.credentials)
            else:
                submission = await adapter.place_market_sell(request.pair, amount, request.credentials)
        except BackendRejected as e:
            if not (
                self.config.limit_fallback_enabled
                and adapter.supports_limit_fallback
                and adapter.is_market_unavailable(e)
            ):
                raise
            submission = await self._limit_fallback(adapter, request, amount, e)

        adapter.log.log_order(
            "submitted",
            pair=request.pair,
            side=request.side.value,
            amount=amount,
            order_id=submission.order_id,
            status=submission.status.value,
        )
        return submission

    async def _limit_fallback(
        self,
        adapter: ExchangeAdapter,
        request: OrderRequest,
        amount: Decimal,
        cause: BackendRejected,
    ) -> OrderSubmission:
        """Re-submit as an IOC limit order priced through the last trade."""
        price = await adapter.fetch_current_price(request.pair)
        slippage = self.config.limit_fallback_slippage
        if request.side == OrderSide.BUY:
            limit_price = price * (1 + slippage)
            quantity = amount / limit_price
        else:
            limit_price = price * (1 - slippage)
            quantity = amount

        self._stats["limit_fallbacks"] += 1
        logger.warning(
            f"Market order refused on {adapter.exchange_id} ({cause.reason}); "
            f"falling back to IOC limit {request.side.value} {quantity} {request.pair} @ {limit_price}"
        )
        return await adapter.place_limit_ioc(request.pair, request.side, quantity, limit_price, request.credentials)

    def _deadline_error(self, request: OrderRequest, attempt: _Attempt, deadline: float) -> GatewayError:
        if attempt.submission is not None:
            return ConfirmationTimeout(
                f"Deadline of {deadline}s expired while confirming order "
                f"{attempt.submission.order_id}; it may still be live",
                order_id=attempt.submission.order_id,
                exchange_id=request.exchange_id,
                pair=request.pair,
                side=request.side,
            )
        return NetworkError(
            f"Deadline of {deadline}s expired before the order was accepted",
            exchange_id=request.exchange_id,
            pair=request.pair,
            side=request.side,
        )

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    async def get_order_status(
        self,
        exchange_id: str,
        order_id: str,
        credentials: Credentials,
        pair: Optional[str] = None,
    ) -> OrderStatusDetail:
        """
        Query one order.

        Some backends (Binance family, Gate.io, OKX, Bitget) need the pair.
        """
        try:
            adapter = self.adapter(exchange_id)
            if not order_id:
                raise ValidationError("Order id is required")
            if pair is not None and not is_canonical_pair(pair):
                raise ValidationError(f"Pair {pair!r} is not a canonical symbol such as XRPUSDT")
            validate_credentials(credentials, adapter.signer)
            return await adapter.get_order_status(str(order_id), credentials, pair=pair)
        except GatewayError as e:
            e.with_context(exchange_id=exchange_id, pair=pair)
            logger.error(f"Order status query failed: {e}")
            raise

    async def get_balances(self, exchange_id: str, credentials: Credentials) -> BalanceSnapshot:
        """Query account balances."""
        try:
            adapter = self.adapter(exchange_id)
            validate_credentials(credentials, adapter.signer)
            return await adapter.get_balances(credentials)
        except GatewayError as e:
            e.with_context(exchange_id=exchange_id)
            logger.error(f"Balance query failed: {e}")
            raise

    # --------------------------------------------------------
    # BOOKKEEPING
    # --------------------------------------------------------

    def _record_success(self, adapter: ExchangeAdapter, request: OrderRequest, result: OrderResult) -> None:
        self._stats["filled"] += 1
        if result.estimated:
            self._stats["estimated"] += 1
        adapter.metrics.record_order_filled(estimated=result.estimated)
        adapter.log.log_order(
            "filled",
            pair=request.pair,
            side=request.side.value,
            amount=request.amount,
            order_id=result.order_id,
            status=result.status.value,
            executed_quantity=result.executed_quantity,
            executed_price=result.executed_price,
            estimated=result.estimated,
        )

    def _record_failure(self, adapter: ExchangeAdapter, request: OrderRequest, error: GatewayError) -> None:
        self._stats["failed"] += 1
        if isinstance(error, ConfirmationTimeout):
            adapter.metrics.record_order_timed_out()
            event = "timeout"
        elif isinstance(error, (InsufficientBalance, BelowMinimumOrderSize)):
            adapter.metrics.record_order_rejected(error.code)
            event = "blocked"
        else:
            adapter.metrics.record_order_rejected(error.code)
            event = "rejected"
        adapter.log.log_order(
            event,
            pair=request.pair,
            side=request.side.value,
            amount=request.amount,
            order_id=getattr(error, "order_id", None),
            error_code=error.code,
            error_message=error.message,
        )

    def get_statistics(self) -> Dict[str, int]:
        return dict(self._stats)

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def close(self) -> None:
        """Release the HTTP session."""
        await self._transport.close()
        self._adapters.clear()

    async def __aenter__(self) -> "OrderGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
