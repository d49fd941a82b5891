"""
Order Gateway - Order Confirmation State Machine.

============================================================
PURPOSE
============================================================
Reconciles "order accepted" with "order actually filled".

STATE MACHINE:

    SUBMITTED ──► POLLING ──► FILLED
        │            │
        │            ├──────► FAILED
        │            │
        │            └──────► TIMED_OUT
        │
        ├──► FILLED            (submission already reports a fill)
        │
        └──► FILLED_ESTIMATED  (trusted instant fill)

POLICIES (static, per backend):
- PollPolicy(max_attempts, interval_seconds)
- TrustInstantPolicy(taker_fee_rate): no polling, estimated result

INVARIANTS:
- At most max_attempts status polls
- FAILED keeps the backend's reason
- TIMED_OUT means the order may still be live

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union, TYPE_CHECKING

from .errors import (
    BackendRejected,
    ConfirmationTimeout,
    NetworkError,
    UnknownResponseShape,
)
from .types import (
    BaseQuantity,
    Credentials,
    OrderResult,
    OrderSide,
    OrderStatus,
    OrderStatusDetail,
    OrderSubmission,
    QuoteNotional,
    Sizing,
)

if TYPE_CHECKING:
    from .adapters.base import ExchangeAdapter


logger = logging.getLogger(__name__)


# ============================================================
# POLICIES
# ============================================================

@dataclass(frozen=True)
class PollPolicy:
    """Poll the status endpoint until a terminal state."""

    max_attempts: int = 10
    """Status polls before ConfirmationTimeout."""

    interval_seconds: float = 1.0
    """Wait before each poll."""


@dataclass(frozen=True)
class TrustInstantPolicy:
    """Trust the fill and estimate price and fee."""

    taker_fee_rate: Decimal
    """Fee estimate as a fraction of executed value."""


ConfirmationPolicy = Union[PollPolicy, TrustInstantPolicy]


# ============================================================
# STATES
# ============================================================

class ConfirmationState(Enum):
    """Confirmation lifecycle states."""

    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    FILLED = "FILLED"
    FILLED_ESTIMATED = "FILLED_ESTIMATED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


VALID_TRANSITIONS: Dict[ConfirmationState, Set[ConfirmationState]] = {
    ConfirmationState.SUBMITTED: {
        ConfirmationState.POLLING,
        ConfirmationState.FILLED,
        ConfirmationState.FILLED_ESTIMATED,
        ConfirmationState.FAILED,
    },
    ConfirmationState.POLLING: {
        ConfirmationState.FILLED,
        ConfirmationState.FAILED,
        ConfirmationState.TIMED_OUT,
    },
    ConfirmationState.FILLED: set(),
    ConfirmationState.FILLED_ESTIMATED: set(),
    ConfirmationState.FAILED: set(),
    ConfirmationState.TIMED_OUT: set(),
}


@dataclass
class ConfirmationTrace:
    """Transition history of one confirmation."""

    order_id: str
    exchange_id: str
    state: ConfirmationState = ConfirmationState.SUBMITTED
    polls: int = 0
    history: List[Tuple[ConfirmationState, datetime]] = field(default_factory=list)

    def transition(self, new_state: ConfirmationState) -> None:
        if new_state not in VALID_TRANSITIONS[self.state]:
            raise ValueError(f"Invalid confirmation transition {self.state.value} -> {new_state.value}")
        logger.debug(
            f"Order {self.order_id} on {self.exchange_id}: "
            f"{self.state.value} -> {new_state.value}"
        )
        self.history.append((self.state, datetime.utcnow()))
        self.state = new_state


# ============================================================
# RESULT BUILDING
# ============================================================

def _partial_fill_note(filled: Optional[Decimal]) -> str:
    if filled:
        return f" after a partial fill of {filled}"
    return ""


def _derive_amounts(
    price: Optional[Decimal],
    quantity: Optional[Decimal],
    value: Optional[Decimal],
) -> Tuple[Optional[Decimal], Optional[Decimal], Optional[Decimal]]:
    """Fill in one missing of price/quantity/value from the other two."""
    if price is None and quantity and value is not None:
        price = value / quantity
    if value is None and price is not None and quantity is not None:
        value = price * quantity
    if quantity is None and price and value is not None:
        quantity = value / price
    return price, quantity, value


def result_from_fill(
    exchange_id: str,
    order_id: str,
    pair: str,
    side: OrderSide,
    price: Optional[Decimal],
    quantity: Optional[Decimal],
    value: Optional[Decimal],
    fee: Optional[Decimal],
    timestamp: Optional[datetime] = None,
    attempts: int = 1,
    raw: Optional[Dict[str, Any]] = None,
) -> OrderResult:
    """Build a confirmed OrderResult, failing on missing amounts."""
    price, quantity, value = _derive_amounts(price, quantity, value)
    for name, amount in (("executed_price", price), ("executed_quantity", quantity), ("executed_value", value)):
        if amount is None:
            raise UnknownResponseShape(
                f"Filled order {order_id} without {name}",
                field_name=name,
                exchange_id=exchange_id,
                pair=pair,
                side=side,
            )
    return OrderResult(
        order_id=order_id,
        side=side,
        pair=pair,
        executed_price=price,
        executed_quantity=quantity,
        executed_value=value,
        fee=fee if fee is not None else Decimal("0"),
        status=OrderStatus.FILLED,
        timestamp=timestamp or datetime.utcnow(),
        estimated=False,
        exchange_id=exchange_id,
        attempts=attempts,
        raw=raw or {},
    )


# ============================================================
# CONFIRMER
# ============================================================

class OrderConfirmer:
    """
    Drives an accepted order to a terminal OrderResult.
    """

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep

    async def confirm(
        self,
        adapter: "ExchangeAdapter",
        submission: OrderSubmission,
        pair: str,
        side: OrderSide,
        sizing: Sizing,
        credentials: Credentials,
        policy: Optional[ConfirmationPolicy] = None,
    ) -> OrderResult:
        """
        Confirm a submitted order.

        Args:
            adapter: Backend adapter that accepted the order
            submission: Submission response
            pair: Canonical pair
            side: Order side
            sizing: Original sizing
            credentials: Per-call credentials
            policy: Override of the adapter's static policy

        Returns:
            OrderResult

        Raises:
            BackendRejected: Backend reports failure or cancellation
            ConfirmationTimeout: No terminal state within max_attempts
        """
        policy = policy or adapter.confirmation_policy
        trace = ConfirmationTrace(order_id=submission.order_id, exchange_id=adapter.exchange_id)

        if submission.status in (OrderStatus.FAILED, OrderStatus.CANCELLED):
            trace.transition(ConfirmationState.FAILED)
            raise BackendRejected(
                f"Order {submission.order_id} {submission.status.value.lower()} on submission"
                f"{_partial_fill_note(submission.executed_quantity)}",
                reason=submission.status.value,
                filled_quantity=submission.executed_quantity,
                filled_value=submission.executed_value,
                exchange_id=adapter.exchange_id,
                pair=pair,
                side=side,
            )

        if isinstance(policy, TrustInstantPolicy):
            return await self._trust_instant(adapter, submission, pair, side, sizing, policy, trace)

        if submission.status == OrderStatus.FILLED and submission.executed_quantity:
            trace.transition(ConfirmationState.FILLED)
            return result_from_fill(
                exchange_id=adapter.exchange_id,
                order_id=submission.order_id,
                pair=pair,
                side=side,
                price=submission.executed_price,
                quantity=submission.executed_quantity,
                value=submission.executed_value,
                fee=submission.fee,
                timestamp=submission.timestamp,
                attempts=submission.attempts,
                raw=submission.raw,
            )

        return await self._poll(adapter, submission, pair, side, credentials, policy, trace)

    # --------------------------------------------------------
    # POLLING PATH
    # --------------------------------------------------------

    async def _poll(
        self,
        adapter: "ExchangeAdapter",
        submission: OrderSubmission,
        pair: str,
        side: OrderSide,
        credentials: Credentials,
        policy: PollPolicy,
        trace: ConfirmationTrace,
    ) -> OrderResult:
        trace.transition(ConfirmationState.POLLING)
        last_status: Optional[OrderStatusDetail] = None

        for attempt in range(1, policy.max_attempts + 1):
            await self._sleep(policy.interval_seconds)
            trace.polls = attempt

            try:
                detail = await adapter.get_order_status(submission.order_id, credentials, pair=pair)
            except NetworkError as e:
                logger.warning(
                    f"Status poll {attempt}/{policy.max_attempts} for "
                    f"{submission.order_id} failed: {e}"
                )
                continue

            last_status = detail
            logger.debug(
                f"Status poll {attempt}/{policy.max_attempts} for "
                f"{submission.order_id}: {detail.status.value} ({detail.raw_status})"
            )

            if detail.status == OrderStatus.FILLED:
                trace.transition(ConfirmationState.FILLED)
                return result_from_fill(
                    exchange_id=adapter.exchange_id,
                    order_id=submission.order_id,
                    pair=pair,
                    side=side,
                    price=detail.executed_price if detail.executed_price is not None else submission.executed_price,
                    quantity=detail.executed_quantity if detail.executed_quantity else submission.executed_quantity,
                    value=detail.executed_value if detail.executed_value is not None else submission.executed_value,
                    fee=detail.fee if detail.fee is not None else submission.fee,
                    timestamp=submission.timestamp,
                    attempts=submission.attempts,
                    raw=detail.raw,
                )

            if detail.status in (OrderStatus.FAILED, OrderStatus.CANCELLED):
                trace.transition(ConfirmationState.FAILED)
                reason = detail.reason or detail.raw_status or detail.status.value
                raise BackendRejected(
                    f"Order {submission.order_id} {detail.status.value.lower()}"
                    f"{_partial_fill_note(detail.executed_quantity)}: {reason}",
                    backend_code=detail.raw_status,
                    reason=reason,
                    filled_quantity=detail.executed_quantity,
                    filled_value=detail.executed_value,
                    exchange_id=adapter.exchange_id,
                    pair=pair,
                    side=side,
                )

        trace.transition(ConfirmationState.TIMED_OUT)
        last = last_status.raw_status if last_status else None
        raise ConfirmationTimeout(
            f"Order {submission.order_id} not terminal after {policy.max_attempts} polls "
            f"(last status: {last}); it may still be live",
            order_id=submission.order_id,
            attempts=policy.max_attempts,
            exchange_id=adapter.exchange_id,
            pair=pair,
            side=side,
        )

    # --------------------------------------------------------
    # TRUSTED INSTANT FILL
    # --------------------------------------------------------

    async def _trust_instant(
        self,
        adapter: "ExchangeAdapter",
        submission: OrderSubmission,
        pair: str,
        side: OrderSide,
        sizing: Sizing,
        policy: TrustInstantPolicy,
        trace: ConfirmationTrace,
    ) -> OrderResult:
        price = submission.executed_price
        quantity = submission.executed_quantity
        value = submission.executed_value

        if not price or not quantity:
            price = await adapter.fetch_current_price(pair)
            if isinstance(sizing, QuoteNotional):
                value = sizing.amount
                quantity = value / price
            elif isinstance(sizing, BaseQuantity):
                quantity = sizing.amount
                value = quantity * price
        elif value is None:
            value = price * quantity

        fee = submission.fee if submission.fee is not None else value * policy.taker_fee_rate

        trace.transition(ConfirmationState.FILLED_ESTIMATED)
        logger.info(
            f"Order {submission.order_id} on {adapter.exchange_id} trusted as filled "
            f"(estimated price={price} qty={quantity} fee={fee})"
        )

        return OrderResult(
            order_id=submission.order_id,
            side=side,
            pair=pair,
            executed_price=price,
            executed_quantity=quantity,
            executed_value=value,
            fee=fee,
            status=OrderStatus.FILLED,
            timestamp=submission.timestamp or datetime.utcnow(),
            estimated=True,
            exchange_id=adapter.exchange_id,
            attempts=submission.attempts,
            raw=submission.raw,
        )
