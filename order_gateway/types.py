"""
Order Gateway - Types.

============================================================
PURPOSE
============================================================
All type definitions for the Order Gateway.

CRITICAL PRINCIPLE:
    "The gateway executes resolved instructions, it does not decide."
    "Buys are sized in quote currency, sells in base currency."

============================================================
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Union
from dataclasses import dataclass, field
from enum import Enum
from decimal import Decimal


logger = logging.getLogger(__name__)


# ============================================================
# ORDER ENUMS
# ============================================================

class OrderSide(Enum):
    """Order side."""

    BUY = "BUY"
    SELL = "SELL"


class OrderStatus(Enum):
    """
    Canonical order status.

    Every backend-specific status string maps onto one of these.
    """

    SUBMITTED = "SUBMITTED"
    """Accepted by the backend, not yet known to be filled."""

    FILLED = "FILLED"
    """Completely executed."""

    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    """Partially executed, still working."""

    FAILED = "FAILED"
    """Rejected or failed on the backend."""

    CANCELLED = "CANCELLED"
    """Cancelled or expired on the backend."""

    UNKNOWN = "UNKNOWN"
    """Status string not recognized."""

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FILLED, OrderStatus.FAILED, OrderStatus.CANCELLED)

    @property
    def is_success(self) -> bool:
        return self == OrderStatus.FILLED


# ============================================================
# CREDENTIALS
# ============================================================

def _mask(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if len(value) <= 4:
        return "***"
    return f"{value[:4]}...***"


@dataclass(frozen=True)
class Credentials:
    """
    Per-call API credentials.

    Never persisted by the gateway. The repr masks every field so
    credentials cannot leak through logs or tracebacks.
    """

    api_key: str
    """API key."""

    api_secret: str
    """API secret."""

    passphrase: Optional[str] = None
    """Passphrase (OKX, KuCoin, Bitget)."""

    memo: Optional[str] = None
    """Memo (BitMart)."""

    def __repr__(self) -> str:
        return (
            f"Credentials(api_key={_mask(self.api_key)!r}, "
            f"api_secret='***', "
            f"passphrase={'***' if self.passphrase else None!r}, "
            f"memo={'***' if self.memo else None!r})"
        )

    __str__ = __repr__


# ============================================================
# ORDER SIZING
# ============================================================

@dataclass(frozen=True)
class QuoteNotional:
    """Spend this much quote currency (buys)."""

    amount: Decimal


@dataclass(frozen=True)
class BaseQuantity:
    """Sell this much base currency (sells)."""

    amount: Decimal


Sizing = Union[QuoteNotional, BaseQuantity]


@dataclass(frozen=True)
class OrderRequest:
    """
    Resolved order instruction.

    Buys are always sized by QuoteNotional, sells by BaseQuantity.
    """

    exchange_id: str
    """Exchange identifier as supplied by the caller."""

    pair: str
    """Canonical pair, e.g. XRPUSDT."""

    side: OrderSide
    """Order side."""

    sizing: Sizing
    """Quote notional (buy) or base quantity (sell)."""

    credentials: Credentials
    """Per-call credentials."""

    @property
    def amount(self) -> Decimal:
        return self.sizing.amount


# ============================================================
# BALANCES
# ============================================================

@dataclass(frozen=True)
class BalanceEntry:
    """Balance of a single currency."""

    currency: str
    available: Decimal
    reserved: Decimal
    total: Decimal

    @classmethod
    def normalized(
        cls,
        currency: str,
        available: Decimal,
        reserved: Decimal = Decimal("0"),
        total: Optional[Decimal] = None,
    ) -> "BalanceEntry":
        """
        Build an entry satisfying total == available + reserved.

        A reported total that disagrees is replaced.
        """
        computed = available + reserved
        if total is not None and total != computed:
            logger.warning(
                f"Balance total mismatch for {currency}: reported={total} "
                f"available+reserved={computed}, using computed"
            )
        return cls(
            currency=currency,
            available=available,
            reserved=reserved,
            total=computed,
        )


@dataclass
class BalanceSnapshot:
    """Ordered set of balances for one backend."""

    exchange_id: str
    entries: List[BalanceEntry] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def get(self, currency: str) -> Optional[BalanceEntry]:
        """Find entry by currency (case-insensitive)."""
        wanted = currency.upper()
        for entry in self.entries:
            if entry.currency.upper() == wanted:
                return entry
        return None

    def currencies(self) -> List[str]:
        return [e.currency for e in self.entries]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


# ============================================================
# RESULTS
# ============================================================

@dataclass(frozen=True)
class AdjustedQuantity:
    """Result of the Balance Guard."""

    requested: Decimal
    """Quantity the caller asked to sell."""

    adjusted: Decimal
    """Quantity that will actually be submitted."""

    was_adjusted: bool
    """Whether the quantity was clamped to the available balance."""

    minimum_lot: Decimal = Decimal("0")
    """Backend minimum order size for the asset."""

    available: Optional[Decimal] = None
    """Available balance observed."""


@dataclass
class OrderSubmission:
    """What a backend returned when it accepted an order."""

    order_id: str
    status: OrderStatus = OrderStatus.SUBMITTED
    executed_price: Optional[Decimal] = None
    executed_quantity: Optional[Decimal] = None
    executed_value: Optional[Decimal] = None
    fee: Optional[Decimal] = None
    timestamp: Optional[datetime] = None
    attempts: int = 1
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class OrderResult:
    """
    Normalized result of one buy or sell.

    estimated=True marks results synthesized without a confirmed
    backend fill; callers must treat them as provisional.
    """

    order_id: str
    side: OrderSide
    pair: str
    executed_price: Decimal
    executed_quantity: Decimal
    executed_value: Decimal
    fee: Decimal
    status: OrderStatus
    timestamp: datetime
    estimated: bool = False
    exchange_id: Optional[str] = None
    attempts: int = 1
    adjustment: Optional[AdjustedQuantity] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "exchange_id": self.exchange_id,
            "side": self.side.value,
            "pair": self.pair,
            "executed_price": str(self.executed_price),
            "executed_quantity": str(self.executed_quantity),
            "executed_value": str(self.executed_value),
            "fee": str(self.fee),
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "estimated": self.estimated,
        }


@dataclass
class OrderStatusDetail:
    """Order status as reported by a backend."""

    order_id: str
    status: OrderStatus
    raw_status: Optional[str] = None
    pair: Optional[str] = None
    side: Optional[OrderSide] = None
    executed_quantity: Optional[Decimal] = None
    executed_price: Optional[Decimal] = None
    executed_value: Optional[Decimal] = None
    fee: Optional[Decimal] = None
    reason: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)
