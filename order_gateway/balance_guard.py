"""
Order Gateway - Balance Guard.

============================================================
PURPOSE
============================================================
Clamps a sell quantity to what the backend reports as available,
immediately before submission.

ALGORITHM:
1. Fetch balances, locate the base asset (with backend aliasing)
2. Missing entry or available <= 0 -> InsufficientBalance
3. available >= requested -> keep requested
4. Else available * 0.999
5. Round DOWN to the asset precision (8 dp by default)
6. Below the backend+asset minimum lot -> BelowMinimumOrderSize

INVARIANTS:
- adjusted <= requested
- adjusted <= available * safety_factor whenever available < requested
- Never submits an undersized order

============================================================
"""

import logging
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Optional, TYPE_CHECKING

from .config import BalanceGuardConfig
from .errors import InsufficientBalance, BelowMinimumOrderSize, ValidationError
from .pairs import base_asset, balance_aliases
from .types import AdjustedQuantity, BalanceSnapshot, BalanceEntry, Credentials, OrderSide

if TYPE_CHECKING:
    from .adapters.base import ExchangeAdapter


logger = logging.getLogger(__name__)


# ============================================================
# MINIMUM LOTS
# ============================================================

# Backend -> asset -> minimum base quantity. Absent means no minimum.
DEFAULT_MINIMUM_LOTS: Dict[str, Dict[str, Decimal]] = {
    "valr": {
        "BTC": Decimal("0.0001"),
        "ETH": Decimal("0.001"),
        "XRP": Decimal("1"),
        "SOL": Decimal("0.01"),
    },
    "luno": {
        "XBT": Decimal("0.0005"),
        "ETH": Decimal("0.005"),
        "XRP": Decimal("1"),
    },
    "kraken": {
        "XBT": Decimal("0.0001"),
        "ETH": Decimal("0.002"),
        "XRP": Decimal("10"),
    },
    "chainex": {
        "BTC": Decimal("0.0001"),
    },
}


def quantize_down(value: Decimal, precision: int) -> Decimal:
    """Round toward zero to the given number of decimal places."""
    return value.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_DOWN)


def compute_adjustment(
    requested: Decimal,
    available: Decimal,
    minimum_lot: Decimal = Decimal("0"),
    safety_factor: Decimal = Decimal("0.999"),
    precision: int = 8,
) -> AdjustedQuantity:
    """
    Pure core of the guard.

    Args:
        requested: Quantity the caller asked to sell
        available: Available balance of the base asset
        minimum_lot: Backend minimum order size
        safety_factor: Haircut applied when the balance falls short
        precision: Decimal places kept

    Returns:
        AdjustedQuantity

    Raises:
        InsufficientBalance: available <= 0
        BelowMinimumOrderSize: adjusted below minimum_lot
    """
    if available <= 0:
        raise InsufficientBalance(
            f"No available balance (available={available}, requested={requested})",
            available=available,
            requested=requested,
        )

    if available >= requested:
        adjusted = requested
        was_adjusted = False
    else:
        adjusted = available * safety_factor
        was_adjusted = True

    adjusted = quantize_down(adjusted, precision)

    if adjusted <= 0 or adjusted < minimum_lot:
        raise BelowMinimumOrderSize(
            f"Adjusted quantity {adjusted} below minimum lot {minimum_lot} "
            f"(available={available}, requested={requested})",
            available=available,
            requested=requested,
            adjusted=adjusted,
            minimum_lot=minimum_lot,
        )

    return AdjustedQuantity(
        requested=requested,
        adjusted=adjusted,
        was_adjusted=was_adjusted,
        minimum_lot=minimum_lot,
        available=available,
    )


# ============================================================
# BALANCE GUARD
# ============================================================

class BalanceGuard:
    """
    Refreshes the balance and clamps the sell size.

    Invoked only on sell paths.
    """

    def __init__(self, config: Optional[BalanceGuardConfig] = None):
        self._config = config or BalanceGuardConfig()
        self._minimum_lots: Dict[str, Dict[str, Decimal]] = {
            backend: dict(lots) for backend, lots in DEFAULT_MINIMUM_LOTS.items()
        }
        for backend, lots in self._config.minimum_lots.items():
            self._minimum_lots.setdefault(backend, {}).update(lots)

    def minimum_lot(self, backend_id: str, asset: str) -> Decimal:
        return self._minimum_lots.get(backend_id, {}).get(asset.upper(), Decimal("0"))

    def precision(self, backend_id: str, asset: str) -> int:
        overrides = self._config.precision_overrides.get(backend_id, {})
        return overrides.get(asset.upper(), self._config.default_precision)

    @staticmethod
    def find_entry(snapshot: BalanceSnapshot, asset: str, backend_id: str) -> Optional[BalanceEntry]:
        for name in balance_aliases(asset, backend_id):
            entry = snapshot.get(name)
            if entry is not None:
                return entry
        return None

    async def adjust_sell_quantity(
        self,
        adapter: "ExchangeAdapter",
        pair: str,
        requested: Decimal,
        credentials: Credentials,
    ) -> AdjustedQuantity:
        """
        Clamp a sell quantity to the live available balance.

        Args:
            adapter: Backend adapter
            pair: Canonical pair
            requested: Base quantity requested
            credentials: Per-call credentials

        Returns:
            AdjustedQuantity to submit
        """
        backend_id = adapter.exchange_id
        asset = base_asset(pair, backend_id)
        if asset is None:
            raise ValidationError(
                f"Cannot derive base asset from pair {pair}",
                exchange_id=backend_id,
                pair=pair,
                side=OrderSide.SELL,
            )

        snapshot = await adapter.get_balances(credentials)
        entry = self.find_entry(snapshot, asset, backend_id)
        if entry is None:
            raise InsufficientBalance(
                f"No {asset} balance on {backend_id}",
                available=Decimal("0"),
                requested=requested,
                exchange_id=backend_id,
                pair=pair,
                side=OrderSide.SELL,
            )

        try:
            result = compute_adjustment(
                requested=requested,
                available=entry.available,
                minimum_lot=self.minimum_lot(backend_id, asset),
                safety_factor=self._config.safety_factor,
                precision=self.precision(backend_id, asset),
            )
        except (InsufficientBalance, BelowMinimumOrderSize) as e:
            e.with_context(exchange_id=backend_id, pair=pair, side=OrderSide.SELL)
            logger.error(f"Balance guard blocked sell: {e}")
            raise

        if result.was_adjusted:
            logger.warning(
                f"Sell {pair} on {backend_id} adjusted: requested={requested} "
                f"available={entry.available} adjusted={result.adjusted}"
            )
        return result
