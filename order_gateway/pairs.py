"""
Order Gateway - Pair Normalizer.

============================================================
PURPOSE
============================================================
Maps a canonical BASEQUOTE symbol (e.g. XRPUSDT) to each backend's
native symbol.

FORMAT DIMENSIONS:
- separator: none, "-", "_", "/"
- case: upper or lower
- asset renames (BTC is XBT on Kraken and Luno)
- fixed suffix (Bitget spot symbols end in _SPBL)

POLICY:
- Pure and deterministic in (pair, backend_id), no I/O
- Unknown backends or unrecognized quotes pass through unchanged

============================================================
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


# ============================================================
# QUOTE CURRENCIES
# ============================================================

# Longest first so USDT wins over USD
KNOWN_QUOTES: Tuple[str, ...] = (
    "USDT",
    "USDC",
    "BUSD",
    "ZAR",
    "USD",
    "EUR",
    "BTC",
    "ETH",
)

# Crypto quotes carry 8 decimal places, fiat and stablecoins 2
CRYPTO_QUOTES: Tuple[str, ...] = ("BTC", "ETH")

FIAT_QUOTE_PRECISION = 2
CRYPTO_QUOTE_PRECISION = 8

CANONICAL_PAIR_RE = re.compile(r"^[A-Z0-9]{4,20}$")


def split_pair(pair: str) -> Optional[Tuple[str, str]]:
    """
    Split a canonical pair into (base, quote).

    Returns None when no known quote suffix matches.
    """
    symbol = pair.upper()
    for quote in KNOWN_QUOTES:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[: -len(quote)], quote
    return None


def is_canonical_pair(pair: str) -> bool:
    return bool(pair) and CANONICAL_PAIR_RE.match(pair.upper()) is not None


# ============================================================
# PAIR FORMATS
# ============================================================

@dataclass(frozen=True)
class PairFormat:
    """Native symbol convention of one backend."""

    separator: str = ""
    """Between base and quote."""

    lowercase: bool = False
    """Lowercase the whole symbol."""

    asset_renames: Dict[str, str] = field(default_factory=dict)
    """Canonical asset -> native ticker."""

    suffix: str = ""
    """Appended after the quote."""

    def rename(self, asset: str) -> str:
        return self.asset_renames.get(asset, asset)

    def format(self, base: str, quote: str) -> str:
        symbol = f"{self.rename(base)}{self.separator}{self.rename(quote)}{self.suffix}"
        return symbol.lower() if self.lowercase else symbol


_XBT = {"BTC": "XBT"}

PAIR_FORMATS: Dict[str, PairFormat] = {
    "valr": PairFormat(),
    "luno": PairFormat(asset_renames=_XBT),
    "chainex": PairFormat(separator="_"),
    "kraken": PairFormat(asset_renames=_XBT),
    "binance": PairFormat(),
    "bybit": PairFormat(),
    "gateio": PairFormat(separator="_"),
    "okx": PairFormat(separator="-"),
    "mexc": PairFormat(),
    "kucoin": PairFormat(separator="-"),
    "xt": PairFormat(separator="_", lowercase=True),
    "ascendex": PairFormat(separator="/"),
    "htx": PairFormat(lowercase=True),
    "bingx": PairFormat(separator="-"),
    "bitget": PairFormat(suffix="_SPBL"),
    "bitmart": PairFormat(separator="_"),
    "bitrue": PairFormat(),
}


# ============================================================
# NORMALIZATION
# ============================================================

def normalize_pair(pair: str, backend_id: str) -> str:
    """
    Convert a canonical pair to the backend's native symbol.

    Args:
        pair: Canonical pair, e.g. XRPUSDT
        backend_id: Backend identifier

    Returns:
        Native symbol, or the input unchanged when the backend or the
        quote currency is not recognized
    """
    fmt = PAIR_FORMATS.get(backend_id)
    if fmt is None:
        return pair
    parts = split_pair(pair)
    if parts is None:
        return pair
    base, quote = parts
    return fmt.format(base, quote)


def base_asset(pair: str, backend_id: str) -> Optional[str]:
    """Base asset as the backend names it, or None if unrecognized."""
    parts = split_pair(pair)
    if parts is None:
        return None
    fmt = PAIR_FORMATS.get(backend_id, PairFormat())
    return fmt.rename(parts[0])


def balance_aliases(asset: str, backend_id: str) -> List[str]:
    """
    Currency names a backend may use in balances for an asset.

    Kraken additionally reports legacy X-prefixed codes (XXBT, XETH).
    """
    asset = asset.upper()
    fmt = PAIR_FORMATS.get(backend_id, PairFormat())
    native = fmt.rename(asset)
    names = [native]
    if asset != native:
        names.append(asset)
    if backend_id == "kraken" and len(native) == 3:
        names.append(f"X{native}")
    return names


def quote_precision(pair: str) -> int:
    """Decimal places a quote notional is sent with for this pair."""
    parts = split_pair(pair)
    if parts is not None and parts[1] in CRYPTO_QUOTES:
        return CRYPTO_QUOTE_PRECISION
    return FIAT_QUOTE_PRECISION
