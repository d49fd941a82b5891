"""
Order Gateway - Adapters Package.

============================================================
PURPOSE
============================================================
Exchange adapter implementations.

AVAILABLE ADAPTERS:
- ValrAdapter, LunoAdapter, ChainexAdapter: South African venues
- BinanceAdapter, MexcAdapter, BitrueAdapter, BingXAdapter:
  Binance-compatible REST contract
- KrakenAdapter, BybitAdapter, GateioAdapter, OkxAdapter,
  KucoinAdapter, XtAdapter, AscendexAdapter, HtxAdapter,
  BitgetAdapter, BitmartAdapter
- MockExchangeAdapter: For testing

UTILITIES:
- AdapterFactory: Registry with aliases
- AdapterMetrics: Metrics collection
- AdapterLogger: Secure logging

============================================================
"""

# Base types
from .base import (
    ExchangeAdapter,
    first_present,
    require_field,
    to_decimal,
)

# Adapters
from .valr import ValrAdapter
from .luno import LunoAdapter
from .chainex import ChainexAdapter
from .kraken import KrakenAdapter
from .binance_family import (
    BinanceCompatibleAdapter,
    BinanceAdapter,
    MexcAdapter,
    BitrueAdapter,
    BingXAdapter,
)
from .bybit import BybitAdapter
from .gateio import GateioAdapter
from .okx import OkxAdapter
from .kucoin import KucoinAdapter
from .xt import XtAdapter
from .ascendex import AscendexAdapter
from .htx import HtxAdapter
from .bitget import BitgetAdapter
from .bitmart import BitmartAdapter
from .mock import MockExchangeAdapter, MockConfig

# Factory
from .factory import AdapterFactory

# Metrics
from .metrics import (
    AdapterMetrics,
    MetricsAggregator,
    MetricType,
    get_global_aggregator,
)

# Logging
from .logging_utils import (
    AdapterLogger,
    AuditLog,
    get_audit_log,
    mask_headers,
    mask_params,
    mask_url,
    mask_value,
)


__all__ = [
    # Base
    "ExchangeAdapter",
    "first_present",
    "require_field",
    "to_decimal",
    # Adapters
    "ValrAdapter",
    "LunoAdapter",
    "ChainexAdapter",
    "KrakenAdapter",
    "BinanceCompatibleAdapter",
    "BinanceAdapter",
    "MexcAdapter",
    "BitrueAdapter",
    "BingXAdapter",
    "BybitAdapter",
    "GateioAdapter",
    "OkxAdapter",
    "KucoinAdapter",
    "XtAdapter",
    "AscendexAdapter",
    "HtxAdapter",
    "BitgetAdapter",
    "BitmartAdapter",
    "MockExchangeAdapter",
    "MockConfig",
    # Factory
    "AdapterFactory",
    # Metrics
    "AdapterMetrics",
    "MetricsAggregator",
    "MetricType",
    "get_global_aggregator",
    # Logging
    "AdapterLogger",
    "AuditLog",
    "get_audit_log",
    "mask_headers",
    "mask_params",
    "mask_url",
    "mask_value",
]
