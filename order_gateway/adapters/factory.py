"""
Order Gateway - Adapter Factory.

============================================================
PURPOSE
============================================================
Registry mapping backend names to adapter classes.

FEATURES:
- Case-insensitive lookup with aliases (gate.io, xt.com, huobi)
- Dependency injection of transport, rate limiter, clock and config
- Unknown names fail before any I/O

============================================================
USAGE
============================================================
```python
adapter = AdapterFactory.create("Gate.io", transport=transport)
AdapterFactory.register("paper", PaperAdapter, aliases=("paper-trading",))
```

============================================================
"""

import logging
from typing import Dict, List, Sequence, Type

from ..errors import UnsupportedExchange
from .ascendex import AscendexAdapter
from .base import ExchangeAdapter
from .binance_family import BinanceAdapter, BingXAdapter, BitrueAdapter, MexcAdapter
from .bitget import BitgetAdapter
from .bitmart import BitmartAdapter
from .bybit import BybitAdapter
from .chainex import ChainexAdapter
from .gateio import GateioAdapter
from .htx import HtxAdapter
from .kraken import KrakenAdapter
from .kucoin import KucoinAdapter
from .luno import LunoAdapter
from .okx import OkxAdapter
from .valr import ValrAdapter
from .xt import XtAdapter


logger = logging.getLogger(__name__)


# ============================================================
# ADAPTER FACTORY
# ============================================================

class AdapterFactory:
    """
    Factory for creating exchange adapters.

    Registered ids are lower case; aliases resolve to a registered id.
    """

    _registry: Dict[str, Type[ExchangeAdapter]] = {}
    _aliases: Dict[str, str] = {}

    @classmethod
    def register(
        cls,
        exchange_id: str,
        adapter_class: Type[ExchangeAdapter],
        aliases: Sequence[str] = (),
    ) -> None:
        """
        Register an adapter class.

        Args:
            exchange_id: Backend identifier
            adapter_class: ExchangeAdapter subclass
            aliases: Alternative names accepted by resolve()
        """
        exchange_id = exchange_id.lower()
        cls._registry[exchange_id] = adapter_class
        for alias in aliases:
            cls._aliases[alias.lower()] = exchange_id

    @classmethod
    def unregister(cls, exchange_id: str) -> None:
        exchange_id = exchange_id.lower()
        cls._registry.pop(exchange_id, None)
        for alias in [a for a, target in cls._aliases.items() if target == exchange_id]:
            del cls._aliases[alias]

    @classmethod
    def resolve(cls, name: str) -> str:
        """
        Resolve a user-facing name to a registered backend id.

        Raises:
            UnsupportedExchange: Name is not registered
        """
        key = (name or "").strip().lower()
        key = cls._aliases.get(key, key)
        if key not in cls._registry:
            raise UnsupportedExchange(
                f"Unsupported exchange: {name!r}. Supported: {', '.join(cls.list_supported())}",
                exchange_id=name,
            )
        return key

    @classmethod
    def create(cls, name: str, **deps) -> ExchangeAdapter:
        """
        Create an adapter.

        Args:
            name: Backend name or alias
            **deps: transport, rate_limiter, clock, signer, config

        Returns:
            ExchangeAdapter instance
        """
        exchange_id = cls.resolve(name)
        adapter = cls._registry[exchange_id](**deps)
        logger.debug(f"Created {type(adapter).__name__} for {exchange_id}")
        return adapter

    @classmethod
    def list_supported(cls) -> List[str]:
        return sorted(cls._registry)


def _register_builtin_adapters() -> None:
    for adapter_class in (
        ValrAdapter,
        LunoAdapter,
        ChainexAdapter,
        KrakenAdapter,
        BinanceAdapter,
        BybitAdapter,
        OkxAdapter,
        MexcAdapter,
        KucoinAdapter,
        AscendexAdapter,
        BingXAdapter,
        BitgetAdapter,
        BitmartAdapter,
        BitrueAdapter,
    ):
        AdapterFactory.register(adapter_class.exchange_id, adapter_class)
    AdapterFactory.register(GateioAdapter.exchange_id, GateioAdapter, aliases=("gate.io", "gate"))
    AdapterFactory.register(XtAdapter.exchange_id, XtAdapter, aliases=("xt.com",))
    AdapterFactory.register(HtxAdapter.exchange_id, HtxAdapter, aliases=("huobi",))


_register_builtin_adapters()
