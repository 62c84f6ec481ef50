from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict

from .ticks import AssetInfo, TradePage


DEFAULT_PAGE_SIZE = 1000


class ExchangeClient(ABC):
    """Paginated trade-history capability of one exchange.

    A page holding fewer than `page_size` ticks means the history is caught up.
    """

    name: str = ""
    page_size: int = DEFAULT_PAGE_SIZE

    @abstractmethod
    def initial_page_token(self, start: datetime) -> str:
        """Pagination token that starts the history at `start`."""

    @abstractmethod
    async def fetch_trades(self, pair: str, token: str) -> TradePage:
        ...

    @abstractmethod
    async def fetch_asset_info(self, pair: str) -> AssetInfo:
        ...


_REGISTRY: Dict[str, Callable[..., ExchangeClient]] = {}


def register_exchange(name: str, factory: Callable[..., ExchangeClient]) -> None:
    _REGISTRY[name.lower()] = factory


def get_exchange_client(name: str, **kwargs: Any) -> ExchangeClient:
    """Build the client configured for exchange `name`."""
    # kraken registers itself on import
    from . import kraken  # noqa: F401

    try:
        factory = _REGISTRY[name.lower()]
    except KeyError:
        known = ", ".join(sorted(_REGISTRY)) or "none"
        raise ValueError(f"unsupported exchange {name!r} (known: {known})") from None
    return factory(**kwargs)


def supported_exchanges() -> list[str]:
    from . import kraken  # noqa: F401

    return sorted(_REGISTRY)
