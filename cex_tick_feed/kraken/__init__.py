"""Kraken public Trades / AssetPairs client.

Implements the paginated trade-history capability used by the ingestion pipeline.
"""

from ..exchange import register_exchange
from .api import KrakenClient

register_exchange(KrakenClient.name, KrakenClient)

__all__ = [
    "api",
    "KrakenClient",
]
