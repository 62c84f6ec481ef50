from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from cex_tick_feed.db import TickStore
from cex_tick_feed.exchange import ExchangeClient
from cex_tick_feed.ticks import AssetInfo, IngestionCursor, Tick, TradePage


# 2023-11-14 00:00:00 UTC, aligned to the minute, hour and day
BASE_TS = 1_699_920_000


def make_tick(seq: int, ts: float, price: float = 100.0, volume: float = 1.0) -> Tick:
    return Tick(sequence_id=seq, timestamp_micros=int(round(ts * 1_000_000)), price=price, volume=volume)


class FakeClient(ExchangeClient):
    """Serves canned pages keyed by pagination token."""

    name = "kraken"

    def __init__(self, pages: Dict[str, TradePage], page_size: int = 1000,
                 fail_on: Optional[Dict[str, Exception]] = None) -> None:
        self.pages = pages
        self.page_size = page_size
        self.fail_on = fail_on or {}
        self.requests: List[tuple] = []

    def initial_page_token(self, start: datetime) -> str:
        return str(int(start.timestamp()))

    async def fetch_trades(self, pair: str, token: str) -> TradePage:
        self.requests.append((pair, token))
        if pair in self.fail_on:
            raise self.fail_on[pair]
        return self.pages[token]

    async def fetch_asset_info(self, pair: str) -> AssetInfo:
        return AssetInfo(pair=pair, price_decimals=1, volume_decimals=8)


@pytest.fixture
def tick() -> Callable[..., Tick]:
    return make_tick


@pytest.fixture
def store(tmp_path: Path) -> TickStore:
    return TickStore(tmp_path / "ticks.duckdb")


@pytest.fixture
def seeded_store(store: TickStore) -> Callable[[str, List[int]], TickStore]:
    """Create `table` and store one tick per id, one minute apart."""

    def _seed(table: str, ids: List[int]) -> TickStore:
        store.create_asset(table, AssetInfo("X", 1, 8), IngestionCursor(table, 0, "0"))
        ticks = [make_tick(i, BASE_TS + 60 * i, price=100.0 + i, volume=0.5) for i in ids]
        next_id = max(ids) + 1 if ids else 0
        store.commit_page(table, ticks, IngestionCursor(table, next_id, "t"))
        return store

    return _seed
