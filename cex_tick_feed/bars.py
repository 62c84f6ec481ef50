from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Iterator, Optional, Sequence, Tuple

import pandas as pd

from .bucketing import compute_boundaries
from .errors import FeedError
from .periods import PeriodLike, PeriodSpec, as_period
from .ticks import Tick, micros_to_datetime

if TYPE_CHECKING:
    from .db import TickStore


class BarKind(str, Enum):
    CANDLE = "candle"


BAR_COLUMNS = ["open_at", "close_at", "open", "high", "low", "close", "volume", "start", "end"]


@dataclass(frozen=True)
class Bar:
    open: float
    high: float
    low: float
    close: float
    volume: float
    open_at: datetime
    close_at: datetime
    source_range: Tuple[int, int]

    @property
    def tick_count(self) -> int:
        return self.source_range[1] - self.source_range[0]

    def __str__(self) -> str:
        return (
            f"[{self.open_at:%Y-%m-%d %H:%M:%S}, {self.open}, {self.high}, "
            f"{self.low}, {self.close}, {self.volume}]"
        )


def build_bar(
    ticks: Sequence[Tick],
    *,
    open_at: Optional[datetime] = None,
    close_at: Optional[datetime] = None,
    source_range: Optional[Tuple[int, int]] = None,
) -> Bar:
    """Reduce an ordered, non-empty tick slice into one OHLCV bar.

    open/close follow input order, not timestamps. Open and close times
    default to the first and last tick times.
    """
    if not ticks:
        raise ValueError("build_bar requires at least one tick")

    first = ticks[0]
    high = low = first.price
    volume = 0.0
    for t in ticks:
        if t.price > high:
            high = t.price
        elif t.price < low:
            low = t.price
        volume += t.volume

    return Bar(
        open=first.price,
        high=high,
        low=low,
        close=ticks[-1].price,
        volume=volume,
        open_at=open_at if open_at is not None else micros_to_datetime(first.timestamp_micros),
        close_at=close_at if close_at is not None else micros_to_datetime(ticks[-1].timestamp_micros),
        source_range=source_range if source_range is not None else (0, len(ticks)),
    )


@dataclass(frozen=True)
class BarSeries:
    """Bars over a tick window, kept together with the ticks they came from.

    Fully materialized: iterating twice yields the same bars.
    """

    ticks: Tuple[Tick, ...] = ()
    bars: Tuple[Bar, ...] = ()
    period: Optional[PeriodSpec] = None
    kind: BarKind = BarKind.CANDLE

    @classmethod
    def build(cls, ticks: Sequence[Tick], period: PeriodLike, kind: BarKind = BarKind.CANDLE) -> "BarSeries":
        spec = as_period(period)
        ticks = tuple(ticks)
        boundaries = compute_boundaries(ticks, spec)

        bars = []
        for k, (start, end) in enumerate(boundaries.ranges(len(ticks))):
            bars.append(
                build_bar(
                    ticks[start:end],
                    open_at=boundaries.open_times[k],
                    close_at=boundaries.close_times[k],
                    source_range=(start, end),
                )
            )
        return cls(ticks=ticks, bars=tuple(bars), period=spec, kind=kind)

    @classmethod
    def empty(cls) -> "BarSeries":
        return cls()

    def __iter__(self) -> Iterator[Bar]:
        return iter(self.bars)

    def __len__(self) -> int:
        return len(self.bars)

    def __getitem__(self, i: int) -> Bar:
        return self.bars[i]

    def integrity_check(self) -> bool:
        """Re-derive the cuts from the stored ticks and compare with the bars.

        True when ranges are non-empty, ordered, contiguous, cover every tick
        and sit exactly where a fresh bucketing pass puts them.
        """
        if not self.bars:
            return not self.ticks
        if self.period is None:
            return False

        expected = 0
        for bar in self.bars:
            start, end = bar.source_range
            if start != expected or end <= start:
                return False
            expected = end
        if expected != len(self.ticks):
            return False

        try:
            boundaries = compute_boundaries(self.ticks, self.period)
        except FeedError:
            return False
        derived = boundaries.ranges(len(self.ticks))
        return derived == [bar.source_range for bar in self.bars]

    def to_dataframe(self) -> pd.DataFrame:
        if not self.bars:
            return pd.DataFrame(columns=BAR_COLUMNS)
        return pd.DataFrame(
            [
                {
                    "open_at": pd.Timestamp(b.open_at),
                    "close_at": pd.Timestamp(b.close_at),
                    "open": b.open,
                    "high": b.high,
                    "low": b.low,
                    "close": b.close,
                    "volume": b.volume,
                    "start": b.source_range[0],
                    "end": b.source_range[1],
                }
                for b in self.bars
            ],
            columns=BAR_COLUMNS,
        )


def build_candles(store: "TickStore", table: str, period: PeriodLike, limit: Optional[int] = 1_000_000) -> BarSeries:
    """Load the most recent `limit` ticks of `table` and build candles from them."""
    ticks = store.fetch_ticks(table, limit=limit)
    return BarSeries.build(ticks, period, BarKind.CANDLE)
