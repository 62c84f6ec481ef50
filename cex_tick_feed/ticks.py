from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List

import pandas as pd

from .errors import DateConversion


TICK_COLUMNS = ["id", "time", "price", "volume", "side", "order_type", "misc"]

_NAME_PART = re.compile(r"^[a-z0-9]+$")


@dataclass(frozen=True)
class Tick:
    sequence_id: int
    timestamp_micros: int
    price: float
    volume: float
    # exchange flags, carried as-is
    side: str = ""
    order_type: str = ""
    misc: str = ""

    @property
    def timestamp_seconds(self) -> int:
        return self.timestamp_micros // 1_000_000

    @property
    def datetime(self) -> datetime:
        return micros_to_datetime(self.timestamp_micros)


@dataclass(frozen=True)
class AssetKey:
    """Exchange + pair, and the name of the table holding its ticks."""

    exchange: str
    pair: str

    def __post_init__(self) -> None:
        for part in (self.exchange, self.pair):
            if not _NAME_PART.match(part.lower()):
                raise ValueError(f"invalid asset name part: {part!r}")

    @property
    def table(self) -> str:
        return f"asset_{self.exchange}_{self.pair}".lower()

    @classmethod
    def from_table(cls, table: str) -> "AssetKey":
        parts = table.split("_")
        if len(parts) != 3 or parts[0] != "asset":
            raise ValueError(f"not an asset table: {table!r}")
        return cls(parts[1], parts[2].upper())

    def __str__(self) -> str:
        return f"{self.exchange}:{self.pair}"


@dataclass(frozen=True)
class IngestionCursor:
    asset: str
    next_sequence_id: int
    next_page_token: str


@dataclass(frozen=True)
class AssetInfo:
    pair: str
    price_decimals: int
    volume_decimals: int


@dataclass(frozen=True)
class TradePage:
    ticks: List[Tick] = field(default_factory=list)
    last: str = ""

    @property
    def max_sequence_id(self) -> int | None:
        if not self.ticks:
            return None
        return max(t.sequence_id for t in self.ticks)


def micros_to_datetime(micros: int) -> datetime:
    try:
        return datetime.fromtimestamp(int(micros) / 1_000_000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise DateConversion(f"cannot convert {micros!r} microseconds to a date") from e


def seconds_to_datetime(seconds: int) -> datetime:
    try:
        return datetime.fromtimestamp(int(seconds), tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise DateConversion(f"cannot convert {seconds!r} seconds to a date") from e


def ticks_to_dataframe(ticks: Iterable[Tick]) -> pd.DataFrame:
    """Map ticks into the canonical frame: id, time, price, volume, side, order_type, misc.

    - id/time: int64 (time in epoch microseconds)
    - price/volume: float64
    - sorted ascending by id
    """
    rows = [
        {
            "id": t.sequence_id,
            "time": t.timestamp_micros,
            "price": t.price,
            "volume": t.volume,
            "side": t.side,
            "order_type": t.order_type,
            "misc": t.misc,
        }
        for t in ticks
    ]
    if not rows:
        return pd.DataFrame(columns=TICK_COLUMNS).astype(
            {"id": "int64", "time": "int64", "price": float, "volume": float,
             "side": object, "order_type": object, "misc": object}
        )
    df = pd.DataFrame(rows, columns=TICK_COLUMNS)
    df = df.astype({"id": "int64", "time": "int64", "price": float, "volume": float})
    return df.sort_values("id", kind="mergesort").reset_index(drop=True)


def dataframe_to_ticks(df: pd.DataFrame) -> List[Tick]:
    out: List[Tick] = []
    has_flags = {"side", "order_type", "misc"}.issubset(df.columns)
    for row in df.itertuples(index=False):
        out.append(
            Tick(
                sequence_id=int(row.id),
                timestamp_micros=int(row.time),
                price=float(row.price),
                volume=float(row.volume),
                side=str(row.side or "") if has_flags else "",
                order_type=str(row.order_type or "") if has_flags else "",
                misc=str(row.misc or "") if has_flags else "",
            )
        )
    return out
