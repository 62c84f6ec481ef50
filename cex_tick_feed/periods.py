from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Union

import pandas as pd

from .errors import InvalidPeriod


class PeriodUnit(str, Enum):
    SECOND = "s"
    MINUTE = "m"
    HOUR = "h"
    DAY = "d"
    WEEK = "w"
    MONTH = "M"
    TICK = "t"


VALID_PERIOD_SYMBOLS = tuple(u.value for u in PeriodUnit)

_SECONDS_PER_UNIT = {
    PeriodUnit.SECOND: 1,
    PeriodUnit.MINUTE: 60,
    PeriodUnit.HOUR: 3600,
    PeriodUnit.DAY: 86400,
}


@dataclass(frozen=True)
class PeriodSpec:
    unit: PeriodUnit
    count: int

    def __post_init__(self) -> None:
        if int(self.count) < 1:
            raise InvalidPeriod(f"{self.count}{self.unit.value}", "count must be >= 1")

    @property
    def is_tick(self) -> bool:
        return self.unit is PeriodUnit.TICK

    @property
    def is_calendar(self) -> bool:
        return self.unit in (PeriodUnit.WEEK, PeriodUnit.MONTH)

    @property
    def is_fixed(self) -> bool:
        return self.unit in _SECONDS_PER_UNIT

    @property
    def seconds(self) -> int:
        return seconds_in_period(self.count, self.unit)

    def __str__(self) -> str:
        return f"{self.count}{self.unit.value}"


PeriodLike = Union[str, PeriodSpec]


def parse_period(text: str) -> PeriodSpec:
    """Parse a period expression such as "15m", "1h", "5w", "1M" or "100t".

    The last character is the unit symbol; everything before it must be a
    positive decimal count.
    """
    if not isinstance(text, str) or len(text) < 2:
        raise InvalidPeriod(text, "expected <count><unit>")
    symbol = text[-1]
    if symbol not in VALID_PERIOD_SYMBOLS:
        raise InvalidPeriod(text, f"unknown unit {symbol!r}")
    digits = text[:-1]
    # str.isdigit accepts superscripts and other unicode digits
    if not (digits.isascii() and digits.isdigit()):
        raise InvalidPeriod(text, "count must be a positive integer")
    count = int(digits)
    if count < 1:
        raise InvalidPeriod(text, "count must be >= 1")
    return PeriodSpec(PeriodUnit(symbol), count)


def as_period(period: PeriodLike) -> PeriodSpec:
    if isinstance(period, PeriodSpec):
        return period
    return parse_period(period)


def seconds_in_period(count: int, unit: Union[PeriodUnit, str]) -> int:
    """Fixed length in seconds of `count` units. Week, month and tick periods
    have no fixed length and are rejected."""
    try:
        unit = PeriodUnit(unit)
    except ValueError:
        raise InvalidPeriod(f"{count}{unit}", f"unknown unit {unit!r}") from None
    if unit not in _SECONDS_PER_UNIT:
        raise InvalidPeriod(f"{count}{unit.value}", "period has no fixed length in seconds")
    return _SECONDS_PER_UNIT[unit] * int(count)


def history_start(period: PeriodLike, now: datetime | None = None) -> datetime:
    """Start of a history window of length `period` that ends at `now` (UTC)."""
    spec = as_period(period)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if spec.is_tick:
        raise InvalidPeriod(str(spec), "a tick count does not describe a time window")
    if spec.is_fixed:
        return now - timedelta(seconds=spec.seconds)
    if spec.unit is PeriodUnit.WEEK:
        return now - timedelta(days=7 * spec.count)
    start = pd.Timestamp(now) - pd.DateOffset(months=spec.count)
    return start.to_pydatetime()
