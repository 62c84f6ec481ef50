from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import List, Sequence, Tuple

from .errors import DateConversion, NotEnoughData
from .periods import PeriodSpec, PeriodUnit
from .ticks import Tick, micros_to_datetime, seconds_to_datetime


# Weeks open on Sunday 00:00 UTC; multi-week grids count from the first
# Sunday after the unix epoch.
_EPOCH_SUNDAY = date(1970, 1, 4)


@dataclass
class BoundaryList:
    """Parallel lists describing the bars to build: start index, open time, close time."""

    starts: List[int] = field(default_factory=list)
    open_times: List[datetime] = field(default_factory=list)
    close_times: List[datetime] = field(default_factory=list)

    def append(self, start: int, open_at: datetime, close_at: datetime) -> None:
        self.starts.append(start)
        self.open_times.append(open_at)
        self.close_times.append(close_at)

    def __len__(self) -> int:
        return len(self.starts)

    def ranges(self, n_ticks: int) -> List[Tuple[int, int]]:
        """[start, end) tick ranges; the last one runs to the end of input."""
        ends = self.starts[1:] + [n_ticks]
        return list(zip(self.starts, ends))


def compute_boundaries(ticks: Sequence[Tick], spec: PeriodSpec) -> BoundaryList:
    """Compute bar boundaries for time-ordered `ticks` under `spec`.

    Raises NotEnoughData for empty/single-tick input or when no boundary can
    be placed, DateConversion when a timestamp cannot be represented.
    """
    if len(ticks) < 2:
        raise NotEnoughData(f"need at least 2 ticks, got {len(ticks)}")

    if spec.is_tick:
        out = _tick_count_boundaries(ticks, spec.count)
    elif spec.is_calendar:
        out = _calendar_boundaries(ticks, spec)
    else:
        out = _fixed_boundaries(ticks, spec.seconds)

    if not out.starts:
        raise NotEnoughData(f"no {spec} boundary falls inside the tick range")
    return out


# ---------------------------------------------------------------------------
# Tick-count
# ---------------------------------------------------------------------------


def tick_grid_offset(first_id: int, count: int) -> int:
    """Index of the first grid cut in a window whose first tick has `first_id`.

    Bucket k holds ids k*count+1 .. (k+1)*count, so cuts sit on ids where
    (id - 1) % count == 0 regardless of where the window starts.
    """
    return (count - (first_id - 1) % count) % count


def _tick_count_boundaries(ticks: Sequence[Tick], count: int) -> BoundaryList:
    n = len(ticks)
    if n < count:
        raise NotEnoughData(f"{n} ticks is fewer than the period of {count} ticks")

    offset = tick_grid_offset(ticks[0].sequence_id, count)
    starts = list(range(offset, n, count))
    if offset > 0:
        # leading ticks belong to a bucket that began before this window
        starts.insert(0, 0)

    out = BoundaryList()
    for k, start in enumerate(starts):
        close_idx = starts[k + 1] if k + 1 < len(starts) else n - 1
        out.append(
            start,
            micros_to_datetime(ticks[start].timestamp_micros),
            micros_to_datetime(ticks[close_idx].timestamp_micros),
        )
    return out


# ---------------------------------------------------------------------------
# Fixed duration (s, m, h, d)
# ---------------------------------------------------------------------------


def candle_open_timestamp(timestamp: int, num_seconds: int) -> int:
    return timestamp - (timestamp % num_seconds)


def candle_close_timestamp(timestamp: int, num_seconds: int) -> int:
    return candle_open_timestamp(timestamp, num_seconds) + num_seconds


def _fixed_boundaries(ticks: Sequence[Tick], num_seconds: int) -> BoundaryList:
    out = BoundaryList()
    close_ts = None
    for i, tick in enumerate(ticks):
        ts = tick.timestamp_seconds
        if close_ts is None or ts >= close_ts:
            open_ts = candle_open_timestamp(ts, num_seconds)
            close_ts = open_ts + num_seconds
            out.append(i, seconds_to_datetime(open_ts), seconds_to_datetime(close_ts))
    return out


# ---------------------------------------------------------------------------
# Calendar (w, M)
# ---------------------------------------------------------------------------


def period_start(dt: datetime, spec: PeriodSpec) -> datetime:
    """Start (00:00 UTC) of the calendar period on the period's grid that contains dt."""
    if spec.unit is PeriodUnit.WEEK:
        days = (dt.date() - _EPOCH_SUNDAY).days
        block = days // (7 * spec.count)
        start = _EPOCH_SUNDAY + timedelta(days=block * 7 * spec.count)
        return datetime(start.year, start.month, start.day, tzinfo=timezone.utc)
    month_index = dt.year * 12 + dt.month - 1
    return _month_start(month_index - month_index % spec.count)


def next_period_start(start: datetime, spec: PeriodSpec) -> datetime:
    """Start of the period following the one that opens at `start`."""
    if spec.unit is PeriodUnit.WEEK:
        try:
            return start + timedelta(days=7 * spec.count)
        except OverflowError as e:
            raise DateConversion(f"week boundary after {start} is out of range") from e
    return _month_start(start.year * 12 + start.month - 1 + spec.count)


def _month_start(month_index: int) -> datetime:
    year, month0 = divmod(month_index, 12)
    try:
        return datetime(year, month0 + 1, 1, tzinfo=timezone.utc)
    except ValueError as e:
        raise DateConversion(f"month boundary {year}-{month0 + 1:02d} is out of range") from e


def _to_micros(dt: datetime) -> int:
    return int(dt.timestamp()) * 1_000_000


def _calendar_boundaries(ticks: Sequence[Tick], spec: PeriodSpec) -> BoundaryList:
    lead_open = period_start(micros_to_datetime(ticks[0].timestamp_micros), spec)
    first_boundary = next_period_start(lead_open, spec)
    first_boundary_us = _to_micros(first_boundary)

    first_idx = next(
        (i for i, t in enumerate(ticks) if t.timestamp_micros >= first_boundary_us),
        None,
    )
    out = BoundaryList()
    if first_idx is None:
        return out

    out.append(0, lead_open, first_boundary)
    close_us = first_boundary_us
    for i in range(first_idx, len(ticks)):
        ts = ticks[i].timestamp_micros
        if ts >= close_us:
            open_at = period_start(micros_to_datetime(ts), spec)
            close_at = next_period_start(open_at, spec)
            close_us = _to_micros(close_at)
            out.append(i, open_at, close_at)
    return out
