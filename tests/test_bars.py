from __future__ import annotations

from dataclasses import replace

import pytest

from cex_tick_feed.bars import BAR_COLUMNS, BarSeries, build_bar, build_candles
from cex_tick_feed.errors import InvalidPeriod, NotEnoughData

from conftest import BASE_TS, make_tick


def _ticks(first_id: int, last_id: int, step: float = 1.0):
    return [
        make_tick(i, BASE_TS + step * i, price=100.0 + (i % 4), volume=0.1 * i)
        for i in range(first_id, last_id + 1)
    ]


def test_build_bar_ohlcv():
    ticks = [
        make_tick(1, BASE_TS, price=10.0, volume=1.0),
        make_tick(2, BASE_TS + 1, price=12.0, volume=2.0),
        make_tick(3, BASE_TS + 2, price=9.0, volume=0.5),
        make_tick(4, BASE_TS + 3, price=11.0, volume=1.5),
    ]
    bar = build_bar(ticks)
    assert (bar.open, bar.high, bar.low, bar.close) == (10.0, 12.0, 9.0, 11.0)
    assert bar.volume == pytest.approx(5.0)
    assert bar.open_at == ticks[0].datetime
    assert bar.close_at == ticks[-1].datetime
    assert bar.tick_count == 4


def test_build_bar_requires_ticks():
    with pytest.raises(ValueError):
        build_bar([])


def test_tick_count_bars_have_exact_size_except_last():
    ticks = _ticks(1, 10)
    series = BarSeries.build(ticks, "3t")
    assert [b.tick_count for b in series] == [3, 3, 3, 1]
    assert sum(b.volume for b in series) == pytest.approx(sum(t.volume for t in ticks))


def test_leading_partial_bar_keeps_volume():
    ticks = _ticks(11, 20)
    series = BarSeries.build(ticks, "3t")
    assert [b.tick_count for b in series] == [2, 3, 3, 2]
    assert sum(b.volume for b in series) == pytest.approx(sum(t.volume for t in ticks))


def test_overlapping_windows_share_cut_times():
    full = BarSeries.build(_ticks(10, 16), "3t")
    tail = BarSeries.build(_ticks(13, 16), "3t")
    full_opens = {b.open_at for b in full}
    assert {b.open_at for b in tail} <= full_opens
    assert full[1].open_at == tail[0].open_at


def test_fixed_period_bars_are_exactly_one_period():
    ticks = _ticks(1, 500, step=37.0)
    series = BarSeries.build(ticks, "15m")
    assert len(series) > 1
    for bar in series:
        assert (bar.close_at - bar.open_at).total_seconds() == 900
    for a, b in zip(series.bars, series.bars[1:]):
        assert a.close_at <= b.open_at
    assert sum(b.volume for b in series) == pytest.approx(sum(t.volume for t in ticks))


def test_series_is_reiterable_and_checks_out():
    series = BarSeries.build(_ticks(1, 50, step=20.0), "5m")
    assert list(series) == list(series)
    assert series.integrity_check()
    assert series.period is not None and str(series.period) == "5m"


def test_integrity_check_detects_tampering():
    series = BarSeries.build(_ticks(1, 10), "3t")
    bad_bar = replace(series.bars[1], source_range=(4, 6))
    broken = replace(series, bars=(series.bars[0], bad_bar) + series.bars[2:])
    assert not broken.integrity_check()


def test_empty_series():
    series = BarSeries.empty()
    assert len(series) == 0
    assert list(series) == []
    assert series.integrity_check()
    assert list(series.to_dataframe().columns) == BAR_COLUMNS


def test_to_dataframe():
    series = BarSeries.build(_ticks(1, 10), "5t")
    df = series.to_dataframe()
    assert list(df.columns) == BAR_COLUMNS
    assert len(df) == len(series)
    assert df["start"].tolist() == [0, 5]
    assert df["end"].tolist() == [5, 10]


def test_build_errors():
    with pytest.raises(NotEnoughData):
        BarSeries.build(_ticks(1, 1), "1h")
    with pytest.raises(InvalidPeriod):
        BarSeries.build(_ticks(1, 5), "1x")


def test_build_candles_from_store(seeded_store):
    store = seeded_store("asset_kraken_xbtusd", list(range(1, 121)))
    series = build_candles(store, "asset_kraken_xbtusd", "1h")
    # one tick per minute starting one minute into the hour
    assert [b.tick_count for b in series] == [59, 60, 1]
    assert series.integrity_check()

    recent = build_candles(store, "asset_kraken_xbtusd", "10t", limit=25)
    assert recent.ticks[0].sequence_id == 96
    assert [b.tick_count for b in recent] == [5, 10, 10]
