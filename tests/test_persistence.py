from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pandas as pd

from cex_tick_feed.bars import BarSeries
from cex_tick_feed.persistence import PersistConfig, SNAPSHOT_COLUMNS, snapshot_run_id, write_bars_snapshot

from conftest import BASE_TS, make_tick


def test_write_bars_snapshot(tmp_path):
    ticks = [make_tick(i, BASE_TS + 600 * i, price=100.0 + i) for i in range(1, 13)]
    series = BarSeries.build(ticks, "1h")

    cfg = PersistConfig(tmp_path / "artifacts", "asset_kraken_xbtusd", "1h")
    out = write_bars_snapshot(cfg, "20240101_000000Z", series)
    assert out == tmp_path / "artifacts" / "asset_kraken_xbtusd_1h" / "20240101_000000Z_bars.csv"

    df = pd.read_csv(out)
    assert list(df.columns) == SNAPSHOT_COLUMNS
    assert len(df) == len(series) == 3
    assert df["open"].iloc[0] == 101.0


def test_snapshot_slug_per_period(tmp_path):
    hourly = PersistConfig(tmp_path, "asset_kraken_xbtusd", "1h")
    ticks = PersistConfig(tmp_path, "asset_kraken_xbtusd", "100t")
    assert hourly.slug == "asset_kraken_xbtusd_1h"
    assert hourly.snapshot_dir() != ticks.snapshot_dir()
    assert ticks.snapshot_dir().is_dir()


def test_snapshot_run_id():
    assert snapshot_run_id(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)) == "20240102_030405Z"
    # non-UTC inputs are normalised
    plus_two = timezone(timedelta(hours=2))
    assert snapshot_run_id(datetime(2024, 1, 2, 5, 4, 5, tzinfo=plus_two)) == "20240102_030405Z"


def test_snapshot_run_id_defaults_to_now():
    run_id = snapshot_run_id()
    assert len(run_id) == len("20240101_000000Z")
    assert run_id.endswith("Z")
