from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .bars import BarSeries


SNAPSHOT_COLUMNS = ["open_at", "close_at", "open", "high", "low", "close", "volume"]


@dataclass(frozen=True)
class PersistConfig:
    """Where bar snapshots of one asset table at one period are written."""

    root_dir: Path
    asset_table: str
    period: str

    @property
    def slug(self) -> str:
        return f"{self.asset_table}_{self.period}"

    def snapshot_dir(self) -> Path:
        d = Path(self.root_dir) / self.slug
        d.mkdir(parents=True, exist_ok=True)
        return d


def snapshot_run_id(now: Optional[datetime] = None) -> str:
    """UTC stamp naming one snapshot, e.g. 20240101_000000Z."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y%m%d_%H%M%SZ")


def write_bars_snapshot(cfg: PersistConfig, run_id: str, series: BarSeries) -> Path:
    out = cfg.snapshot_dir() / f"{run_id}_bars.csv"
    df = series.to_dataframe().loc[:, SNAPSHOT_COLUMNS]
    df.to_csv(out, index=False)
    return out
