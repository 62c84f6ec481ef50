from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Tuple

from .errors import ConfigError, InvalidPeriod
from .log import get_logger, log_event
from .periods import parse_period


logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("cex_tick_feed.json")
DEFAULT_DUCKDB_PATH = "ticks.duckdb"


def _default_exchanges() -> Dict[str, List[str]]:
    return {"kraken": ["XBTUSD"]}


def _default_active() -> Dict[str, bool]:
    return {"kraken": True}


@dataclass
class FeedConfig:
    duckdb_path: str = DEFAULT_DUCKDB_PATH
    history_window: str = "30d"
    exchanges: Dict[str, List[str]] = field(default_factory=_default_exchanges)
    active_exchanges: Dict[str, bool] = field(default_factory=_default_active)
    page_delay: float = 1.0
    request_timeout: float = 15.0
    verify_chunk_size: int = 10_000
    num_bars: int = 1000

    def validate(self) -> None:
        try:
            window = parse_period(self.history_window)
        except InvalidPeriod as e:
            raise ConfigError(f"history_window: {e}") from e
        if window.is_tick:
            raise ConfigError("history_window must be a time period, not a tick count")
        if self.page_delay < 0:
            raise ConfigError("page_delay must be >= 0")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be > 0")
        if self.verify_chunk_size < 1:
            raise ConfigError("verify_chunk_size must be >= 1")
        if self.num_bars < 1:
            raise ConfigError("num_bars must be >= 1")
        for exchange, pairs in self.exchanges.items():
            if not isinstance(pairs, list) or not all(isinstance(p, str) for p in pairs):
                raise ConfigError(f"exchanges.{exchange} must be a list of pair names")

    def active_assets(self) -> List[Tuple[str, str]]:
        """(exchange, pair) for every pair of an exchange switched on in `active_exchanges`."""
        out: List[Tuple[str, str]] = []
        for exchange, pairs in self.exchanges.items():
            if self.active_exchanges.get(exchange, False):
                out.extend((exchange, p) for p in pairs)
        return out

    def add_pair(self, exchange: str, pair: str) -> bool:
        pairs = self.exchanges.setdefault(exchange, [])
        if pair in pairs:
            return False
        pairs.append(pair)
        self.active_exchanges.setdefault(exchange, True)
        return True

    def remove_pair(self, exchange: str, pair: str) -> bool:
        pairs = self.exchanges.get(exchange, [])
        if pair not in pairs:
            return False
        pairs.remove(pair)
        return True


def _from_dict(raw: dict) -> FeedConfig:
    if not isinstance(raw, dict):
        raise ConfigError("config root must be a JSON object")
    known = {f.name for f in fields(FeedConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(unknown)}")
    try:
        cfg = FeedConfig(**raw)
        cfg.page_delay = float(cfg.page_delay)
        cfg.request_timeout = float(cfg.request_timeout)
        cfg.verify_chunk_size = int(cfg.verify_chunk_size)
        cfg.num_bars = int(cfg.num_bars)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid config value: {e}") from e
    cfg.validate()
    return cfg


def save_config(cfg: FeedConfig, path: Path | str) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(asdict(cfg), indent=2) + "\n", encoding="utf-8")
    return p


def load_config(path: Path | str = DEFAULT_CONFIG_PATH) -> FeedConfig:
    """Read the JSON config at `path`; a missing file is created with defaults."""
    p = Path(path)
    if not p.exists():
        cfg = FeedConfig()
        save_config(cfg, p)
        log_event(logger, logging.INFO, "config.created", path=str(p))
        return cfg
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot read config {p}: {e}") from e
    return _from_dict(raw)
