from __future__ import annotations

import json

import pytest

from cex_tick_feed.config import FeedConfig, load_config, save_config
from cex_tick_feed.errors import ConfigError


def test_missing_config_is_created_with_defaults(tmp_path):
    path = tmp_path / "feed.json"
    cfg = load_config(path)
    assert cfg == FeedConfig()
    assert path.exists()
    raw = json.loads(path.read_text())
    assert raw["history_window"] == "30d"
    assert raw["exchanges"] == {"kraken": ["XBTUSD"]}


def test_round_trip(tmp_path):
    path = tmp_path / "feed.json"
    cfg = FeedConfig(duckdb_path="x.duckdb", history_window="2w", page_delay=0.5)
    cfg.add_pair("kraken", "ETHUSD")
    save_config(cfg, path)
    assert load_config(path) == cfg


def test_active_assets():
    cfg = FeedConfig(
        exchanges={"kraken": ["XBTUSD", "ETHUSD"], "other": ["ABC"]},
        active_exchanges={"kraken": True, "other": False},
    )
    assert cfg.active_assets() == [("kraken", "XBTUSD"), ("kraken", "ETHUSD")]


def test_add_and_remove_pair():
    cfg = FeedConfig()
    assert cfg.add_pair("kraken", "ETHUSD")
    assert not cfg.add_pair("kraken", "ETHUSD")
    assert cfg.remove_pair("kraken", "ETHUSD")
    assert not cfg.remove_pair("kraken", "ETHUSD")
    assert cfg.exchanges["kraken"] == ["XBTUSD"]


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[1, 2]",
        json.dumps({"history_window": "thirty days"}),
        json.dumps({"history_window": "100t"}),
        json.dumps({"page_delay": -1}),
        json.dumps({"verify_chunk_size": 0}),
        json.dumps({"unknown_key": 1}),
        json.dumps({"exchanges": {"kraken": "XBTUSD"}}),
    ],
)
def test_malformed_config(tmp_path, content):
    path = tmp_path / "feed.json"
    path.write_text(content)
    with pytest.raises(ConfigError):
        load_config(path)
