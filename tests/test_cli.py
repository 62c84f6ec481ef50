from __future__ import annotations

import json
from collections import defaultdict

import pytest

import cex_tick_feed.cli as cli_mod
from cex_tick_feed.cli import main, parse_args
from cex_tick_feed.config import FeedConfig, load_config, save_config
from cex_tick_feed.db import TickStore
from cex_tick_feed.ticks import AssetInfo, IngestionCursor, TradePage

from conftest import BASE_TS, FakeClient, make_tick

TABLE = "asset_kraken_xbtusd"


@pytest.fixture
def paths(tmp_path):
    config_path = tmp_path / "feed.json"
    db_path = tmp_path / "ticks.duckdb"
    save_config(FeedConfig(duckdb_path=str(db_path), page_delay=0.0), config_path)
    return config_path, db_path


def _args(paths, *argv):
    config_path, db_path = paths
    return list(argv) + ["--config", str(config_path), "--duckdb", str(db_path)]


def _seed(db_path, ids):
    store = TickStore(db_path)
    store.create_asset(TABLE, AssetInfo("XBTUSD", 1, 8), IngestionCursor(TABLE, 0, "0"))
    ticks = [make_tick(i, BASE_TS + 60 * i, price=100.0 + i) for i in ids]
    store.commit_page(TABLE, ticks, IngestionCursor(TABLE, max(ids) + 1, "t"))
    return store


def test_parse_args():
    cfg = parse_args(["candles", "XBTUSD", "--period", "4h", "--limit", "500", "--debug"])
    assert (cfg.command, cfg.pair, cfg.period, cfg.limit, cfg.debug) == ("candles", "XBTUSD", "4h", 500, True)
    cfg = parse_args(["verify", "--chunk-size", "100"])
    assert cfg.command == "verify" and cfg.chunk_size == 100 and cfg.pair is None
    cfg = parse_args(["ingest"])
    assert cfg.exchange == "kraken" and cfg.duckdb_path is None


def test_parse_args_requires_command():
    with pytest.raises(SystemExit):
        parse_args([])


def test_ingest(paths, monkeypatch, capsys):
    page = TradePage(ticks=[make_tick(i, BASE_TS + i) for i in (1, 2, 3)], last="next")
    client = FakeClient(defaultdict(lambda: page))
    monkeypatch.setattr(cli_mod, "get_exchange_client", lambda name, **kw: client)

    assert main(_args(paths, "ingest")) == 0
    out = capsys.readouterr().out
    assert "kraken:XBTUSD: started" in out
    assert "kraken:XBTUSD: finished" in out
    assert "written=3" in out
    assert TickStore(paths[1]).get_cursor(TABLE) == IngestionCursor(TABLE, 4, "next")


def test_ingest_failure_exit_code(paths, monkeypatch, capsys):
    from cex_tick_feed.errors import BadStatusError

    client = FakeClient({}, fail_on={"XBTUSD": BadStatusError(503, "https://example")})
    monkeypatch.setattr(cli_mod, "get_exchange_client", lambda name, **kw: client)
    assert main(_args(paths, "ingest")) == 2
    assert "HTTP 503" in capsys.readouterr().err


def test_add_and_remove(paths, monkeypatch):
    monkeypatch.setattr(cli_mod, "get_exchange_client", lambda name, **kw: FakeClient({}))
    config_path, db_path = paths

    assert main(_args(paths, "add", "ETHUSD")) == 0
    assert TickStore(db_path).has_asset("asset_kraken_ethusd")
    assert "ETHUSD" in load_config(config_path).exchanges["kraken"]

    assert main(_args(paths, "remove", "ETHUSD")) == 0
    assert not TickStore(db_path).has_asset("asset_kraken_ethusd")
    assert "ETHUSD" not in json.loads(config_path.read_text())["exchanges"]["kraken"]


def test_verify_exit_codes(paths, capsys):
    _seed(paths[1], [1, 2, 3])
    assert main(_args(paths, "verify")) == 0

    store = TickStore(paths[1])
    store.commit_page(TABLE, [make_tick(6, BASE_TS + 360)], IngestionCursor(TABLE, 7, "t2"))
    assert main(_args(paths, "verify", "--pair", "XBTUSD", "--chunk-size", "2")) == 1
    assert "missing_ids=[4, 5]" in capsys.readouterr().out


def test_candles(paths, tmp_path, capsys):
    _seed(paths[1], list(range(1, 121)))
    persist = tmp_path / "artifacts"
    assert main(_args(paths, "candles", "XBTUSD", "--period", "1h", "--persist-dir", str(persist))) == 0
    files = list((persist / f"{TABLE}_1h").glob("*_bars.csv"))
    assert len(files) == 1
    assert "wrote 3 bars" in capsys.readouterr().out


def test_candles_errors(paths, capsys):
    assert main(_args(paths, "candles", "XBTUSD")) == 2
    _seed(paths[1], [1, 2, 3])
    assert main(_args(paths, "candles", "XBTUSD", "--period", "1x")) == 2
    assert "invalid period" in capsys.readouterr().err


def test_list(paths, capsys):
    _seed(paths[1], [1, 2, 3])
    assert main(_args(paths, "list")) == 0
    out = capsys.readouterr().out
    assert f"asset=kraken:XBTUSD table={TABLE} rows=3 next_id=4" in out
    assert "last_tick=2023-11-14 00:03:00" in out


def test_list_empty_table_has_no_last_tick(paths, capsys):
    store = TickStore(paths[1])
    store.create_asset(TABLE, AssetInfo("XBTUSD", 1, 8), IngestionCursor(TABLE, 0, "0"))
    assert main(_args(paths, "list")) == 0
    assert f"table={TABLE} rows=0 next_id=0 last_tick=None" in capsys.readouterr().out


def test_parse_args_rejects_unknown_exchange(capsys):
    with pytest.raises(SystemExit):
        parse_args(["list", "--exchange", "mtgox"])
    assert "invalid choice" in capsys.readouterr().err
