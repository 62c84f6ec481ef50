from __future__ import annotations

import argparse
import asyncio
import sys
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .bars import build_candles
from .config import DEFAULT_CONFIG_PATH, FeedConfig, load_config, save_config
from .db import TickStore
from .errors import FeedError, IngestError, PeriodError
from .exchange import get_exchange_client, supported_exchanges
from .log import setup_logging
from .persistence import PersistConfig, snapshot_run_id, write_bars_snapshot
from .pipeline import ExchangeIngestionPipeline, IngestSummary
from .progress import Error, Finished, Progress, ProgressChannel, Started
from .ticks import AssetKey
from .validation import IntegrityReport, IntegrityVerifier


DEFAULT_EXCHANGE = "kraken"
DEFAULT_TICK_LIMIT = 1_000_000


@dataclass
class RunConfig:
    command: str
    config_path: Path
    duckdb_path: Optional[Path] = None
    exchange: str = DEFAULT_EXCHANGE
    pair: Optional[str] = None
    chunk_size: Optional[int] = None
    period: str = "1h"
    limit: int = DEFAULT_TICK_LIMIT
    persist_dir: Optional[Path] = None
    debug: bool = False


def _pipeline_for(feed: FeedConfig, store: TickStore, exchange: str) -> ExchangeIngestionPipeline:
    client = get_exchange_client(exchange, timeout=feed.request_timeout)
    return ExchangeIngestionPipeline(
        client,
        store,
        history_window=feed.history_window,
        page_delay=feed.page_delay,
    )


async def _print_progress(channel: ProgressChannel) -> None:
    last: Dict[str, int] = {}
    async for event in channel:
        if isinstance(event, Started):
            print(f"[INFO] {event.asset}: started")
        elif isinstance(event, Progress):
            if last.get(event.asset) != event.percent:
                last[event.asset] = event.percent
                print(f"[INFO] {event.asset}: {event.percent}%")
        elif isinstance(event, Finished):
            print(f"[INFO] {event.asset}: finished")
        elif isinstance(event, Error):
            print(f"[ERROR] {event.asset}: {event.message}", file=sys.stderr)


async def _ingest(feed: FeedConfig, store: TickStore, assets: List[Tuple[str, str]]) -> Dict[str, object]:
    by_exchange: Dict[str, List[str]] = defaultdict(list)
    for exchange, pair in assets:
        by_exchange[exchange].append(pair)

    channel = ProgressChannel()
    printer = asyncio.create_task(_print_progress(channel))
    try:
        exchanges = list(by_exchange)
        results = await asyncio.gather(
            *(_pipeline_for(feed, store, ex).ingest_many(by_exchange[ex], channel) for ex in exchanges)
        )
    finally:
        channel.close()
        await printer

    out: Dict[str, object] = {}
    for exchange, per_pair in zip(exchanges, results):
        for pair, res in per_pair.items():
            out[f"{exchange}:{pair}"] = res
    return out


def run_ingest(cfg: RunConfig, feed: FeedConfig, store: TickStore) -> int:
    assets = [(cfg.exchange, cfg.pair)] if cfg.pair else feed.active_assets()
    if not assets:
        print("[WARN] no active assets configured; nothing to ingest")
        return 0
    results = asyncio.run(_ingest(feed, store, assets))

    failed = 0
    for name, res in results.items():
        if isinstance(res, IngestSummary):
            print(
                f"asset={name} pages={res.pages} written={res.ticks_written} "
                f"next_id={res.cursor.next_sequence_id}"
            )
        else:
            failed += 1
            if not isinstance(res, IngestError):
                print(f"[ERROR] {name}: unexpected {type(res).__name__}: {res}", file=sys.stderr)
    return 2 if failed else 0


def run_add(cfg: RunConfig, feed: FeedConfig, store: TickStore) -> int:
    pipeline = _pipeline_for(feed, store, cfg.exchange)
    cursor = asyncio.run(pipeline.add_asset(cfg.pair))
    if feed.add_pair(cfg.exchange, cfg.pair):
        save_config(feed, cfg.config_path)
    print(f"[INFO] added {cfg.exchange}:{cfg.pair} table={cursor.asset} since={cursor.next_page_token}")
    return 0


def run_remove(cfg: RunConfig, feed: FeedConfig, store: TickStore) -> int:
    pipeline = _pipeline_for(feed, store, cfg.exchange)
    asyncio.run(pipeline.remove_asset(cfg.pair))
    if feed.remove_pair(cfg.exchange, cfg.pair):
        save_config(feed, cfg.config_path)
    print(f"[INFO] removed {cfg.exchange}:{cfg.pair}")
    return 0


def _print_report(report: IntegrityReport) -> None:
    line = (
        f"table={report.table} first_id={report.first_id} last_id={report.last_id} "
        f"scanned={report.total_scanned} missing={len(report.missing_ids)} ok={report.ok}"
    )
    if report.error:
        print(f"[ERROR] {line} error={report.error}", file=sys.stderr)
    elif not report.ok:
        preview = ", ".join(str(i) for i in report.missing_ids[:20])
        more = " ..." if len(report.missing_ids) > 20 else ""
        print(f"[WARN] {line} missing_ids=[{preview}{more}]")
    else:
        print(line)


def run_verify(cfg: RunConfig, feed: FeedConfig, store: TickStore) -> int:
    verifier = IntegrityVerifier(store)
    chunk = cfg.chunk_size or feed.verify_chunk_size
    if cfg.pair:
        reports = [verifier.check(AssetKey(cfg.exchange, cfg.pair).table, chunk)]
    else:
        reports = list(verifier.check_all(chunk).values())
    if not reports:
        print("[WARN] no asset tables to verify")
        return 0
    for r in reports:
        _print_report(r)
    if any(r.error for r in reports):
        return 2
    return 0 if all(r.ok for r in reports) else 1


def run_candles(cfg: RunConfig, feed: FeedConfig, store: TickStore) -> int:
    table = AssetKey(cfg.exchange, cfg.pair).table
    if not store.has_asset(table):
        print(f"[ERROR] no tick table for {cfg.exchange}:{cfg.pair}", file=sys.stderr)
        return 2
    try:
        series = build_candles(store, table, cfg.period, limit=cfg.limit)
    except PeriodError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2

    df = series.to_dataframe().tail(feed.num_bars)
    print(df.to_string(index=False))
    if cfg.persist_dir is not None:
        persist_cfg = PersistConfig(cfg.persist_dir, table, cfg.period)
        out = write_bars_snapshot(persist_cfg, snapshot_run_id(), series)
        print(f"[INFO] wrote {len(series)} bars to {out}")
    if cfg.debug and not series.integrity_check():
        print("[WARN] bar series integrity check failed")
        return 1
    return 0


def run_list(cfg: RunConfig, feed: FeedConfig, store: TickStore) -> int:
    tables = store.list_assets()
    if not tables:
        print("[INFO] no assets in store")
    for table in tables:
        key = AssetKey.from_table(table)
        cursor = store.get_cursor(table)
        bounds = store.id_bounds(table)
        last = store.fetch_last_tick(table)
        rows = bounds[2] if bounds else 0
        next_id = cursor.next_sequence_id if cursor else None
        last_at = f"{last.datetime:%Y-%m-%d %H:%M:%S}" if last else None
        print(f"asset={key} table={table} rows={rows} next_id={next_id} last_tick={last_at}")
    return 0


_COMMANDS = {
    "ingest": run_ingest,
    "add": run_add,
    "remove": run_remove,
    "verify": run_verify,
    "candles": run_candles,
    "list": run_list,
}


def run_once(cfg: RunConfig) -> int:
    feed = load_config(cfg.config_path)
    store = TickStore(cfg.duckdb_path or Path(feed.duckdb_path))
    return _COMMANDS[cfg.command](cfg, feed, store)


def parse_args(argv: Optional[list[str]] = None) -> RunConfig:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to JSON config")
    common.add_argument("--duckdb", type=Path, default=None, help="Path to DuckDB file (overrides config)")
    common.add_argument("--exchange", type=str, default=DEFAULT_EXCHANGE, choices=supported_exchanges(), help="Exchange name")
    common.add_argument("--debug", action="store_true", help="Verbose logging")

    p = argparse.ArgumentParser(description="Exchange tick feed: ingest, verify and aggregate trades")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("ingest", parents=[common], help="Download new trades for active assets")
    s.add_argument("--pair", type=str, default=None, help="Only ingest this pair")

    s = sub.add_parser("add", parents=[common], help="Register a pair and create its tick table")
    s.add_argument("pair", type=str)

    s = sub.add_parser("remove", parents=[common], help="Drop a pair's tick table and cursor")
    s.add_argument("pair", type=str)

    s = sub.add_parser("verify", parents=[common], help="Check stored sequence ids for gaps")
    s.add_argument("--pair", type=str, default=None, help="Only verify this pair")
    s.add_argument("--chunk-size", type=int, default=None, help="Ids per scan window")

    s = sub.add_parser("candles", parents=[common], help="Aggregate stored ticks into bars")
    s.add_argument("pair", type=str)
    s.add_argument("--period", type=str, default="1h", help="Bar period, e.g. 15m, 1h, 1w, 1M, 100t")
    s.add_argument("--limit", type=int, default=DEFAULT_TICK_LIMIT, help="Most recent ticks to load")
    s.add_argument("--persist-dir", type=Path, default=None, help="Write a CSV snapshot of the bars here")

    sub.add_parser("list", parents=[common], help="List asset tables and cursors")

    args = p.parse_args(argv)
    return RunConfig(
        command=args.command,
        config_path=args.config,
        duckdb_path=args.duckdb,
        exchange=args.exchange,
        pair=getattr(args, "pair", None),
        chunk_size=getattr(args, "chunk_size", None),
        period=getattr(args, "period", "1h"),
        limit=getattr(args, "limit", DEFAULT_TICK_LIMIT),
        persist_dir=getattr(args, "persist_dir", None),
        debug=args.debug,
    )


def main(argv: Optional[list[str]] = None) -> int:
    cfg = parse_args(argv)
    setup_logging(cfg.debug)
    try:
        return run_once(cfg)
    except (FeedError, ValueError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        if cfg.debug:
            raise
        return 2
    except Exception as e:  # surface clear error message
        print(f"[ERROR] {e}", file=sys.stderr)
        if cfg.debug:
            raise
        return 3


if __name__ == "__main__":
    raise SystemExit(main())
