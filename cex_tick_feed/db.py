from __future__ import annotations

import re
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import duckdb  # type: ignore
import numpy as np
import pandas as pd

from .errors import StorageError
from .log import get_logger
from .ticks import AssetInfo, IngestionCursor, Tick, dataframe_to_ticks, ticks_to_dataframe


CURSOR_TABLE = "ingestion_cursors"
MIN_DECIMALS = 8
MAX_DECIMAL_WIDTH = 38
_INTEGER_DIGITS = 18

_TABLE_RE = re.compile(r"^asset_[a-z0-9]+_[a-z0-9]+$")

_WRITE_LOCKS: Dict[str, threading.Lock] = {}
_WRITE_LOCKS_GUARD = threading.Lock()

logger = get_logger(__name__)


def _write_lock_for(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _WRITE_LOCKS_GUARD:
        lock = _WRITE_LOCKS.get(key)
        if lock is None:
            lock = _WRITE_LOCKS[key] = threading.Lock()
        return lock


def _check_table(table: str) -> str:
    if not _TABLE_RE.match(table):
        raise ValueError(f"invalid asset table name: {table!r}")
    return table


def decimal_type(exchange_decimals: int) -> str:
    """DECIMAL column type for a price/volume with the exchange's precision.

    The scale never drops below MIN_DECIMALS whatever the exchange reports.
    """
    scale = max(int(exchange_decimals), MIN_DECIMALS)
    scale = min(scale, MAX_DECIMAL_WIDTH - _INTEGER_DIGITS)
    width = min(scale + _INTEGER_DIGITS, MAX_DECIMAL_WIDTH)
    return f"DECIMAL({width},{scale})"


class TickStore:
    """DuckDB-backed tick tables (one per asset) plus the shared cursor table.

    Every operation opens its own connection, so a store can be shared by
    concurrent ingestion tasks and the verifier. Write transactions on the
    same database file are serialized in-process.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._write_lock = _write_lock_for(self.path)
        self.ensure_cursor_table()

    def _connect(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            return duckdb.connect(str(self.path))
        except duckdb.Error as e:
            raise StorageError(f"cannot open {self.path}: {e}", e) from e

    # -- schema ------------------------------------------------------------

    def ensure_cursor_table(self) -> None:
        with self._write_lock:
            con = self._connect()
            try:
                con.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {CURSOR_TABLE} (
                      asset VARCHAR PRIMARY KEY,
                      next_sequence_id BIGINT NOT NULL,
                      next_page_token VARCHAR NOT NULL,
                      updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )
            except duckdb.Error as e:
                raise StorageError(f"cannot create {CURSOR_TABLE}: {e}", e) from e
            finally:
                con.close()

    def create_asset(self, table: str, info: AssetInfo, cursor: IngestionCursor) -> None:
        """Create the tick table and its initial cursor row in one transaction."""
        _check_table(table)
        with self._write_lock:
            con = self._connect()
            try:
                con.begin()
                con.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                      id BIGINT PRIMARY KEY,
                      price {decimal_type(info.price_decimals)} NOT NULL,
                      volume {decimal_type(info.volume_decimals)} NOT NULL,
                      time BIGINT NOT NULL,
                      side VARCHAR,
                      order_type VARCHAR,
                      misc VARCHAR
                    );
                    """
                )
                con.execute(
                    f"""
                    INSERT INTO {CURSOR_TABLE} (asset, next_sequence_id, next_page_token)
                    SELECT ?, ?, ?
                    WHERE NOT EXISTS (SELECT 1 FROM {CURSOR_TABLE} WHERE asset = ?);
                    """,
                    [table, int(cursor.next_sequence_id), str(cursor.next_page_token), table],
                )
                con.commit()
            except duckdb.Error as e:
                _rollback(con)
                raise StorageError(f"cannot create asset table {table}: {e}", e) from e
            finally:
                con.close()
        logger.info("created asset table %s price=%s volume=%s", table,
                    decimal_type(info.price_decimals), decimal_type(info.volume_decimals))

    def drop_asset(self, table: str) -> None:
        _check_table(table)
        with self._write_lock:
            con = self._connect()
            try:
                con.begin()
                con.execute(f"DROP TABLE IF EXISTS {table};")
                con.execute(f"DELETE FROM {CURSOR_TABLE} WHERE asset = ?;", [table])
                con.commit()
            except duckdb.Error as e:
                _rollback(con)
                raise StorageError(f"cannot drop asset table {table}: {e}", e) from e
            finally:
                con.close()

    def list_assets(self) -> List[str]:
        con = self._connect()
        try:
            rows = con.execute(
                "SELECT table_name FROM information_schema.tables ORDER BY table_name"
            ).fetchall()
        except duckdb.Error as e:
            raise StorageError(f"cannot list tables: {e}", e) from e
        finally:
            con.close()
        return [r[0] for r in rows if _TABLE_RE.match(r[0])]

    def has_asset(self, table: str) -> bool:
        _check_table(table)
        return table in self.list_assets()

    # -- cursor + page writes ----------------------------------------------

    def get_cursor(self, table: str) -> Optional[IngestionCursor]:
        _check_table(table)
        con = self._connect()
        try:
            row = con.execute(
                f"SELECT next_sequence_id, next_page_token FROM {CURSOR_TABLE} WHERE asset = ?",
                [table],
            ).fetchone()
        except duckdb.Error as e:
            raise StorageError(f"cannot read cursor of {table}: {e}", e) from e
        finally:
            con.close()
        if row is None:
            return None
        return IngestionCursor(asset=table, next_sequence_id=int(row[0]), next_page_token=str(row[1]))

    def commit_page(self, table: str, ticks: Sequence[Tick], cursor: IngestionCursor) -> int:
        """Append a page of ticks and advance the asset's cursor atomically.

        Rows whose id is already stored are skipped. Returns the number of
        rows inserted. On failure nothing is written and the cursor stays put.
        """
        _check_table(table)
        df = ticks_to_dataframe(ticks).drop_duplicates("id", keep="first")
        with self._write_lock:
            con = self._connect()
            try:
                con.begin()
                inserted = 0
                if not df.empty:
                    con.register("page_df", df)
                    inserted = con.execute(
                        f"""
                        SELECT COUNT(*) FROM page_df p
                        WHERE NOT EXISTS (SELECT 1 FROM {table} d WHERE d.id = p.id)
                        """
                    ).fetchone()[0]
                    con.execute(
                        f"""
                        INSERT INTO {table} (id, price, volume, time, side, order_type, misc)
                        SELECT p.id, p.price, p.volume, p.time, p.side, p.order_type, p.misc
                        FROM page_df p
                        WHERE NOT EXISTS (SELECT 1 FROM {table} d WHERE d.id = p.id)
                        """
                    )
                    con.unregister("page_df")
                exists = con.execute(
                    f"SELECT COUNT(*) FROM {CURSOR_TABLE} WHERE asset = ?", [table]
                ).fetchone()[0]
                if not exists:
                    raise StorageError(f"no cursor row for {table}")
                con.execute(
                    f"""
                    UPDATE {CURSOR_TABLE}
                    SET next_sequence_id = ?, next_page_token = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE asset = ?
                    """,
                    [int(cursor.next_sequence_id), str(cursor.next_page_token), table],
                )
                con.commit()
                return int(inserted)
            except StorageError:
                _rollback(con)
                raise
            except duckdb.Error as e:
                _rollback(con)
                raise StorageError(f"page write to {table} failed: {e}", e) from e
            finally:
                con.close()

    # -- reads ---------------------------------------------------------------

    def id_bounds(self, table: str) -> Optional[tuple[int, int, int]]:
        _check_table(table)
        con = self._connect()
        try:
            res = con.execute(f"SELECT MIN(id), MAX(id), COUNT(*) FROM {table}").fetchone()
        except duckdb.Error as e:
            raise StorageError(f"cannot read id bounds of {table}: {e}", e) from e
        finally:
            con.close()
        if res is None or res[0] is None:
            return None
        return int(res[0]), int(res[1]), int(res[2])

    def fetch_ids(self, table: str, lo: int, hi: int) -> np.ndarray:
        """Ids in [lo, hi), ascending."""
        _check_table(table)
        con = self._connect()
        try:
            df = con.execute(
                f"SELECT id FROM {table} WHERE id >= ? AND id < ? ORDER BY id",
                [int(lo), int(hi)],
            ).fetch_df()
        except duckdb.Error as e:
            raise StorageError(f"cannot read ids [{lo}, {hi}) of {table}: {e}", e) from e
        finally:
            con.close()
        return df["id"].to_numpy(dtype="int64")

    def fetch_ticks(self, table: str, limit: Optional[int] = None) -> List[Tick]:
        """The most recent `limit` ticks (all when None), in ascending id order."""
        return dataframe_to_ticks(self.read_frame(table, limit=limit))

    def fetch_last_tick(self, table: str) -> Optional[Tick]:
        ticks = self.fetch_ticks(table, limit=1)
        return ticks[0] if ticks else None

    def first_tick_time(self, table: str) -> Optional[int]:
        """Earliest stored tick time in epoch microseconds."""
        _check_table(table)
        con = self._connect()
        try:
            res = con.execute(f"SELECT MIN(time) FROM {table}").fetchone()
        except duckdb.Error as e:
            raise StorageError(f"cannot read first tick time of {table}: {e}", e) from e
        finally:
            con.close()
        if res is None or res[0] is None:
            return None
        return int(res[0])

    def read_frame(self, table: str, limit: Optional[int] = None) -> pd.DataFrame:
        _check_table(table)
        q = f"""
            SELECT id, time, CAST(price AS DOUBLE) AS price, CAST(volume AS DOUBLE) AS volume,
                   side, order_type, misc
            FROM {table}
            ORDER BY id DESC
        """
        params: list = []
        if limit is not None:
            q += " LIMIT ?"
            params.append(int(limit))
        con = self._connect()
        try:
            df = con.execute(q, params).fetch_df()
        except duckdb.Error as e:
            raise StorageError(f"cannot read ticks of {table}: {e}", e) from e
        finally:
            con.close()
        return df.sort_values("id").reset_index(drop=True)


def _rollback(con) -> None:
    try:
        con.rollback()
    except duckdb.Error:
        # no active transaction (the failure happened before BEGIN took effect)
        pass
