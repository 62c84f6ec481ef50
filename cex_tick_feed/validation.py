from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

import numpy as np

from .db import TickStore
from .errors import StorageError
from .log import get_logger, log_event


logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 10_000


@dataclass(frozen=True)
class IntegrityReport:
    table: str
    first_id: Optional[int] = None
    last_id: Optional[int] = None
    total_scanned: int = 0
    missing_ids: Tuple[int, ...] = ()
    ok: bool = False
    error: Optional[str] = None
    completed: bool = False


def missing_between(ids: np.ndarray, prev: Optional[int] = None) -> List[int]:
    """Ids absent from a sorted id array, also counting the jump from `prev`."""
    if prev is not None:
        ids = np.concatenate(([prev], ids))
    if len(ids) < 2:
        return []
    diffs = np.diff(ids)
    out: List[int] = []
    for pos in np.nonzero(diffs > 1)[0]:
        out.extend(range(int(ids[pos]) + 1, int(ids[pos + 1])))
    return out


@dataclass
class _Scan:
    table: str
    first_id: int
    last_id: int
    chunk_size: int
    lo: int = 0
    prev: Optional[int] = None
    scanned: int = 0
    missing: List[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.lo = self.first_id

    @property
    def done(self) -> bool:
        return self.lo > self.last_id

    def step(self, store: TickStore) -> None:
        hi = min(self.lo + self.chunk_size, self.last_id + 1)
        ids = store.fetch_ids(self.table, self.lo, hi)
        self.missing.extend(missing_between(ids, self.prev))
        if len(ids):
            self.prev = int(ids[-1])
        self.scanned += len(ids)
        self.lo = hi

    def report(self, completed: bool, error: Optional[str] = None) -> IntegrityReport:
        return IntegrityReport(
            table=self.table,
            first_id=self.first_id,
            last_id=self.last_id,
            total_scanned=self.scanned,
            missing_ids=tuple(self.missing),
            ok=completed and error is None and not self.missing,
            error=error,
            completed=completed,
        )


class IntegrityVerifier:
    """Scan an asset table for gaps in its sequence ids, one id window at a time.

    Only ids are read. A store failure mid-scan yields a report with
    `completed=False` and whatever was found up to that point.
    """

    def __init__(self, store: TickStore) -> None:
        self.store = store

    def _begin(self, table: str, chunk_size: int):
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        bounds = self.store.id_bounds(table)
        if bounds is None:
            return IntegrityReport(table=table, ok=True, completed=True)
        first_id, last_id, _ = bounds
        return _Scan(table, first_id, last_id, chunk_size)

    def check(self, table: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> IntegrityReport:
        try:
            scan = self._begin(table, chunk_size)
        except StorageError as e:
            return self._failed(IntegrityReport(table=table), e)
        if isinstance(scan, IntegrityReport):
            return scan
        try:
            while not scan.done:
                scan.step(self.store)
        except StorageError as e:
            return self._failed(scan.report(False), e)
        return self._finished(scan)

    async def check_async(self, table: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> IntegrityReport:
        """Same as `check`, reading each chunk in a worker thread; cancellable between chunks."""
        try:
            scan = await asyncio.to_thread(self._begin, table, chunk_size)
        except StorageError as e:
            return self._failed(IntegrityReport(table=table), e)
        if isinstance(scan, IntegrityReport):
            return scan
        try:
            while not scan.done:
                await asyncio.to_thread(scan.step, self.store)
        except StorageError as e:
            return self._failed(scan.report(False), e)
        return self._finished(scan)

    def check_all(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Dict[str, IntegrityReport]:
        """Verify every asset table in the store."""
        return {table: self.check(table, chunk_size) for table in self.store.list_assets()}

    def _finished(self, scan: _Scan) -> IntegrityReport:
        report = scan.report(True)
        level = logging.INFO if report.ok else logging.WARNING
        log_event(logger, level, "verify.done", table=report.table, scanned=report.total_scanned,
                  missing=len(report.missing_ids), first_id=report.first_id, last_id=report.last_id)
        return report

    def _failed(self, partial: IntegrityReport, err: StorageError) -> IntegrityReport:
        log_event(logger, logging.ERROR, "verify.failed", table=partial.table,
                  scanned=partial.total_scanned, err=str(err))
        return replace(partial, ok=False, completed=False, error=str(err))
