from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, Optional, Union

from .db import TickStore
from .errors import IngestError, InvalidPeriod
from .exchange import ExchangeClient
from .log import get_logger, log_event
from .periods import PeriodLike, as_period, history_start
from .progress import Error, Finished, Progress, ProgressChannel, ProgressSink, Started, null_sink, percent_complete
from .ticks import AssetKey, IngestionCursor


logger = get_logger(__name__)

DEFAULT_HISTORY_WINDOW = "30d"
DEFAULT_PAGE_DELAY = 1.0


@dataclass(frozen=True)
class IngestSummary:
    asset: str
    pages: int
    ticks_written: int
    cursor: IngestionCursor


def _sink_of(progress: Union[ProgressChannel, ProgressSink, None]) -> ProgressSink:
    if progress is None:
        return null_sink
    emit = getattr(progress, "emit", None)
    if callable(emit):
        return emit
    return progress  # type: ignore[return-value]


class ExchangeIngestionPipeline:
    """Resumable, page-by-page trade download for one exchange into a TickStore.

    Each asset is a sequential state machine: page N+1 is requested with the
    token persisted after page N. Different assets may run concurrently.
    """

    def __init__(
        self,
        client: ExchangeClient,
        store: TickStore,
        *,
        history_window: PeriodLike = DEFAULT_HISTORY_WINDOW,
        page_delay: float = DEFAULT_PAGE_DELAY,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.store = store
        self.history_window = as_period(history_window)
        if self.history_window.is_tick:
            raise InvalidPeriod(str(self.history_window), "history window must be a time period")
        self.page_delay = float(page_delay)
        self._clock = clock
        self._sleep = sleep

    def asset_key(self, pair: str) -> AssetKey:
        return AssetKey(self.client.name, pair)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    # -- asset lifecycle -----------------------------------------------------

    async def add_asset(self, pair: str) -> IngestionCursor:
        """Create the asset's table and initial cursor unless both exist already."""
        table = self.asset_key(pair).table
        cursor = await asyncio.to_thread(self.store.get_cursor, table)
        if cursor is not None and await asyncio.to_thread(self.store.has_asset, table):
            return cursor

        info = await self.client.fetch_asset_info(pair)
        start = history_start(self.history_window, self._now())
        initial = IngestionCursor(
            asset=table,
            next_sequence_id=0,
            next_page_token=self.client.initial_page_token(start),
        )
        await asyncio.to_thread(self.store.create_asset, table, info, initial)
        log_event(logger, logging.INFO, "ingestion.asset_created", asset=table,
                  price_decimals=info.price_decimals, volume_decimals=info.volume_decimals,
                  since=initial.next_page_token)
        stored = await asyncio.to_thread(self.store.get_cursor, table)
        return stored or initial

    async def remove_asset(self, pair: str) -> None:
        await asyncio.to_thread(self.store.drop_asset, self.asset_key(pair).table)

    # -- ingestion -----------------------------------------------------------

    async def ingest(
        self,
        pair: str,
        progress: Union[ProgressChannel, ProgressSink, None] = None,
        resume_cursor: Optional[IngestionCursor] = None,
    ) -> IngestSummary:
        """Download every page after the asset's cursor until the exchange is caught up.

        Failures emit an Error event and are re-raised; a failed page write
        never advances the cursor, so the next run re-fetches that page.
        """
        emit = _sink_of(progress)
        asset = f"{self.client.name}:{pair}"
        emit(Started(asset))
        log_event(logger, logging.INFO, "ingestion.start", asset=asset)

        pages = 0
        written = 0
        try:
            table = self.asset_key(pair).table
            cursor = resume_cursor or await self.add_asset(pair)
            first_known = await self._first_known_time(table)

            while True:
                page = await self.client.fetch_trades(pair, cursor.next_page_token)
                pages += 1

                fresh = [t for t in page.ticks if t.sequence_id >= cursor.next_sequence_id]
                max_id = page.max_sequence_id
                next_id = cursor.next_sequence_id if max_id is None else max(max_id + 1, cursor.next_sequence_id)
                next_cursor = IngestionCursor(
                    asset=table,
                    next_sequence_id=next_id,
                    next_page_token=page.last or cursor.next_page_token,
                )
                written += await asyncio.to_thread(self.store.commit_page, table, fresh, next_cursor)
                cursor = next_cursor
                log_event(logger, logging.DEBUG, "ingestion.page", asset=asset, page=pages,
                          returned=len(page.ticks), written=len(fresh), next_id=cursor.next_sequence_id)

                if len(page.ticks) < self.client.page_size:
                    emit(Progress(asset, 100))
                    emit(Finished(asset))
                    break

                last_time = max(t.timestamp_micros for t in page.ticks) / 1_000_000
                emit(Progress(asset, percent_complete(self._clock(), last_time, first_known)))
                await self._sleep(self.page_delay)
        except IngestError as e:
            emit(Error(asset, str(e)))
            log_event(logger, logging.WARNING, "ingestion.error", asset=asset, page=pages,
                      err_type=type(e).__name__, err=str(e))
            raise
        except asyncio.CancelledError:
            emit(Error(asset, "cancelled"))
            log_event(logger, logging.INFO, "ingestion.cancelled", asset=asset, page=pages)
            raise
        except Exception as e:
            emit(Error(asset, f"{type(e).__name__}: {e}"))
            log_event(logger, logging.ERROR, "ingestion.failed", asset=asset, page=pages,
                      err_type=type(e).__name__, err=str(e))
            raise

        log_event(logger, logging.INFO, "ingestion.finished", asset=asset, pages=pages, written=written)
        return IngestSummary(asset=asset, pages=pages, ticks_written=written, cursor=cursor)

    async def ingest_many(
        self,
        pairs: Iterable[str],
        progress: Union[ProgressChannel, ProgressSink, None] = None,
    ) -> Dict[str, Union[IngestSummary, Exception]]:
        """Ingest several assets concurrently; one failure does not stop the others."""
        pairs = list(pairs)
        results = await asyncio.gather(
            *(self.ingest(p, progress) for p in pairs),
            return_exceptions=True,
        )
        out: Dict[str, Union[IngestSummary, Exception]] = {}
        for pair, res in zip(pairs, results):
            if isinstance(res, BaseException) and not isinstance(res, Exception):
                raise res
            out[pair] = res
        return out

    async def _first_known_time(self, table: str) -> float:
        """Earliest stored tick time in seconds, else the start of the history window."""
        first_us = await asyncio.to_thread(self.store.first_tick_time, table)
        if first_us is not None:
            return first_us / 1_000_000
        return history_start(self.history_window, self._now()).timestamp()
