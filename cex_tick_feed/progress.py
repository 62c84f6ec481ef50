from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import AsyncIterator, Callable, ClassVar, Optional, Union


@dataclass(frozen=True)
class Started:
    asset: str
    kind: ClassVar[str] = "started"


@dataclass(frozen=True)
class Progress:
    asset: str
    percent: int
    kind: ClassVar[str] = "progress"


@dataclass(frozen=True)
class Finished:
    asset: str
    kind: ClassVar[str] = "finished"


@dataclass(frozen=True)
class Error:
    asset: str
    message: str = ""
    kind: ClassVar[str] = "error"


ProgressEvent = Union[Started, Progress, Finished, Error]

# Producers only ever get this: emit and move on.
ProgressSink = Callable[[ProgressEvent], None]


def null_sink(event: ProgressEvent) -> None:
    return None


def percent_complete(now: float, last_tick_time: float, first_known_time: float) -> int:
    """100 - ceil(100 * (now - last) / (now - first)), clamped to [0, 100].

    Times are in any common unit. A non-positive span (nothing to download,
    or clock skew) counts as complete.
    """
    span = now - first_known_time
    if span <= 0:
        return 100
    remaining = math.ceil(100 * (now - last_tick_time) / span)
    return max(0, min(100, 100 - remaining))


class ProgressChannel:
    """One-way, unbounded event channel between ingestion tasks and a renderer.

    `emit` never blocks the producer. Consumers iterate with `async for`
    until `close()` is called and the backlog is drained.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    async def get(self) -> Optional[ProgressEvent]:
        """Next event, or None once the channel is closed and drained."""
        item = await self._queue.get()
        if item is self._CLOSED:
            # leave the marker for any other consumer
            self._queue.put_nowait(item)
            return None
        return item

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event

    def drain(self) -> list:
        """Pop every queued event without waiting."""
        out = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return out
            if item is self._CLOSED:
                self._queue.put_nowait(item)
                return out
            out.append(item)
