from __future__ import annotations

import asyncio

import pytest

from cex_tick_feed.progress import Error, Finished, Progress, ProgressChannel, Started, percent_complete


def test_percent_complete():
    assert percent_complete(100, 100, 0) == 100
    assert percent_complete(100, 50, 0) == 50
    assert percent_complete(100, 0, 0) == 0
    assert percent_complete(100, 66.6, 0) == 66


def test_percent_complete_clamps():
    assert percent_complete(100, -50, 0) == 0
    assert percent_complete(100, 150, 0) == 100
    # nothing to download, or a clock behind the data
    assert percent_complete(100, 100, 100) == 100
    assert percent_complete(100, 100, 200) == 100


def test_event_kinds():
    assert Started("a").kind == "started"
    assert Progress("a", 5).kind == "progress"
    assert Finished("a").kind == "finished"
    assert Error("a", "boom").kind == "error"


@pytest.mark.asyncio
async def test_channel_delivers_in_order_until_closed():
    channel = ProgressChannel()
    sent = [Started("a"), Progress("a", 40), Progress("a", 100), Finished("a")]
    for event in sent:
        channel.emit(event)
    channel.close()
    channel.emit(Error("a", "late"))

    received = [event async for event in channel]
    assert received == sent
    assert channel.closed
    assert await channel.get() is None


@pytest.mark.asyncio
async def test_consumer_waits_for_producer():
    channel = ProgressChannel()

    async def produce():
        await asyncio.sleep(0)
        channel.emit(Started("b"))
        channel.emit(Finished("b"))
        channel.close()

    producer = asyncio.create_task(produce())
    received = [event async for event in channel]
    await producer
    assert [e.kind for e in received] == ["started", "finished"]


def test_drain_does_not_block():
    channel = ProgressChannel()
    assert channel.drain() == []
    channel.emit(Started("c"))
    channel.close()
    assert channel.drain() == [Started("c")]
    assert channel.drain() == []
