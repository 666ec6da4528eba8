"""Chunk batching and sink isolation."""

from __future__ import annotations

import asyncio

import pytest

from relay.streaming.notifications import (
    BatchingNotifier,
    StreamEvent,
    StreamEventKind,
    safe_publish,
)
from tests.conftest import RecordingSink

pytestmark = pytest.mark.unit

TEXT = StreamEventKind.TEXT_CHUNK
THINK = StreamEventKind.THINKING_CHUNK


def chunk(data: str, kind: StreamEventKind = TEXT, message_id: str = "m1") -> StreamEvent:
    return StreamEvent(kind, message_id, data=data)


def test_chunks_are_joined_until_batch_size() -> None:
    sink = RecordingSink()
    notifier = BatchingNotifier(sink, batch_size=3, interval_s=60)

    notifier.publish(chunk("a"))
    notifier.publish(chunk("b"))
    assert sink.events == []

    notifier.publish(chunk("c"))
    assert [e.data for e in sink.events] == ["abc"]


def test_kind_or_message_change_flushes_pending() -> None:
    sink = RecordingSink()
    notifier = BatchingNotifier(sink, batch_size=10, interval_s=60)

    notifier.publish(chunk("plan", THINK))
    notifier.publish(chunk("Hi"))
    notifier.publish(chunk("Yo", message_id="m2"))
    notifier.flush()

    assert [(e.kind, e.message_id, e.data) for e in sink.events] == [
        (THINK, "m1", "plan"),
        (TEXT, "m1", "Hi"),
        (TEXT, "m2", "Yo"),
    ]


def test_terminal_event_flushes_chunks_first() -> None:
    sink = RecordingSink()
    notifier = BatchingNotifier(sink, batch_size=10, interval_s=60)

    notifier.publish(chunk("partial"))
    notifier.publish(StreamEvent(StreamEventKind.COMPLETED, "m1", data="partial"))

    assert sink.kinds() == ["text_chunk", "completed"]


def test_zero_interval_publishes_every_chunk() -> None:
    sink = RecordingSink()
    notifier = BatchingNotifier(sink, batch_size=10, interval_s=0)

    notifier.publish(chunk("a"))
    notifier.publish(chunk("b"))

    assert [e.data for e in sink.events] == ["a", "b"]


def test_flush_with_nothing_pending_is_silent() -> None:
    sink = RecordingSink()
    BatchingNotifier(sink).flush()
    assert sink.events == []


def test_sink_failures_never_escape() -> None:
    class BrokenSink:
        def publish(self, event: StreamEvent) -> None:
            raise RuntimeError("socket closed")

    safe_publish(BrokenSink(), chunk("x"))
    safe_publish(None, chunk("x"))
    BatchingNotifier(BrokenSink(), interval_s=0).publish(chunk("x"))


@pytest.mark.asyncio
async def test_stalled_batch_is_flushed_by_the_interval_timer() -> None:
    sink = RecordingSink()
    notifier = BatchingNotifier(sink, batch_size=10, interval_s=0.05)

    notifier.publish(chunk("a"))
    notifier.publish(chunk("b"))
    assert sink.events == []

    await asyncio.sleep(0.2)
    assert [e.data for e in sink.events] == ["ab"]


@pytest.mark.asyncio
async def test_manual_flush_cancels_the_pending_timer() -> None:
    sink = RecordingSink()
    notifier = BatchingNotifier(sink, batch_size=10, interval_s=0.05)

    notifier.publish(chunk("a"))
    notifier.flush()
    await asyncio.sleep(0.2)

    assert [e.data for e in sink.events] == ["a"]
