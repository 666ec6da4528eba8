"""Streaming notifications and chunk batching."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import enum
import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from relay.interfaces import NotificationSink

logger = logging.getLogger(__name__)


class StreamEventKind(str, enum.Enum):
    TEXT_CHUNK = "text_chunk"
    THINKING_CHUNK = "thinking_chunk"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class StreamEvent:
    kind: StreamEventKind
    message_id: str
    chat_session_id: str | None = None
    #: Chunk text for chunk events; final content or error text otherwise.
    data: str = ""


def safe_publish(sink: NotificationSink | None, event: StreamEvent) -> None:
    """Publish without letting a sink failure reach the stream."""
    if sink is None:
        return
    try:
        sink.publish(event)
    except Exception:
        logger.warning("Notification sink failed for %s", event.kind.value, exc_info=True)


@dataclass
class _Pending:
    kind: StreamEventKind
    message_id: str
    chat_session_id: str | None
    chunks: list[str] = field(default_factory=list)


class BatchingNotifier:
    """Coalesce chunk events before handing them to a sink.

    Chunks of the same kind for the same message are joined until
    ``batch_size`` chunks are pending or ``interval_s`` has passed since the
    last flush. Any other event flushes first so ordering is preserved. Inside
    a running event loop a timer also flushes a batch once ``interval_s``
    passes, so a stalled stream does not hold chunks back.
    """

    def __init__(
        self,
        sink: NotificationSink,
        *,
        batch_size: int = 10,
        interval_s: float = 0.05,
    ) -> None:
        self._sink = sink
        self._batch_size = batch_size
        self._interval_s = interval_s
        self._pending: _Pending | None = None
        self._last_flush = time.monotonic()
        self._timer: asyncio.TimerHandle | None = None

    def publish(self, event: StreamEvent) -> None:
        if event.kind not in (StreamEventKind.TEXT_CHUNK, StreamEventKind.THINKING_CHUNK):
            self.flush()
            safe_publish(self._sink, event)
            return

        pending = self._pending
        if pending is not None and (
            pending.kind is not event.kind or pending.message_id != event.message_id
        ):
            self.flush()
            pending = None
        if pending is None:
            pending = _Pending(event.kind, event.message_id, event.chat_session_id)
            self._pending = pending
        pending.chunks.append(event.data)

        if (
            len(pending.chunks) >= self._batch_size
            or time.monotonic() - self._last_flush >= self._interval_s
        ):
            self.flush()
        else:
            self._schedule()

    def _schedule(self) -> None:
        if self._timer is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the next chunk or a turn boundary flushes instead.
            return
        delay = max(0.0, self._interval_s - (time.monotonic() - self._last_flush))
        self._timer = loop.call_later(delay, self.flush)

    def flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        pending, self._pending = self._pending, None
        self._last_flush = time.monotonic()
        if pending is None or not pending.chunks:
            return
        safe_publish(
            self._sink,
            StreamEvent(
                kind=pending.kind,
                message_id=pending.message_id,
                chat_session_id=pending.chat_session_id,
                data="".join(pending.chunks),
            ),
        )
