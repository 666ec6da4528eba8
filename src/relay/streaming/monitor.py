"""Per-message streaming performance metrics."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import TYPE_CHECKING

from relay.streaming._sweeper import PeriodicTask

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

logger = logging.getLogger(__name__)


@dataclass
class StreamMetrics:
    message_id: str
    started_at: float
    last_activity_at: float
    chunks: int = 0
    bytes: int = 0
    notifications: int = 0
    processing_s: float = 0.0

    @property
    def avg_chunk_bytes(self) -> float:
        return self.bytes / self.chunks if self.chunks else 0.0


class PerformanceMonitor:
    """Track chunk throughput per streaming message.

    All methods are no-ops for unknown message ids. A background sweeper
    (``start()`` / ``aclose()``) logs a periodic summary and drops metrics
    that saw no activity for ``stale_after_s``.
    """

    def __init__(
        self,
        *,
        summary_interval_s: float = 60.0,
        stale_after_s: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._metrics: dict[str, StreamMetrics] = {}
        self._stale_after_s = stale_after_s
        self._clock = clock
        self._sweeper = PeriodicTask("relay-metrics-summary", summary_interval_s, self._tick)

    async def __aenter__(self) -> PerformanceMonitor:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def start(self) -> None:
        self._sweeper.start()

    async def aclose(self) -> None:
        await self._sweeper.aclose()

    def start_stream(self, message_id: str) -> None:
        now = self._clock()
        self._metrics[message_id] = StreamMetrics(message_id, started_at=now, last_activity_at=now)

    def record_chunk(self, message_id: str, size: int, processing_s: float = 0.0) -> None:
        metrics = self._metrics.get(message_id)
        if metrics is None:
            return
        metrics.chunks += 1
        metrics.bytes += size
        metrics.processing_s += processing_s
        metrics.last_activity_at = self._clock()

    def record_notification(self, message_id: str) -> None:
        metrics = self._metrics.get(message_id)
        if metrics is not None:
            metrics.notifications += 1

    def get(self, message_id: str) -> StreamMetrics | None:
        return self._metrics.get(message_id)

    def stop_stream(self, message_id: str) -> StreamMetrics | None:
        metrics = self._metrics.pop(message_id, None)
        if metrics is None:
            return None
        elapsed = self._clock() - metrics.started_at
        logger.info(
            "Stream %s finished: %d chunks, %d bytes (avg %.1f), %d notifications, %.2fs",
            message_id,
            metrics.chunks,
            metrics.bytes,
            metrics.avg_chunk_bytes,
            metrics.notifications,
            elapsed,
        )
        return metrics

    @property
    def active_streams(self) -> int:
        return len(self._metrics)

    def cleanup_stale(self) -> int:
        cutoff = self._clock() - self._stale_after_s
        stale = [mid for mid, m in self._metrics.items() if m.last_activity_at < cutoff]
        for message_id in stale:
            del self._metrics[message_id]
        if stale:
            logger.warning("Dropped metrics for %d stale streams", len(stale))
        return len(stale)

    def _tick(self) -> None:
        self.cleanup_stale()
        if not self._metrics:
            return
        chunks = sum(m.chunks for m in self._metrics.values())
        logger.info(
            "Streaming summary: %d active streams, %d chunks in flight",
            len(self._metrics),
            chunks,
        )
