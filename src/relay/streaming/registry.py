"""Registry of in-flight streaming operations keyed by message id."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import enum
import logging
from typing import TYPE_CHECKING, Any

from relay.streaming._sweeper import PeriodicTask

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)


class StopReason(str, enum.Enum):
    USER_REQUEST = "user_request"
    INTERNAL = "internal"
    REPLACED = "replaced"


@dataclass
class StreamingOperation:
    message_id: str
    task: asyncio.Task[Any]
    stop_reason: StopReason | None = None

    @property
    def live(self) -> bool:
        return not self.task.done()


class StreamingOperationRegistry:
    """At most one live operation per message id.

    Registering a new operation for a message id cancels the previous one.
    A sweeper task drops finished entries while the registry is open.
    """

    def __init__(self, *, sweep_interval_s: float = 300.0) -> None:
        self._operations: dict[str, StreamingOperation] = {}
        self._sweeper = PeriodicTask("relay-registry-sweeper", sweep_interval_s, self.sweep)

    async def __aenter__(self) -> StreamingOperationRegistry:
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
        self.cancel_all(StopReason.INTERNAL)

    def register(self, message_id: str, task: asyncio.Task[Any]) -> StreamingOperation:
        previous = self._operations.get(message_id)
        if previous is not None and previous.task is not task and previous.live:
            logger.info("Replacing streaming operation for message %s", message_id)
            previous.stop_reason = StopReason.REPLACED
            previous.task.cancel()
        operation = StreamingOperation(message_id=message_id, task=task)
        self._operations[message_id] = operation
        return operation

    def get(self, message_id: str) -> StreamingOperation | None:
        return self._operations.get(message_id)

    def unregister(self, message_id: str, task: asyncio.Task[Any] | None = None) -> None:
        """Remove the entry, but only if it still belongs to *task*."""
        current = self._operations.get(message_id)
        if current is None:
            return
        if task is None or current.task is task:
            del self._operations[message_id]

    def stop_streaming(
        self, message_id: str, reason: StopReason = StopReason.USER_REQUEST
    ) -> bool:
        """Cancel the live operation for *message_id*; False when none."""
        operation = self._operations.get(message_id)
        if operation is None or not operation.live:
            return False
        operation.stop_reason = reason
        operation.task.cancel()
        logger.info("Stop requested for message %s (%s)", message_id, reason.value)
        return True

    def is_active(self, message_id: str) -> bool:
        operation = self._operations.get(message_id)
        return operation is not None and operation.live

    def live_tasks(self) -> list[asyncio.Task[Any]]:
        return [op.task for op in self._operations.values() if op.live]

    @property
    def active_count(self) -> int:
        return sum(1 for op in self._operations.values() if op.live)

    def cancel_all(self, reason: StopReason = StopReason.INTERNAL) -> int:
        cancelled = 0
        for operation in list(self._operations.values()):
            if operation.live:
                operation.stop_reason = reason
                operation.task.cancel()
                cancelled += 1
        self._operations.clear()
        return cancelled

    def sweep(self) -> int:
        """Drop finished entries; returns how many were removed."""
        finished = [mid for mid, op in self._operations.items() if not op.live]
        for message_id in finished:
            del self._operations[message_id]
        if finished:
            logger.debug("Swept %d finished streaming operations", len(finished))
        return len(finished)
