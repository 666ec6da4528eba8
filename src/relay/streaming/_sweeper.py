"""Lifecycle-scoped periodic background task."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run *callback* every *interval_s* seconds until closed.

    Owned by whoever calls ``start()``; ``aclose()`` cancels and awaits the
    task so nothing outlives the hosting context.
    """

    def __init__(self, name: str, interval_s: float, callback: Callable[[], None]) -> None:
        self._name = name
        self._interval_s = interval_s
        self._callback = callback
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running or self._interval_s <= 0:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            try:
                self._callback()
            except Exception:
                logger.exception("Periodic task %s failed", self._name)

    async def aclose(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
