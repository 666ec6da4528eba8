"""In-process provider key pool.

A reference ``KeyManager`` for single-process deployments and tests; real
deployments usually back the key manager with shared storage.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass
import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from relay.models import ProviderKey

logger = logging.getLogger(__name__)


@dataclass
class _KeyState:
    key: ProviderKey
    rate_limited_until: float = 0.0


class InMemoryKeyPool:
    """Round-robin over each provider's keys, skipping rate-limited ones."""

    def __init__(
        self,
        keys: Iterable[ProviderKey] = (),
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self._by_provider: dict[str, list[_KeyState]] = {}
        self._by_id: dict[str, _KeyState] = {}
        self._cursor: Counter[str] = Counter()
        self.usage: Counter[str] = Counter()
        for key in keys:
            self.add(key)

    def add(self, key: ProviderKey) -> None:
        state = _KeyState(key)
        self._by_provider.setdefault(key.provider_id, []).append(state)
        self._by_id[key.id] = state

    async def get_available_key(self, provider_id: str) -> ProviderKey | None:
        async with self._lock:
            states = self._by_provider.get(provider_id) or []
            now = self._clock()
            for offset in range(len(states)):
                index = (self._cursor[provider_id] + offset) % len(states)
                state = states[index]
                if state.rate_limited_until <= now:
                    self._cursor[provider_id] = index + 1
                    self.usage[state.key.id] += 1
                    return state.key
            logger.warning("No available key for provider %s", provider_id)
            return None

    async def report_success(self, key_id: str) -> None:
        async with self._lock:
            state = self._by_id.get(key_id)
            if state is not None:
                state.rate_limited_until = 0.0

    async def report_rate_limited(self, key_id: str, retry_after_s: float) -> None:
        async with self._lock:
            state = self._by_id.get(key_id)
            if state is None:
                logger.debug("Ignoring rate-limit report for unknown key %s", key_id)
                return
            state.rate_limited_until = self._clock() + max(0.0, retry_after_s)
            logger.info("Key %s rate limited for %.1fs", key_id, retry_after_s)

    def is_rate_limited(self, key_id: str) -> bool:
        state = self._by_id.get(key_id)
        return state is not None and state.rate_limited_until > self._clock()
