"""Retry policy for provider attempts.

The orchestrator owns the attempt loop; this module only describes how long
to wait and which failures are worth another attempt.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import random

import httpx

from relay.errors import (
    APIError,
    ConfigurationError,
    PayloadError,
    QuotaExceededError,
    _walk_exception_chain,
)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff.

    With the defaults the waits after attempts 1, 2 and 3 are 2s, 4s and 8s.
    """

    max_attempts: int = 3
    initial_delay_s: float = 2.0
    backoff_multiplier: float = 2.0
    max_delay_s: float | None = None
    jitter: bool = False  # "full jitter" when enabled

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("RetryPolicy.backoff_multiplier must be > 0")
        if self.max_delay_s is not None and self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0 or None")

    def delay_for(self, attempt: int) -> float:
        """Return the wait after a failed *attempt* (1-based)."""
        return compute_backoff_delay(self, attempt=attempt)


def compute_backoff_delay(policy: RetryPolicy, *, attempt: int) -> float:
    base = policy.initial_delay_s * (policy.backoff_multiplier ** max(0, attempt - 1))
    if policy.max_delay_s is not None:
        base = min(policy.max_delay_s, base)
    if base <= 0:
        return 0.0
    if not policy.jitter:
        return base
    return random.random() * base  # noqa: S311


def retry_after_from_error(exc: BaseException) -> float | None:
    """Return a provider-supplied retry-after in seconds, if any."""
    if isinstance(exc, APIError):
        v = exc.retry_after_s
        if isinstance(v, (int, float)) and v >= 0:
            return float(v)
    return None


def is_transport_error(exc: BaseException) -> bool:
    """Return True for transport-level failures anywhere in the chain."""
    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, ConnectionError, httpx.TransportError)):
            return True
    return False


def is_fatal(exc: BaseException) -> bool:
    """Return True for failures that another attempt cannot fix.

    Contract:
    - Cancellation is never retried.
    - Quota denials are never retried.
    - Payload and configuration errors (including unsupported model types)
      are programming errors and are never retried.
    - Everything else, provider errors included, gets another attempt.
    """
    return isinstance(
        exc,
        (asyncio.CancelledError, QuotaExceededError, PayloadError, ConfigurationError),
    )
