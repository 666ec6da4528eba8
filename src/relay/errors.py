"""Exception hierarchy for relay."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class RelayError(Exception):
    """Base exception for all relay errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(RelayError):
    """Configuration validation or resolution failed."""


class InternalError(RelayError):
    """A relay internal error (bug) or invariant violation."""


class PayloadError(RelayError):
    """A provider payload could not be built from the request context."""


class UnsupportedModelTypeError(PayloadError):
    """No payload builder or client is registered for the model type."""


class QuotaExceededError(RelayError):
    """The caller's subscription does not allow another request.

    Never retried. ``reason`` is safe to show to the end user.
    """

    def __init__(
        self, reason: str, *, user_id: str | None = None, hint: str | None = None
    ) -> None:
        super().__init__(reason, hint=hint)
        self.reason = reason
        self.user_id = user_id


class APIError(RelayError):
    """Provider call failed.

    Provider clients attach retry metadata so the orchestrator can classify
    failures without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
        api_key_id: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase
        self.api_key_id = api_key_id


class RateLimitError(APIError):
    """Provider rejected the key with a rate limit (HTTP 429)."""


class NoAvailableKeyError(APIError):
    """The key manager had no usable key for the provider."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
