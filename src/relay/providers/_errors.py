"""Shared provider-side error helpers.

Clients map SDK exceptions into ``APIError`` with structured retry metadata so
the orchestrator can classify failures without substring matching.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator, Mapping
import re
from typing import Any

import httpx

from relay._http import RATE_LIMIT_STATUS_CODE, RETRYABLE_STATUS_CODES
from relay.errors import APIError, RateLimitError, _walk_exception_chain

_STATUS_ATTRS = ("status_code", "status", "code")
_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _http_status(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
        return value
    return None


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        candidates = [getattr(e, attr, None) for attr in _STATUS_ATTRS]
        candidates.append(getattr(getattr(e, "response", None), "status_code", None))
        for value in candidates:
            status = _http_status(value)
            if status is not None:
                return status
    return None


def _retry_info_entries(exc: BaseException) -> Iterator[Mapping[str, Any]]:
    """Yield ``RetryInfo`` entries from a google-genai error's ``.details``.

    Shape: ``{"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}``
    """
    details = getattr(exc, "details", None)
    error = details.get("error") if isinstance(details, Mapping) else None
    entries = error.get("details") if isinstance(error, Mapping) else None
    if not isinstance(entries, list):
        return
    for entry in entries:
        if isinstance(entry, Mapping) and "RetryInfo" in str(entry.get("@type", "")):
            yield entry


def _retry_info_seconds(exc: BaseException) -> float | None:
    for entry in _retry_info_entries(exc):
        delay = entry.get("retryDelay")
        m = _PROTO_DURATION_RE.match(delay) if isinstance(delay, str) else None
        if m:
            return float(m.group(1))
    return None


def _header_retry_after(exc: BaseException) -> float | None:
    headers: Any = getattr(getattr(exc, "response", None), "headers", None)
    if not isinstance(headers, Mapping):
        return None
    raw = headers.get("Retry-After")
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        # HTTP-date form; callers fall back to computed backoff.
        return None
    return seconds if seconds >= 0 else None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds.

    Checked per exception: an SDK ``retry_after`` attribute, the response's
    ``Retry-After`` header, then Google ``RetryInfo`` details.
    """
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)
        seconds = _header_retry_after(e)
        if seconds is None:
            seconds = _retry_info_seconds(e)
        if seconds is not None:
            return seconds
    return None


def _is_retryable(exc: BaseException, status_code: int | None, retry_after_s: float | None) -> bool:
    if retry_after_s is not None:
        return True
    if status_code is not None:
        return status_code in RETRYABLE_STATUS_CODES
    return any(
        isinstance(e, (httpx.TimeoutException, httpx.TransportError))
        for e in _walk_exception_chain(exc)
    )


def _auth_hint(status_code: int | None, api_key_id: str | None) -> str | None:
    if status_code in {401, 403}:
        key = f" {api_key_id}" if api_key_id else ""
        return f"Check the provider API key{key} held by the key manager."
    return None


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    api_key_id: str | None = None,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Map a provider SDK exception into ``APIError`` (``RateLimitError`` for 429).

    ``CancelledError`` is re-raised. An ``APIError`` is returned as-is with
    missing context filled in.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, APIError):
        exc.provider = exc.provider or provider
        exc.phase = exc.phase or phase
        exc.api_key_id = exc.api_key_id or api_key_id
        if exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)
    err_cls = RateLimitError if status_code == RATE_LIMIT_STATUS_CODE else APIError

    text = message or f"{provider} {phase} failed"
    if status_code is not None:
        text += f" (status={status_code})"
    cause = str(exc)
    if cause:
        text += f": {cause}"
    return err_cls(
        text,
        hint=hint if hint is not None else _auth_hint(status_code, api_key_id),
        retryable=_is_retryable(exc, status_code, retry_after_s),
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
        api_key_id=api_key_id,
    )
