"""Provider client protocol: one streaming call per payload."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from relay.models import ModelType, ProviderPayload, StreamChunk


@runtime_checkable
class ProviderClient(Protocol):
    """Minimal client protocol: stream a payload, then close."""

    @property
    def model_type(self) -> ModelType:
        """Provider family this client talks to."""
        ...

    @property
    def key_id(self) -> str | None:
        """Id of the API key the client was created with."""
        ...

    def stream(self, payload: ProviderPayload) -> AsyncIterator[StreamChunk]:
        """Open the provider stream and yield normalized chunks.

        Failures are raised as ``APIError`` (``RateLimitError`` for 429s)
        carrying the client's ``key_id``.
        """
        ...

    async def aclose(self) -> None:
        """Release underlying transport resources."""
        ...
