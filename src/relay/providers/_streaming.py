"""Common plumbing for SDK-backed streaming clients."""

from __future__ import annotations

import abc
import asyncio
from collections.abc import Mapping
import inspect
import logging
from typing import TYPE_CHECKING, Any

from relay.providers._errors import wrap_provider_error
from relay.streaming.parsers import parse_event

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

    from relay.config import ProviderSettings
    from relay.models import ModelType, ProviderKey, ProviderPayload, StreamChunk

logger = logging.getLogger(__name__)


def split_known(
    body: Mapping[str, Any], known: frozenset[str]
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a payload into SDK keyword arguments and ``extra_body`` fields."""
    kwargs: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for key, value in body.items():
        (kwargs if key in known else extra)[key] = value
    return kwargs, extra


async def _close_stream(events: Any) -> None:
    """Release an SDK stream left open by an early break."""
    close = getattr(events, "aclose", None) or getattr(events, "close", None)
    if callable(close):
        result = close()
        if inspect.isawaitable(result):
            await result


class SDKStreamingClient(abc.ABC):
    """Lazily creates one SDK client per key and normalizes its stream."""

    provider_name: str = "provider"

    def __init__(
        self,
        key: ProviderKey,
        *,
        model_type: ModelType,
        settings: ProviderSettings | None = None,
    ) -> None:
        self._key = key
        self._model_type = model_type
        self._settings = settings
        self._client: Any = None

    @property
    def model_type(self) -> ModelType:
        return self._model_type

    @property
    def key_id(self) -> str | None:
        return self._key.id

    @abc.abstractmethod
    def _create_client(self) -> Any:
        """Build the SDK client; raise ConfigurationError when it is missing."""

    @abc.abstractmethod
    async def _open(self, client: Any, body: dict[str, Any]) -> AsyncIterable[Any]:
        """Start the provider stream for *body*."""

    def _dump(self, event: Any) -> Mapping[str, Any]:
        if isinstance(event, Mapping):
            return event
        return event.model_dump(mode="json", exclude_none=True)

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    async def stream(self, payload: ProviderPayload) -> AsyncIterator[StreamChunk]:
        client = self._get_client()
        body = dict(payload.body)
        logger.debug("Opening %s stream with key %s", self.provider_name, self.key_id)
        events: Any = None
        try:
            events = await self._open(client, body)
            async for event in events:
                chunk = parse_event(self._model_type, self._dump(event))
                if chunk is not None:
                    yield chunk
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            wrapped = wrap_provider_error(
                exc,
                provider=self.provider_name,
                phase="stream",
                api_key_id=self.key_id,
                message=f"{self.provider_name} stream failed",
            )
            if wrapped is exc:
                raise
            raise wrapped from exc
        finally:
            if events is not None:
                await _close_stream(events)

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        close = getattr(client, "close", None)
        if callable(close):
            await close()
