"""Image-generation clients over plain HTTP.

Image providers answer in one response; the client yields it as a single
terminal chunk so the turn machine treats it like any other stream.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import logging
from typing import TYPE_CHECKING, Any

import httpx

from relay.errors import APIError, ConfigurationError
from relay.models import ModelType, StreamChunk
from relay.providers._errors import wrap_provider_error

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from relay.config import ProviderSettings
    from relay.models import ProviderKey, ProviderPayload

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MIME_TYPE = "image/png"


def imagen_text(data: Mapping[str, Any]) -> str:
    """Render Imagen predictions as embedded base64 image tags."""
    tags = []
    for prediction in data.get("predictions") or []:
        encoded = prediction.get("bytesBase64Encoded")
        if not encoded:
            continue
        mime = prediction.get("mimeType") or DEFAULT_IMAGE_MIME_TYPE
        tags.append(f"<image-base64:{mime};base64,{encoded}>")
    return "\n".join(tags)


def flux_text(data: Mapping[str, Any]) -> str:
    """Render Flux image URLs as markdown images."""
    urls = [image["url"] for image in data.get("images") or [] if image.get("url")]
    return "\n".join(f"![Generated image {i}]({url})" for i, url in enumerate(urls, 1))


class ImageGenerationClient:
    """POSTs one image request and yields the rendered result."""

    def __init__(
        self,
        key: ProviderKey,
        *,
        model_type: ModelType,
        settings: ProviderSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not model_type.is_image_generator:
            raise ConfigurationError(f"{model_type.value} is not an image model")
        self._key = key
        self._model_type = model_type
        self._settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def model_type(self) -> ModelType:
        return self._model_type

    @property
    def key_id(self) -> str | None:
        return self._key.id

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            timeout = self._settings.timeout_s if self._settings else 120.0
            headers = dict(self._settings.extra_headers) if self._settings else {}
            self._client = httpx.AsyncClient(
                timeout=timeout, headers=headers, transport=self._transport
            )
        return self._client

    def _request(self, body: dict[str, Any]) -> tuple[str, dict[str, str], dict[str, Any]]:
        provider = self._model_type.value
        base_url = self._settings.base_url(provider) if self._settings else None
        if not base_url:
            raise ConfigurationError(
                f"No base URL configured for {provider}",
                hint=f"Set RELAY_{provider.upper()}_BASE_URL.",
            )
        body.pop("stream", None)
        if self._model_type is ModelType.IMAGEN:
            model = body.pop("model")
            url = f"{base_url.rstrip('/')}/{model}:predict"
            return url, {"x-goog-api-key": self._key.secret}, body
        return base_url, {"Authorization": f"Bearer {self._key.secret}"}, body

    async def stream(self, payload: ProviderPayload) -> AsyncIterator[StreamChunk]:
        url, headers, body = self._request(dict(payload.body))
        client = self._get_client()
        logger.debug("Requesting %s images from %s", self._model_type.value, url)
        try:
            response = await client.post(url, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            wrapped = wrap_provider_error(
                exc,
                provider=self._model_type.value,
                phase="generate",
                api_key_id=self.key_id,
            )
            if wrapped is exc:
                raise
            raise wrapped from exc

        render = imagen_text if self._model_type is ModelType.IMAGEN else flux_text
        text = render(data)
        if not text:
            raise APIError(
                f"{self._model_type.value} returned no images",
                hint="The prompt may have been blocked by the provider's safety filter.",
                retryable=False,
                provider=self._model_type.value,
                phase="generate",
                api_key_id=self.key_id,
            )
        yield StreamChunk(text=text, finish_reason="stop")

    async def aclose(self) -> None:
        client = self._client
        if client is None:
            return
        self._client = None
        await client.aclose()
