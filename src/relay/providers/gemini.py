"""Gemini streaming client (google-genai SDK)."""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping
import contextlib
from dataclasses import replace
import logging
from typing import TYPE_CHECKING, Any

from relay.errors import ConfigurationError, PayloadError
from relay.providers._streaming import SDKStreamingClient
from relay.streaming.parsers import TOOL_CALLS_FINISH

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from relay.models import ProviderPayload, StreamChunk

logger = logging.getLogger(__name__)

_CONFIG_KEYS = ("systemInstruction", "safetySettings", "tools", "toolConfig")


def _decode_inline_data(contents: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Turn base64 ``inlineData`` strings into bytes for the SDK models.

    The SDK validates python-mode dicts, where ``bytes`` fields do not
    base64-decode strings on their own.
    """
    decoded: list[dict[str, Any]] = []
    for content in contents:
        parts: list[Any] = []
        for part in content.get("parts", []):
            inline = part.get("inlineData") if isinstance(part, Mapping) else None
            if isinstance(inline, Mapping) and isinstance(inline.get("data"), str):
                try:
                    data = base64.b64decode(inline["data"])
                except (binascii.Error, ValueError) as e:
                    raise PayloadError(
                        "Gemini inline data is not valid base64",
                        hint="Re-upload the attachment.",
                    ) from e
                part = {**part, "inlineData": {**inline, "data": data}}
            parts.append(part)
        decoded.append({**content, "parts": parts})
    return decoded


def build_generate_kwargs(body: Mapping[str, Any]) -> dict[str, Any]:
    """Map a REST-shaped payload onto ``generate_content_stream`` arguments."""
    config: dict[str, Any] = dict(body.get("generationConfig") or {})
    for key in _CONFIG_KEYS:
        if body.get(key):
            config[key] = body[key]
    kwargs: dict[str, Any] = {
        "model": body["model"],
        "contents": _decode_inline_data(list(body.get("contents") or [])),
    }
    if config:
        kwargs["config"] = config
    return kwargs


class GeminiClient(SDKStreamingClient):
    """Streams ``models.generate_content_stream`` responses."""

    provider_name = "gemini"

    def _create_client(self) -> Any:
        try:
            from google import genai
        except ImportError as e:
            raise ConfigurationError(
                "google-genai package not installed",
                hint="pip install google-genai",
            ) from e
        return genai.Client(api_key=self._key.secret)

    async def _open(self, client: Any, body: dict[str, Any]) -> Any:
        return await client.aio.models.generate_content_stream(**build_generate_kwargs(body))

    def _dump(self, event: Any) -> Mapping[str, Any]:
        if isinstance(event, Mapping):
            return event
        return event.model_dump(mode="json", by_alias=True, exclude_none=True)

    async def aclose(self) -> None:
        client = self._client
        if client is None:
            return
        self._client = None
        aclose = getattr(client.aio, "aclose", None)
        if callable(aclose):
            await aclose()

    async def stream(self, payload: ProviderPayload) -> AsyncIterator[StreamChunk]:
        # Gemini sends each call whole and unindexed, and may report STOP in a
        # later event than the calls; number and finish them per stream.
        next_index = 0
        async with contextlib.aclosing(super().stream(payload)) as chunks:
            async for chunk in chunks:
                if chunk.tool_calls:
                    fragments = tuple(
                        replace(fragment, index=next_index + offset)
                        for offset, fragment in enumerate(chunk.tool_calls)
                    )
                    next_index += len(fragments)
                    chunk = replace(chunk, tool_calls=fragments)
                if next_index and chunk.finish_reason == "stop":
                    chunk = replace(chunk, finish_reason=TOOL_CALLS_FINISH)
                yield chunk
