"""Anthropic Messages API streaming client."""

from __future__ import annotations

from typing import Any

from relay.errors import ConfigurationError
from relay.providers._streaming import SDKStreamingClient, split_known

_MESSAGES_KWARGS = frozenset(
    {
        "model",
        "messages",
        "max_tokens",
        "system",
        "temperature",
        "top_k",
        "top_p",
        "stop_sequences",
        "stream",
        "metadata",
        "tools",
        "tool_choice",
        "thinking",
    }
)


class AnthropicClient(SDKStreamingClient):
    """Streams ``messages.create`` server-sent events."""

    provider_name = "anthropic"

    def _create_client(self) -> Any:
        try:
            from anthropic import AsyncAnthropic
        except ImportError as e:
            raise ConfigurationError(
                "anthropic package not installed",
                hint="pip install anthropic",
            ) from e
        timeout = self._settings.timeout_s if self._settings else None
        return AsyncAnthropic(api_key=self._key.secret, timeout=timeout)

    async def _open(self, client: Any, body: dict[str, Any]) -> Any:
        kwargs, extra = split_known(body, _MESSAGES_KWARGS)
        kwargs["stream"] = True
        if extra:
            kwargs["extra_body"] = extra
        return await client.messages.create(**kwargs)
