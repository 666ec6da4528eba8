"""OpenAI Responses API and OpenAI-compatible chat-completions clients."""

from __future__ import annotations

from typing import Any

from relay.errors import ConfigurationError
from relay.models import ModelType
from relay.providers._streaming import SDKStreamingClient, split_known

_RESPONSES_KWARGS = frozenset(
    {
        "model",
        "input",
        "instructions",
        "stream",
        "temperature",
        "top_p",
        "max_output_tokens",
        "reasoning",
        "tools",
        "tool_choice",
        "user",
        "metadata",
        "parallel_tool_calls",
        "store",
        "text",
        "truncation",
    }
)

_CHAT_KWARGS = frozenset(
    {
        "model",
        "messages",
        "stream",
        "stream_options",
        "temperature",
        "top_p",
        "max_tokens",
        "stop",
        "frequency_penalty",
        "presence_penalty",
        "seed",
        "n",
        "response_format",
        "logit_bias",
        "logprobs",
        "top_logprobs",
        "user",
        "tools",
        "tool_choice",
        "reasoning_effort",
    }
)


def _async_openai(**kwargs: Any) -> Any:
    try:
        from openai import AsyncOpenAI
    except ImportError as e:
        raise ConfigurationError(
            "openai package not installed",
            hint="pip install openai",
        ) from e
    return AsyncOpenAI(**kwargs)


class OpenAIResponsesClient(SDKStreamingClient):
    """Streams ``responses.create`` events."""

    provider_name = "openai"

    def _create_client(self) -> Any:
        timeout = self._settings.timeout_s if self._settings else None
        return _async_openai(api_key=self._key.secret, timeout=timeout)

    async def _open(self, client: Any, body: dict[str, Any]) -> Any:
        kwargs, extra = split_known(body, _RESPONSES_KWARGS)
        kwargs["stream"] = True
        if extra:
            kwargs["extra_body"] = extra
        return await client.responses.create(**kwargs)


class ChatCompletionsClient(SDKStreamingClient):
    """Streams ``chat.completions.create`` chunks from a compatible endpoint."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.provider_name = self.model_type.value

    def _create_client(self) -> Any:
        base_url = self._settings.base_url(self.model_type.value) if self._settings else None
        if not base_url:
            raise ConfigurationError(
                f"No base URL configured for {self.model_type.value}",
                hint=f"Set RELAY_{self.model_type.value.upper()}_BASE_URL.",
            )
        timeout = self._settings.timeout_s if self._settings else None
        return _async_openai(api_key=self._key.secret, base_url=base_url, timeout=timeout)

    async def _open(self, client: Any, body: dict[str, Any]) -> Any:
        kwargs, extra = split_known(body, _CHAT_KWARGS)
        kwargs["stream"] = True
        if extra:
            kwargs["extra_body"] = extra
        return await client.chat.completions.create(**kwargs)


CHAT_COMPLETIONS_MODEL_TYPES = frozenset({ModelType.DEEPSEEK, ModelType.GROK, ModelType.QWEN})
