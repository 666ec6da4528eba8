"""Provider characterization tests.

These tests pin the exact shapes relay hands to each provider SDK and how
provider failures are mapped. SDK clients are replaced with fakes, so no
network calls are made.
"""

from __future__ import annotations

import asyncio
import base64
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from relay.config import ProviderSettings
from relay.errors import APIError, ConfigurationError, PayloadError, RateLimitError
from relay.models import ModelType, ProviderKey, ProviderPayload, StreamChunk
from relay.providers import (
    AnthropicClient,
    ChatCompletionsClient,
    GeminiClient,
    ImageGenerationClient,
    OpenAIResponsesClient,
    ProviderClient,
    create_client,
)
from relay.providers._errors import extract_retry_after_s, wrap_provider_error
from relay.providers.gemini import build_generate_kwargs
from relay.streaming.accumulator import ToolCallAccumulator
from tests.conftest import CLAUDE_MODEL, GEMINI_MODEL, GPT_MODEL

pytestmark = pytest.mark.contract

KEY = ProviderKey(id="key-1", provider_id="openai", secret="sk-test")


async def _events(*events: Any):
    for event in events:
        yield event


async def _collect(client: Any, payload: ProviderPayload) -> list[StreamChunk]:
    return [chunk async for chunk in client.stream(payload)]


# =============================================================================
# Provider Error Mapping (Contract)
# =============================================================================


def test_wrap_provider_error_extracts_status_and_retry_after_from_response_headers() -> None:
    class _Resp:
        def __init__(self) -> None:
            self.status_code = 429
            self.headers = {"Retry-After": "2"}

    class _SdkError(Exception):
        def __init__(self) -> None:
            super().__init__("rate limited")
            self.response = _Resp()

    err = wrap_provider_error(_SdkError(), provider="openai", phase="stream", api_key_id="k9")

    assert isinstance(err, RateLimitError)
    assert err.status_code == 429
    assert err.retry_after_s == 2.0
    assert err.retryable is True
    assert err.api_key_id == "k9"
    assert "429" in str(err)


def test_wrap_provider_error_enriches_existing_api_error_without_clobbering() -> None:
    base = APIError("bad request", retryable=False, status_code=400)
    wrapped = wrap_provider_error(base, provider="gemini", phase="stream", api_key_id="k1")

    assert wrapped is base
    assert wrapped.retryable is False
    assert (wrapped.provider, wrapped.phase, wrapped.api_key_id) == ("gemini", "stream", "k1")


def test_wrap_provider_error_hints_at_keys_for_auth_failures() -> None:
    class _SdkError(Exception):
        status_code = 401

    err = wrap_provider_error(_SdkError("nope"), provider="anthropic", phase="stream", api_key_id="k2")

    assert err.retryable is False
    assert err.hint is not None
    assert "k2" in err.hint


def test_wrap_provider_error_marks_transport_failures_retryable() -> None:
    err = wrap_provider_error(httpx.ReadTimeout("slow"), provider="grok", phase="stream")
    assert err.retryable is True
    assert err.status_code is None


def test_wrap_provider_error_reraises_cancellation() -> None:
    with pytest.raises(asyncio.CancelledError):
        wrap_provider_error(asyncio.CancelledError(), provider="openai", phase="stream")


@pytest.mark.parametrize(
    ("retry_delay", "expected"),
    [("8.352104981s", 8.352104981), ("8s", 8.0), ("soon", None)],
)
def test_extract_retry_after_s_reads_google_retry_info(
    retry_delay: str, expected: float | None
) -> None:
    class _GoogleError(Exception):
        details = {
            "error": {
                "details": [
                    {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": retry_delay}
                ]
            }
        }

    assert extract_retry_after_s(_GoogleError()) == expected


# =============================================================================
# SDK-backed streaming clients
# =============================================================================


@pytest.mark.asyncio
async def test_openai_client_streams_parsed_chunks_and_splits_extra_body() -> None:
    client = OpenAIResponsesClient(KEY, model_type=ModelType.OPENAI)
    fake = MagicMock()
    fake.responses.create = AsyncMock(
        return_value=_events(
            {"type": "response.created"},
            {"type": "response.output_text.delta", "delta": "Hi"},
            {"type": "response.completed", "response": {"status": "completed", "usage": {}}},
        )
    )
    client._client = fake

    chunks = await _collect(
        client,
        ProviderPayload(ModelType.OPENAI, {"model": "gpt-4.1", "input": [], "seed": 7}),
    )

    assert [c.text for c in chunks] == ["Hi", None]
    assert chunks[-1].finish_reason == "stop"
    kwargs = fake.responses.create.await_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["extra_body"] == {"seed": 7}
    assert "seed" not in kwargs


@pytest.mark.asyncio
async def test_sdk_rate_limit_becomes_rate_limit_error_with_key_id() -> None:
    class _SdkRateLimit(Exception):
        status_code = 429
        retry_after = 10

    client = AnthropicClient(KEY, model_type=ModelType.ANTHROPIC)
    fake = MagicMock()
    fake.messages.create = AsyncMock(side_effect=_SdkRateLimit("too many"))
    client._client = fake

    with pytest.raises(RateLimitError) as exc:
        await _collect(client, ProviderPayload(ModelType.ANTHROPIC, {"model": "claude"}))

    assert exc.value.api_key_id == "key-1"
    assert exc.value.retry_after_s == 10.0
    assert exc.value.provider == "anthropic"
    assert isinstance(exc.value.__cause__, _SdkRateLimit)


@pytest.mark.asyncio
async def test_anthropic_client_passes_messages_kwargs() -> None:
    client = AnthropicClient(KEY, model_type=ModelType.ANTHROPIC)
    fake = MagicMock()
    fake.messages.create = AsyncMock(
        return_value=_events(
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Yo"}},
            {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 2}},
        )
    )
    client._client = fake

    chunks = await _collect(
        client,
        ProviderPayload(
            ModelType.ANTHROPIC,
            {"model": "claude", "messages": [], "max_tokens": 64, "system": "Be brief"},
        ),
    )

    assert chunks[0].text == "Yo"
    assert chunks[-1].finish_reason == "stop"
    kwargs = fake.messages.create.await_args.kwargs
    assert kwargs["system"] == "Be brief"
    assert "extra_body" not in kwargs


@pytest.mark.asyncio
async def test_chat_client_requires_base_url() -> None:
    settings = ProviderSettings(base_urls={})
    client = ChatCompletionsClient(KEY, model_type=ModelType.DEEPSEEK, settings=settings)

    with pytest.raises(ConfigurationError, match="deepseek"):
        await _collect(client, ProviderPayload(ModelType.DEEPSEEK, {"model": "deepseek-chat"}))


@pytest.mark.asyncio
async def test_chat_client_streams_chunks() -> None:
    client = ChatCompletionsClient(KEY, model_type=ModelType.QWEN)
    assert client.provider_name == "qwen"
    fake = MagicMock()
    fake.chat.completions.create = AsyncMock(
        return_value=_events(
            {"choices": [{"delta": {"content": "Ni hao"}, "finish_reason": None}]},
            {"choices": [{"delta": {}, "finish_reason": "stop"}]},
        )
    )
    client._client = fake

    chunks = await _collect(
        client, ProviderPayload(ModelType.QWEN, {"model": "qwen-max", "messages": []})
    )

    assert [c.text for c in chunks] == ["Ni hao", None]
    assert chunks[-1].finish_reason == "stop"


def test_gemini_kwargs_decode_inline_data_and_collect_config() -> None:
    raw = b"\x89PNG"
    body = {
        "model": "gemini-2.5-flash",
        "contents": [
            {
                "role": "user",
                "parts": [
                    {"text": "What is this?"},
                    {"inlineData": {"mimeType": "image/png", "data": base64.b64encode(raw).decode()}},
                ],
            }
        ],
        "systemInstruction": {"parts": [{"text": "Be brief"}]},
        "generationConfig": {"temperature": 0.2},
        "toolConfig": {},
    }

    kwargs = build_generate_kwargs(body)

    assert kwargs["model"] == "gemini-2.5-flash"
    assert kwargs["contents"][0]["parts"][1]["inlineData"]["data"] == raw
    assert kwargs["config"] == {
        "temperature": 0.2,
        "systemInstruction": {"parts": [{"text": "Be brief"}]},
    }
    assert isinstance(body["contents"][0]["parts"][1]["inlineData"]["data"], str)


def test_gemini_kwargs_reject_bad_base64() -> None:
    body = {
        "model": "gemini-2.5-flash",
        "contents": [{"role": "user", "parts": [{"inlineData": {"mimeType": "image/png", "data": "@@@"}}]}],
    }
    with pytest.raises(PayloadError):
        build_generate_kwargs(body)


@pytest.mark.asyncio
async def test_gemini_client_streams_and_closes_aio_client() -> None:
    client = GeminiClient(KEY, model_type=ModelType.GEMINI)
    fake = MagicMock()
    fake.aio.models.generate_content_stream = AsyncMock(
        return_value=_events(
            {"candidates": [{"content": {"parts": [{"text": "Hello"}]}, "finishReason": "STOP"}]}
        )
    )
    fake.aio.aclose = AsyncMock()
    client._client = fake

    chunks = await _collect(
        client, ProviderPayload(ModelType.GEMINI, {"model": "gemini-2.5-flash", "contents": []})
    )
    await client.aclose()

    assert chunks == [StreamChunk(text="Hello", finish_reason="stop")]
    fake.aio.aclose.assert_awaited_once()
    assert "config" not in fake.aio.models.generate_content_stream.await_args.kwargs


@pytest.mark.asyncio
async def test_gemini_calls_in_separate_events_keep_separate_indices() -> None:
    def call_event(name: str, args: dict[str, Any]) -> dict[str, Any]:
        part = {"functionCall": {"name": name, "args": args}}
        return {"candidates": [{"content": {"parts": [part]}}]}

    client = GeminiClient(KEY, model_type=ModelType.GEMINI)
    fake = MagicMock()
    fake.aio.models.generate_content_stream = AsyncMock(
        return_value=_events(
            call_event("get_weather", {"city": "Oslo"}),
            call_event("get_time", {"tz": "UTC"}),
            {"candidates": [{"content": {"parts": []}, "finishReason": "STOP"}]},
        )
    )
    client._client = fake

    accumulator = ToolCallAccumulator()
    chunks = await _collect(
        client, ProviderPayload(ModelType.GEMINI, {"model": "gemini-2.5-flash", "contents": []})
    )
    for chunk in chunks:
        accumulator.extend(chunk.tool_calls)

    calls = [(c.name, json.loads(c.arguments)) for c in accumulator.completed()]
    assert calls == [("get_weather", {"city": "Oslo"}), ("get_time", {"tz": "UTC"})]
    assert chunks[-1].finish_reason == "tool_calls"


@pytest.mark.asyncio
async def test_early_break_closes_the_sdk_stream() -> None:
    closed = []

    async def events():
        try:
            yield {"type": "response.output_text.delta", "delta": "a"}
            yield {"type": "response.output_text.delta", "delta": "b"}
        finally:
            closed.append(True)

    client = OpenAIResponsesClient(KEY, model_type=ModelType.OPENAI)
    fake = MagicMock()
    fake.responses.create = AsyncMock(return_value=events())
    client._client = fake

    stream = client.stream(ProviderPayload(ModelType.OPENAI, {"model": "gpt-4.1"}))
    first = await stream.__anext__()
    await stream.aclose()

    assert first.text == "a"
    assert closed == [True]


# =============================================================================
# Image generation over HTTP
# =============================================================================


def _image_client(model_type: ModelType, handler: Any) -> ImageGenerationClient:
    return ImageGenerationClient(
        KEY,
        model_type=model_type,
        settings=ProviderSettings(),
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_imagen_predictions_become_embedded_image_tags() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "predictions": [
                    {"bytesBase64Encoded": "AAAA", "mimeType": "image/jpeg"},
                    {"bytesBase64Encoded": "BBBB"},
                ]
            },
        )

    client = _image_client(ModelType.IMAGEN, handler)
    payload = ProviderPayload(
        ModelType.IMAGEN,
        {
            "model": "imagen-4.0",
            "stream": False,
            "instances": [{"prompt": "a fox"}],
            "parameters": {"sampleCount": 2, "aspectRatio": "1:1"},
        },
    )

    chunks = await _collect(client, payload)
    await client.aclose()

    assert chunks == [
        StreamChunk(
            text="<image-base64:image/jpeg;base64,AAAA>\n<image-base64:image/png;base64,BBBB>",
            finish_reason="stop",
        )
    ]
    request = seen[0]
    assert str(request.url).endswith("/models/imagen-4.0:predict")
    assert request.headers["x-goog-api-key"] == "sk-test"
    assert json.loads(request.content) == {
        "instances": [{"prompt": "a fox"}],
        "parameters": {"sampleCount": 2, "aspectRatio": "1:1"},
    }


@pytest.mark.asyncio
async def test_flux_urls_become_markdown_images() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"images": [{"url": "https://cdn.test/1.jpg"}]})

    client = _image_client(ModelType.AIMLFLUX, handler)
    chunks = await _collect(
        client,
        ProviderPayload(ModelType.AIMLFLUX, {"model": "flux/dev", "stream": False, "prompt": "a fox"}),
    )

    assert chunks[0].text == "![Generated image 1](https://cdn.test/1.jpg)"
    assert seen[0].headers["Authorization"] == "Bearer sk-test"
    assert json.loads(seen[0].content) == {"model": "flux/dev", "prompt": "a fox"}


@pytest.mark.asyncio
async def test_image_rate_limit_maps_to_rate_limit_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "7"}, json={"error": "busy"})

    client = _image_client(ModelType.AIMLFLUX, handler)

    with pytest.raises(RateLimitError) as exc:
        await _collect(client, ProviderPayload(ModelType.AIMLFLUX, {"model": "flux/dev", "prompt": "x"}))

    assert exc.value.retry_after_s == 7.0
    assert exc.value.api_key_id == "key-1"
    assert exc.value.phase == "generate"


@pytest.mark.asyncio
async def test_image_response_without_images_is_an_error() -> None:
    client = _image_client(ModelType.IMAGEN, lambda request: httpx.Response(200, json={}))

    with pytest.raises(APIError, match="returned no images"):
        await _collect(client, ProviderPayload(ModelType.IMAGEN, {"model": "imagen-4.0"}))


def test_image_client_rejects_chat_models() -> None:
    with pytest.raises(ConfigurationError):
        ImageGenerationClient(KEY, model_type=ModelType.OPENAI)


# =============================================================================
# Dispatch
# =============================================================================


@pytest.mark.parametrize(
    ("model", "expected"),
    [
        (GPT_MODEL, OpenAIResponsesClient),
        (CLAUDE_MODEL, AnthropicClient),
        (GEMINI_MODEL, GeminiClient),
    ],
)
def test_create_client_dispatches_on_model_type(model: Any, expected: type) -> None:
    client = create_client(model, KEY)
    assert isinstance(client, expected)
    assert isinstance(client, ProviderClient)
    assert client.key_id == "key-1"


@pytest.mark.parametrize("model_type", [ModelType.DEEPSEEK, ModelType.GROK, ModelType.QWEN])
def test_create_client_uses_chat_completions_for_compatible_providers(
    model_type: ModelType,
) -> None:
    from relay.models import ModelDescriptor

    model = ModelDescriptor("m", model_type, model_type.value)
    assert isinstance(create_client(model, KEY), ChatCompletionsClient)
