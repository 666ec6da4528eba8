"""Pytest configuration and fixtures.

Provides test doubles for relay's collaborator protocols, environment
isolation, logging configuration, and automatic API test skipping.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os
from typing import Any

import pytest

from relay.message import Message
from relay.models import (
    Attachment,
    MessageDto,
    ModelDescriptor,
    ModelType,
    ProviderKey,
    RequestContext,
    StreamChunk,
    ToolCall,
    ToolResult,
)

GPT_MODEL = ModelDescriptor("gpt-4.1", ModelType.OPENAI, "openai", supports_thinking=True)
CLAUDE_MODEL = ModelDescriptor(
    "claude-sonnet-4-5", ModelType.ANTHROPIC, "anthropic", supports_thinking=True
)
GEMINI_MODEL = ModelDescriptor(
    "gemini-2.5-flash", ModelType.GEMINI, "gemini", supports_thinking=True
)

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FakeProviderClient:
    """Provider client double that replays scripted turns.

    Each entry of ``turns`` is one provider stream: a list of chunks, or an
    exception to raise when the stream opens. ``gate`` pauses every stream
    after its first chunk until the event is set.
    """

    turns: list[Any]
    model_type: ModelType = ModelType.OPENAI
    key_id: str | None = "key-1"
    gate: asyncio.Event | None = None
    payloads: list[Any] = field(default_factory=list)
    closed: bool = False

    async def stream(self, payload: Any):
        self.payloads.append(payload)
        script = self.turns[min(len(self.payloads), len(self.turns)) - 1]
        if isinstance(script, BaseException):
            raise script
        for i, chunk in enumerate(script):
            yield chunk
            if i == 0 and self.gate is not None:
                await self.gate.wait()

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class FakeKeyManager:
    keys: list[str] = field(default_factory=lambda: ["key-1", "key-2", "key-3"])
    handed_out: list[str] = field(default_factory=list)
    successes: list[str] = field(default_factory=list)
    rate_limited: list[tuple[str, float]] = field(default_factory=list)

    async def get_available_key(self, provider_id: str) -> ProviderKey | None:
        if not self.keys:
            return None
        key_id = self.keys[len(self.handed_out) % len(self.keys)]
        self.handed_out.append(key_id)
        return ProviderKey(id=key_id, provider_id=provider_id, secret=f"sk-{key_id}")

    async def report_success(self, key_id: str) -> None:
        self.successes.append(key_id)

    async def report_rate_limited(self, key_id: str, retry_after_s: float) -> None:
        self.rate_limited.append((key_id, retry_after_s))


@dataclass
class FakeQuota:
    allowed: bool = True
    reason: str | None = None
    calls: list[tuple[str, int, int]] = field(default_factory=list)

    async def check_quota(self, user_id: str, cost: int, tokens: int) -> tuple[bool, str | None]:
        self.calls.append((user_id, cost, tokens))
        return self.allowed, self.reason


@dataclass
class FakeAttachmentStore:
    attachments: dict[str, Attachment] = field(default_factory=dict)
    cache: dict[str, str] = field(default_factory=dict)

    async def get_by_id(self, attachment_id: str) -> Attachment | None:
        return self.attachments.get(attachment_id)

    async def get_cached_base64(self, cache_key: str) -> str | None:
        return self.cache.get(cache_key)


@dataclass
class RecordingSink:
    events: list[Any] = field(default_factory=list)

    def publish(self, event: Any) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [e.kind.value for e in self.events]


@dataclass
class RecordingRepository:
    saved: list[tuple[str, str, str]] = field(default_factory=list)

    async def save(self, message: Message) -> None:
        self.saved.append((message.id, message.status.value, message.content))


@dataclass
class FakeToolExecutor:
    """Tool executor double that answers every call with ``result``."""

    result: str = "42"
    gate: asyncio.Event | None = None
    executed: list[ToolCall] = field(default_factory=list)

    async def execute(self, tool_call: ToolCall) -> MessageDto:
        if self.gate is not None:
            await self.gate.wait()
        self.executed.append(tool_call)
        return MessageDto(
            id=f"result-{tool_call.id}",
            is_from_ai=False,
            content=self.result,
            tool_result=ToolResult(tool_call.id, tool_call.name, self.result),
        )

    async def format_assistant_tool_request(
        self, model_type: ModelType, tool_calls: Sequence[ToolCall]
    ) -> MessageDto:
        del model_type
        return MessageDto(id="tool-request", is_from_ai=True, tool_calls=tuple(tool_calls))


def user(content: str, id: str = "u1") -> MessageDto:
    return MessageDto(id=id, is_from_ai=False, content=content)


def ai(content: str, id: str = "a1") -> MessageDto:
    return MessageDto(id=id, is_from_ai=True, content=content)


def make_context(
    model: ModelDescriptor = GPT_MODEL,
    history: Sequence[MessageDto] | None = None,
    **kwargs: Any,
) -> RequestContext:
    return RequestContext(
        user_id="user-1",
        model=model,
        history=tuple(history if history is not None else [user("Hello")]),
        **kwargs,
    )


def text_turn(*texts: str, finish: str = "stop") -> list[StreamChunk]:
    chunks = [StreamChunk(text=t) for t in texts]
    chunks.append(StreamChunk(finish_reason=finish, input_tokens=10, output_tokens=5))
    return chunks


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_relay_env(request, monkeypatch):
    """Ensure a clean RELAY_* and provider environment for each test.

    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("RELAY_", "OPENAI_", "ANTHROPIC_", "GEMINI_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# Shared fixtures
# =============================================================================


@pytest.fixture
def message() -> Message:
    return Message(id="msg-1")


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def tools() -> FakeToolExecutor:
    return FakeToolExecutor()
