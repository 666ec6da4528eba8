"""Collaborator protocols: the seams relay consumes but does not own.

Persistence, quota bookkeeping, key storage, tool plugins and notification
delivery live outside this package; relay only talks to them through these
interfaces.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from relay.message import Message
    from relay.models import Attachment, MessageDto, ModelType, ProviderKey, ToolCall
    from relay.streaming.notifications import StreamEvent
    from relay.tools import ToolDefinition


@runtime_checkable
class KeyManager(Protocol):
    """Hands out provider API keys and tracks their health."""

    async def get_available_key(self, provider_id: str) -> ProviderKey | None:
        """Return a usable key for the provider, or None when all are exhausted."""
        ...

    async def report_success(self, key_id: str) -> None:
        """Record a successful call made with the key."""
        ...

    async def report_rate_limited(self, key_id: str, retry_after_s: float) -> None:
        """Park the key for ``retry_after_s`` seconds."""
        ...


@runtime_checkable
class QuotaService(Protocol):
    async def check_quota(
        self, user_id: str, cost: int, tokens: int
    ) -> tuple[bool, str | None]:
        """Return ``(allowed, reason)``; ``reason`` is user-facing."""
        ...


@runtime_checkable
class ToolExecutor(Protocol):
    async def execute(self, tool_call: ToolCall) -> MessageDto:
        """Run one tool call and return its result message."""
        ...

    async def format_assistant_tool_request(
        self, model_type: ModelType, tool_calls: Sequence[ToolCall]
    ) -> MessageDto:
        """Return the assistant message that requested *tool_calls*."""
        ...


@runtime_checkable
class AttachmentStore(Protocol):
    async def get_by_id(self, attachment_id: str) -> Attachment | None: ...

    async def get_cached_base64(self, cache_key: str) -> str | None: ...


@runtime_checkable
class NotificationSink(Protocol):
    """Fire-and-continue event sink; must not block the stream."""

    def publish(self, event: StreamEvent) -> None: ...


@runtime_checkable
class MessageRepository(Protocol):
    async def save(self, message: Message) -> None:
        """Persist the message's final content and status."""
        ...


@runtime_checkable
class PluginCatalog(Protocol):
    async def list_plugins(self) -> Sequence[ToolDefinition]: ...


@runtime_checkable
class Plugin(Protocol):
    """An executable tool registered with the tool executor."""

    name: str

    async def execute(self, arguments: Mapping[str, Any]) -> str: ...
