"""Domain models shared by builders, the turn machine and provider clients."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import enum
from typing import Any, Literal


class ModelType(str, enum.Enum):
    """Provider family; the dispatch key for builders, parsers and clients."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    DEEPSEEK = "deepseek"
    GROK = "grok"
    QWEN = "qwen"
    IMAGEN = "imagen"
    AIMLFLUX = "aimlflux"

    @property
    def is_image_generator(self) -> bool:
        return self in (ModelType.IMAGEN, ModelType.AIMLFLUX)


class ResponseType(str, enum.Enum):
    """What the caller expects back from a streaming operation."""

    TEXT = "text"
    TOOL_CALL = "tool_call"
    IMAGE = "image"

    @property
    def allows_tools(self) -> bool:
        return self is not ResponseType.IMAGE


class AttachmentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


# =============================================================================
# Content parts
# =============================================================================


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    mime_type: str
    base64: str
    file_name: str | None = None


@dataclass(frozen=True)
class FilePart:
    mime_type: str
    base64: str
    file_name: str


ContentPart = TextPart | ImagePart | FilePart


@dataclass(frozen=True)
class Attachment:
    """Attachment metadata as exposed by the attachment store."""

    id: str
    file_name: str
    content_type: str
    status: AttachmentStatus | str
    #: Set once processing finished; keys the cached base64 payload.
    cache_key: str | None = None


# =============================================================================
# Conversation
# =============================================================================


@dataclass(frozen=True)
class ToolCall:
    """A completed tool call requested by the model."""

    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ToolResult:
    """Output of one executed tool call, fed back on the next turn."""

    call_id: str
    name: str
    content: str


@dataclass(frozen=True)
class MessageDto:
    """Immutable snapshot of one conversation message.

    At most one of ``tool_calls`` (an assistant tool request) and
    ``tool_result`` is set.
    """

    id: str
    is_from_ai: bool
    content: str = ""
    attachment_ids: tuple[str, ...] = ()
    thinking: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_result: ToolResult | None = None

    @property
    def role(self) -> Literal["user", "assistant"]:
        return "assistant" if self.is_from_ai else "user"


@dataclass(frozen=True)
class ModelDescriptor:
    model_code: str
    model_type: ModelType
    provider_id: str
    max_output_tokens: int | None = None
    supports_thinking: bool = False


@dataclass(frozen=True)
class SamplingSettings:
    """Sampling parameters; ``None`` means "not set at this level"."""

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    max_tokens: int | None = None
    stop: tuple[str, ...] | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "top_k": self.top_k,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
            "max_tokens": self.max_tokens,
            "stop": list(self.stop) if self.stop is not None else None,
        }


@dataclass(frozen=True)
class AgentSettings:
    name: str = ""
    system_instructions: str | None = None
    sampling: SamplingSettings | None = None


@dataclass(frozen=True)
class UserSettings:
    system_instructions: str | None = None
    sampling: SamplingSettings | None = None


@dataclass(frozen=True)
class CallOverrides:
    """Per-request knobs that take priority over agent and user defaults."""

    enable_thinking: bool | None = None
    image_size: str | None = None
    num_images: int | None = None
    safety_tolerance: int | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    #: ``"auto"``, ``"none"`` or the name of a function to force.
    tool_choice: str | None = None
    enable_deep_search: bool = False


@dataclass(frozen=True)
class RequestContext:
    """Everything needed to build one provider request.

    ``history`` never contains the AI message currently being generated.
    """

    user_id: str
    model: ModelDescriptor
    history: tuple[MessageDto, ...] = ()
    agent: AgentSettings | None = None
    user_settings: UserSettings | None = None
    overrides: CallOverrides = field(default_factory=CallOverrides)
    #: Provider-shaped tool list, or None when tools are off.
    tools: tuple[dict[str, Any], ...] | None = None
    chat_session_id: str | None = None

    @property
    def model_type(self) -> ModelType:
        return self.model.model_type

    @property
    def thinking_enabled(self) -> bool:
        return bool(self.overrides.enable_thinking) and self.model.supports_thinking

    @property
    def system_instructions(self) -> str | None:
        if self.agent is not None and self.agent.system_instructions:
            return self.agent.system_instructions
        if self.user_settings is not None and self.user_settings.system_instructions:
            return self.user_settings.system_instructions
        return None

    def with_history(self, history: tuple[MessageDto, ...] | list[MessageDto]) -> RequestContext:
        return replace(self, history=tuple(history))

    def with_tools(self, tools: list[dict[str, Any]] | None) -> RequestContext:
        return replace(self, tools=tuple(tools) if tools else None)


# =============================================================================
# Provider transport
# =============================================================================


@dataclass(frozen=True)
class ProviderPayload:
    """Provider-shaped request body; no schema is shared across providers."""

    model_type: ModelType
    body: dict[str, Any]


@dataclass(frozen=True)
class ToolCallFragment:
    """Partial tool call; chunks for one call share an ``index``."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True)
class StreamChunk:
    text: str | None = None
    thinking: str | None = None
    tool_calls: tuple[ToolCallFragment, ...] = ()
    finish_reason: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None


@dataclass(frozen=True)
class TurnResult:
    input_tokens: int
    output_tokens: int
    completed: bool
    thinking: str | None = None


@dataclass(frozen=True)
class ProviderKey:
    """An API key handed out by the key manager for one attempt."""

    id: str
    provider_id: str
    secret: str

    def __repr__(self) -> str:
        return f"ProviderKey(id={self.id!r}, provider_id={self.provider_id!r}, secret='[REDACTED]')"
