"""Relay: provider-agnostic streaming for chat LLMs.

Public API:
    - StreamingService: start/stop streaming AI messages
    - RequestOrchestrator: quota gate, key rotation and retries
    - ConversationTurnProcessor: the multi-turn tool-calling loop
    - get_payload_builder(): provider request bodies
    - StreamingOptions / ProviderSettings: configuration
"""

from __future__ import annotations

import logging

from relay.builders import get_payload_builder
from relay.config import ProviderSettings, StreamingOptions
from relay.content import MultimodalContentResolver
from relay.errors import (
    APIError,
    ConfigurationError,
    InternalError,
    NoAvailableKeyError,
    PayloadError,
    QuotaExceededError,
    RateLimitError,
    RelayError,
    UnsupportedModelTypeError,
)
from relay.keys import InMemoryKeyPool
from relay.message import Message, MessageStatus
from relay.models import (
    AgentSettings,
    CallOverrides,
    MessageDto,
    ModelDescriptor,
    ModelType,
    RequestContext,
    ResponseType,
    SamplingSettings,
    UserSettings,
)
from relay.orchestrator import RequestOrchestrator
from relay.providers import create_client
from relay.retry import RetryPolicy
from relay.service import StreamingService
from relay.streaming import (
    ConversationTurnProcessor,
    StopReason,
    StreamEvent,
    StreamEventKind,
    StreamingOperationRegistry,
)
from relay.tool_calls import PluginToolExecutor
from relay.tools import ToolDefinition, ToolDefinitionTranslator

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("relay-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("relay").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "AgentSettings",
    "CallOverrides",
    "ConfigurationError",
    "ConversationTurnProcessor",
    "InMemoryKeyPool",
    "InternalError",
    "Message",
    "MessageDto",
    "MessageStatus",
    "ModelDescriptor",
    "ModelType",
    "MultimodalContentResolver",
    "NoAvailableKeyError",
    "PayloadError",
    "PluginToolExecutor",
    "ProviderSettings",
    "QuotaExceededError",
    "RateLimitError",
    "RelayError",
    "RequestContext",
    "RequestOrchestrator",
    "ResponseType",
    "RetryPolicy",
    "SamplingSettings",
    "StopReason",
    "StreamEvent",
    "StreamEventKind",
    "StreamingOperationRegistry",
    "StreamingOptions",
    "StreamingService",
    "ToolDefinition",
    "ToolDefinitionTranslator",
    "UnsupportedModelTypeError",
    "UserSettings",
    "create_client",
    "get_payload_builder",
]
