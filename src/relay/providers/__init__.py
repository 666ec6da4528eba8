"""Provider implementations."""

from __future__ import annotations

from typing import TYPE_CHECKING

from relay.errors import UnsupportedModelTypeError
from relay.models import ModelType

from .anthropic import AnthropicClient
from .base import ProviderClient
from .gemini import GeminiClient
from .images import ImageGenerationClient
from .openai import (
    CHAT_COMPLETIONS_MODEL_TYPES,
    ChatCompletionsClient,
    OpenAIResponsesClient,
)

if TYPE_CHECKING:
    from relay.config import ProviderSettings
    from relay.models import ModelDescriptor, ProviderKey


def create_client(
    model: ModelDescriptor,
    key: ProviderKey,
    settings: ProviderSettings | None = None,
) -> ProviderClient:
    """Create the streaming client for *model*, bound to *key*."""
    model_type = model.model_type
    if model_type is ModelType.OPENAI:
        return OpenAIResponsesClient(key, model_type=model_type, settings=settings)
    if model_type is ModelType.ANTHROPIC:
        return AnthropicClient(key, model_type=model_type, settings=settings)
    if model_type is ModelType.GEMINI:
        return GeminiClient(key, model_type=model_type, settings=settings)
    if model_type in CHAT_COMPLETIONS_MODEL_TYPES:
        return ChatCompletionsClient(key, model_type=model_type, settings=settings)
    if model_type.is_image_generator:
        return ImageGenerationClient(key, model_type=model_type, settings=settings)
    raise UnsupportedModelTypeError(f"No provider client for model type {model_type!r}")


__all__ = [
    "AnthropicClient",
    "ChatCompletionsClient",
    "GeminiClient",
    "ImageGenerationClient",
    "OpenAIResponsesClient",
    "ProviderClient",
    "create_client",
]
