"""Provider payload builders keyed by model type."""

from __future__ import annotations

from typing import TYPE_CHECKING

from relay.builders.anthropic import AnthropicPayloadBuilder
from relay.builders.base import PayloadBuilder
from relay.builders.chat import DeepSeekPayloadBuilder, GrokPayloadBuilder, QwenPayloadBuilder
from relay.builders.gemini import GeminiPayloadBuilder
from relay.builders.images import AimlFluxPayloadBuilder, ImagenPayloadBuilder
from relay.builders.openai import OpenAIPayloadBuilder
from relay.errors import UnsupportedModelTypeError
from relay.models import ModelType

if TYPE_CHECKING:
    from relay.content import MultimodalContentResolver

_BUILDERS: dict[ModelType, type[PayloadBuilder]] = {
    ModelType.OPENAI: OpenAIPayloadBuilder,
    ModelType.ANTHROPIC: AnthropicPayloadBuilder,
    ModelType.GEMINI: GeminiPayloadBuilder,
    ModelType.DEEPSEEK: DeepSeekPayloadBuilder,
    ModelType.GROK: GrokPayloadBuilder,
    ModelType.QWEN: QwenPayloadBuilder,
    ModelType.IMAGEN: ImagenPayloadBuilder,
    ModelType.AIMLFLUX: AimlFluxPayloadBuilder,
}


def register_payload_builder(model_type: ModelType, builder: type[PayloadBuilder]) -> None:
    """Register (or replace) the builder used for *model_type*."""
    _BUILDERS[model_type] = builder


def get_payload_builder(
    model_type: ModelType, resolver: MultimodalContentResolver
) -> PayloadBuilder:
    """Return a builder instance for *model_type*."""
    try:
        builder_cls = _BUILDERS[model_type]
    except KeyError:
        raise UnsupportedModelTypeError(
            f"No payload builder registered for model type {model_type!r}",
            hint="Register one with register_payload_builder().",
        ) from None
    return builder_cls(resolver)


__all__ = [
    "AimlFluxPayloadBuilder",
    "AnthropicPayloadBuilder",
    "DeepSeekPayloadBuilder",
    "GeminiPayloadBuilder",
    "GrokPayloadBuilder",
    "ImagenPayloadBuilder",
    "OpenAIPayloadBuilder",
    "PayloadBuilder",
    "QwenPayloadBuilder",
    "get_payload_builder",
    "register_payload_builder",
]
