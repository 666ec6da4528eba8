"""Anthropic Messages API payloads."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from relay.builders.base import (
    TEXT_DOCUMENT_MIME_TYPES,
    PayloadBuilder,
    csv_tool_note,
    decode_text,
    ensure_alternating_roles,
    is_csv,
    part_label,
)
from relay.models import FilePart, ImagePart, ModelType, ProviderPayload, TextPart

if TYPE_CHECKING:
    from relay.models import ContentPart, MessageDto, RequestContext

logger = logging.getLogger(__name__)

ANTHROPIC_DEFAULT_MAX_TOKENS = 4096
ANTHROPIC_THINKING_BUDGET = 1024
ANTHROPIC_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})


def _args_to_input(arguments: str) -> dict[str, Any]:
    try:
        value = json.loads(arguments) if arguments else {}
    except json.JSONDecodeError:
        logger.warning("Tool call arguments are not valid JSON; sending empty input")
        return {}
    return value if isinstance(value, dict) else {"value": value}


def _map_tool_choice(tool_choice: str | None) -> dict[str, str]:
    if tool_choice in (None, "", "auto"):
        return {"type": "auto"}
    if tool_choice == "none":
        return {"type": "none"}
    if tool_choice == "required":
        return {"type": "any"}
    return {"type": "tool", "name": tool_choice}


class AnthropicPayloadBuilder(PayloadBuilder):
    model_type = ModelType.ANTHROPIC
    supported_parameters = frozenset(
        {
            "max_tokens",
            "temperature",
            "top_k",
            "top_p",
            "stop_sequences",
            "metadata",
            "thinking",
        }
    )
    parameter_renames = {"stop": "stop_sequences"}
    provider_defaults = {"max_tokens": ANTHROPIC_DEFAULT_MAX_TOKENS}

    def _content_block(self, part: ContentPart) -> dict[str, Any]:
        if isinstance(part, TextPart):
            return {"type": "text", "text": part.text}
        if isinstance(part, ImagePart):
            if part.mime_type.lower() not in ANTHROPIC_IMAGE_TYPES:
                return {"type": "text", "text": f"[Image: {part_label(part)} - Unsupported Type]"}
            return {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": part.mime_type.lower(),
                    "data": part.base64,
                },
            }
        if is_csv(part):
            return {"type": "text", "text": csv_tool_note(part.file_name)}
        mime = part.mime_type.lower()
        if mime == "application/pdf":
            return {
                "type": "document",
                "source": {"type": "base64", "media_type": mime, "data": part.base64},
                "title": part.file_name,
            }
        if mime in TEXT_DOCUMENT_MIME_TYPES:
            decoded = decode_text(part.base64)
            if decoded is not None:
                return {
                    "type": "document",
                    "source": {"type": "text", "media_type": "text/plain", "data": decoded},
                    "title": part.file_name,
                }
        return {"type": "text", "text": f"[File: {part.file_name} - Unsupported Type]"}

    async def _message(self, message: MessageDto) -> dict[str, Any] | None:
        if message.tool_result is not None:
            return {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": message.tool_result.call_id,
                        "content": message.tool_result.content,
                    }
                ],
            }
        if message.is_from_ai:
            blocks: list[dict[str, Any]] = []
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            for call in message.tool_calls or ():
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": _args_to_input(call.arguments),
                    }
                )
            return {"role": "assistant", "content": blocks} if blocks else None

        blocks = [self._content_block(p) for p in await self.resolve_parts(message)]
        return {"role": "user", "content": blocks} if blocks else None

    async def build(self, context: RequestContext) -> ProviderPayload:
        body: dict[str, Any] = {"model": context.model.model_code, "stream": True}
        system = context.system_instructions
        if system:
            body["system"] = system

        messages: list[dict[str, Any]] = []
        for item in context.history:
            converted = await self._message(item)
            if converted is not None:
                messages.append(converted)
        body["messages"] = ensure_alternating_roles(messages)

        params = self.sampling_parameters(context)
        if context.thinking_enabled and self._can_think(messages):
            params["thinking"] = {"type": "enabled", "budget_tokens": ANTHROPIC_THINKING_BUDGET}
            params["temperature"] = 1.0
            params.pop("top_k", None)
            params.pop("top_p", None)
            if params.get("max_tokens", 0) <= ANTHROPIC_THINKING_BUDGET:
                params["max_tokens"] = ANTHROPIC_THINKING_BUDGET + ANTHROPIC_DEFAULT_MAX_TOKENS
        params.setdefault("max_tokens", ANTHROPIC_DEFAULT_MAX_TOKENS)
        body.update(params)

        if context.tools:
            body["tools"] = list(context.tools)
            body["tool_choice"] = _map_tool_choice(context.overrides.tool_choice)
        return ProviderPayload(self.model_type, body)

    @staticmethod
    def _can_think(messages: list[dict[str, Any]]) -> bool:
        # Replayed tool_use turns would need the original signed thinking blocks.
        for msg in messages:
            if msg["role"] != "assistant":
                continue
            for block in msg["content"]:
                if isinstance(block, dict) and block.get("type") == "tool_use":
                    logger.debug("Disabling thinking for a turn that replays tool calls")
                    return False
        return True
