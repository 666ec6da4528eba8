"""OpenAI-compatible chat-completions payloads (DeepSeek, Grok, Qwen)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ClassVar

from relay.builders.base import (
    PayloadBuilder,
    csv_tool_note,
    data_url,
    is_csv,
    merge_consecutive_roles,
    part_label,
)
from relay.models import ImagePart, ModelType, ProviderPayload, TextPart

if TYPE_CHECKING:
    from relay.models import ContentPart, MessageDto, RequestContext

logger = logging.getLogger(__name__)

_CHAT_PARAMETERS = frozenset(
    {
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
    }
)


def _map_tool_choice(tool_choice: str | None) -> str | dict[str, Any]:
    if tool_choice in (None, "", "auto"):
        return "auto"
    if tool_choice in ("none", "required"):
        return tool_choice
    return {"type": "function", "function": {"name": tool_choice}}


def _plain(message: dict[str, Any]) -> bool:
    return (
        message.get("role") in ("user", "assistant")
        and isinstance(message.get("content"), str)
        and not message.get("tool_calls")
    )


class ChatCompletionsPayloadBuilder(PayloadBuilder):
    """Shared chat-completions serialization with nested tool definitions."""

    supported_parameters = _CHAT_PARAMETERS
    #: Send images as ``image_url`` parts; otherwise describe them in text.
    supports_images: ClassVar[bool] = True

    def _user_content(self, parts: list[ContentPart]) -> str | list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        for part in parts:
            if isinstance(part, TextPart):
                blocks.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                if self.supports_images:
                    blocks.append(
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": data_url(part.mime_type, part.base64),
                                "detail": "high",
                            },
                        }
                    )
                else:
                    blocks.append({"type": "text", "text": f"[Image: {part_label(part)} - Not Sent]"})
            elif is_csv(part):
                blocks.append({"type": "text", "text": csv_tool_note(part.file_name)})
            else:
                blocks.append({"type": "text", "text": f"[File: {part.file_name} - Not Sent]"})

        if all(b["type"] == "text" for b in blocks):
            return "\n\n".join(b["text"] for b in blocks)
        return blocks

    async def _messages(self, message: MessageDto) -> list[dict[str, Any]]:
        if message.tool_result is not None:
            result = message.tool_result
            return [
                {
                    "role": "tool",
                    "tool_call_id": result.call_id,
                    "name": result.name,
                    "content": result.content,
                }
            ]
        if message.is_from_ai:
            if message.tool_calls:
                return [
                    {
                        "role": "assistant",
                        "content": message.content or None,
                        "tool_calls": [
                            {
                                "id": call.id,
                                "type": "function",
                                "function": {"name": call.name, "arguments": call.arguments},
                            }
                            for call in message.tool_calls
                        ],
                    }
                ]
            return [{"role": "assistant", "content": message.content}] if message.content else []

        content = self._user_content(await self.resolve_parts(message))
        return [{"role": "user", "content": content}] if content else []

    async def build_messages(self, context: RequestContext) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        system = context.system_instructions
        if system:
            messages.append({"role": "system", "content": system})
        for item in context.history:
            messages.extend(await self._messages(item))
        return merge_consecutive_roles(messages, mergeable=_plain)

    def apply_thinking(self, context: RequestContext, body: dict[str, Any]) -> None:
        """Add provider reasoning switches; no-op by default."""

    async def build(self, context: RequestContext) -> ProviderPayload:
        body: dict[str, Any] = {"model": context.model.model_code, "stream": True}
        body["messages"] = await self.build_messages(context)
        body.update(self.sampling_parameters(context))
        if context.thinking_enabled:
            self.apply_thinking(context, body)
        if context.tools:
            body["tools"] = list(context.tools)
            body["tool_choice"] = _map_tool_choice(context.overrides.tool_choice)
        return ProviderPayload(self.model_type, body)


class GrokPayloadBuilder(ChatCompletionsPayloadBuilder):
    model_type = ModelType.GROK
    supported_parameters = _CHAT_PARAMETERS | {"reasoning_effort"}

    def apply_thinking(self, context: RequestContext, body: dict[str, Any]) -> None:
        body["reasoning_effort"] = "high"


class QwenPayloadBuilder(ChatCompletionsPayloadBuilder):
    model_type = ModelType.QWEN
    supported_parameters = _CHAT_PARAMETERS | {"top_k", "enable_thinking"}

    def apply_thinking(self, context: RequestContext, body: dict[str, Any]) -> None:
        body["enable_thinking"] = True

    async def build(self, context: RequestContext) -> ProviderPayload:
        payload = await super().build(context)
        payload.body["stream_options"] = {"include_usage": True}
        return payload


class DeepSeekPayloadBuilder(ChatCompletionsPayloadBuilder):
    """DeepSeek: text-only content and reasoner turn-order rules."""

    model_type = ModelType.DEEPSEEK
    supports_images = False
    supported_parameters = _CHAT_PARAMETERS | {
        "enable_cot",
        "enable_reasoning",
        "reasoning_mode",
    }

    def apply_thinking(self, context: RequestContext, body: dict[str, Any]) -> None:
        body["enable_cot"] = True
        body["enable_reasoning"] = True
        body["reasoning_mode"] = "detailed"

    async def build_messages(self, context: RequestContext) -> list[dict[str, Any]]:
        messages = await super().build_messages(context)
        if "reasoner" not in context.model.model_code.lower():
            return messages
        # Reasoner models reject conversations that do not end on a user turn.
        if messages and messages[-1]["role"] == "assistant" and not messages[-1].get("tool_calls"):
            logger.debug("Appending a user turn for %s", context.model.model_code)
            messages.append({"role": "user", "content": "Proceed."})
        first = next((m for m in messages if m["role"] != "system"), None)
        if first is not None and first["role"] == "assistant":
            messages.insert(messages.index(first), {"role": "user", "content": "Proceed."})
        return messages
