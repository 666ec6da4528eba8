"""OpenAI Responses API payloads."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from relay.builders.base import PayloadBuilder, csv_tool_note, data_url, is_csv
from relay.models import FilePart, ImagePart, ModelType, ProviderPayload
from relay.tools import DEEP_SEARCH_TOOL

if TYPE_CHECKING:
    from relay.models import ContentPart, MessageDto, RequestContext

logger = logging.getLogger(__name__)


def _input_part(part: ContentPart) -> dict[str, Any]:
    if isinstance(part, ImagePart):
        return {"type": "input_image", "image_url": data_url(part.mime_type, part.base64)}
    if isinstance(part, FilePart):
        if is_csv(part):
            return {"type": "input_text", "text": csv_tool_note(part.file_name)}
        return {
            "type": "input_file",
            "filename": part.file_name,
            "file_data": data_url(part.mime_type, part.base64),
        }
    return {"type": "input_text", "text": part.text}


def _map_tool_choice(tool_choice: str | None) -> str | dict[str, str]:
    if tool_choice in (None, "", "auto"):
        return "auto"
    if tool_choice in ("none", "required"):
        return tool_choice
    return {"type": "function", "name": tool_choice}


class OpenAIPayloadBuilder(PayloadBuilder):
    """Responses API: ``instructions`` + ``input`` items, flat tools."""

    model_type = ModelType.OPENAI
    supported_parameters = frozenset(
        {
            "temperature",
            "top_p",
            "max_tokens",
            "seed",
            "response_format",
            "tools",
            "tool_choice",
            "logit_bias",
            "user",
            "n",
            "logprobs",
            "top_logprobs",
            "reasoning",
        }
    )

    async def _items(self, message: MessageDto) -> list[dict[str, Any]]:
        if message.tool_result is not None:
            return [
                {
                    "type": "function_call_output",
                    "call_id": message.tool_result.call_id,
                    "output": message.tool_result.content,
                }
            ]
        if message.is_from_ai:
            items: list[dict[str, Any]] = []
            if message.content:
                items.append({"role": "assistant", "content": message.content})
            items.extend(
                {
                    "type": "function_call",
                    "call_id": call.id,
                    "name": call.name,
                    "arguments": call.arguments,
                }
                for call in message.tool_calls or ()
            )
            return items

        parts = [_input_part(p) for p in await self.resolve_parts(message)]
        if not parts:
            return []
        if len(parts) == 1 and parts[0]["type"] == "input_text":
            return [{"role": "user", "content": parts[0]["text"]}]
        return [{"role": "user", "content": parts}]

    async def build(self, context: RequestContext) -> ProviderPayload:
        body: dict[str, Any] = {"model": context.model.model_code, "stream": True}
        system = context.system_instructions
        if system:
            body["instructions"] = system

        items: list[dict[str, Any]] = []
        for message in context.history:
            items.extend(await self._items(message))
        body["input"] = items

        params = self.sampling_parameters(context)
        if context.thinking_enabled:
            params["reasoning"] = {"effort": "medium", "summary": "detailed"}
            for name in ("temperature", "top_p", "max_tokens"):
                params.pop(name, None)
        elif "max_tokens" in params:
            params["max_output_tokens"] = params.pop("max_tokens")
        body.update(params)

        tools = list(context.tools or ())
        tool_choice = _map_tool_choice(context.overrides.tool_choice)
        if context.overrides.enable_deep_search:
            deep_search = [t for t in tools if t.get("name") == DEEP_SEARCH_TOOL]
            if deep_search:
                # Deep-search mode sends only that tool and forces a call.
                tools, tool_choice = deep_search, "required"
            else:
                logger.warning(
                    "Deep search requested but the %s tool is not available", DEEP_SEARCH_TOOL
                )
        if tools:
            body["tools"] = tools
            body["tool_choice"] = tool_choice
        return ProviderPayload(self.model_type, body)
