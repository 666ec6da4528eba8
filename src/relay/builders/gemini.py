"""Gemini ``generateContent`` payloads (REST camelCase shape)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from relay.builders.base import (
    PayloadBuilder,
    csv_tool_note,
    is_csv,
    merge_consecutive_roles,
    part_label,
)
from relay.models import FilePart, ImagePart, ModelType, ProviderPayload

if TYPE_CHECKING:
    from relay.models import ContentPart, MessageDto, RequestContext

GEMINI_IMAGE_TYPES = frozenset(
    {"image/png", "image/jpeg", "image/webp", "image/heic", "image/heif"}
)

SAFETY_CATEGORIES: tuple[str, ...] = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


def _part(part: ContentPart) -> dict[str, Any]:
    if isinstance(part, ImagePart):
        if part.mime_type.lower() not in GEMINI_IMAGE_TYPES:
            return {"text": f"[Image: {part_label(part)} - Unsupported Type]"}
        return {"inlineData": {"mimeType": part.mime_type.lower(), "data": part.base64}}
    if isinstance(part, FilePart):
        if is_csv(part):
            return {"text": csv_tool_note(part.file_name)}
        return {"inlineData": {"mimeType": part.mime_type, "data": part.base64}}
    return {"text": part.text}


def _args(arguments: str) -> dict[str, Any]:
    try:
        value = json.loads(arguments) if arguments else {}
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {"value": value}


class GeminiPayloadBuilder(PayloadBuilder):
    model_type = ModelType.GEMINI
    supported_parameters = frozenset(
        {
            "temperature",
            "topP",
            "topK",
            "maxOutputTokens",
            "stopSequences",
            "candidateCount",
            "response_mime_type",
            "response_schema",
        }
    )
    parameter_renames = {
        "top_p": "topP",
        "top_k": "topK",
        "max_tokens": "maxOutputTokens",
        "stop": "stopSequences",
    }

    async def _content(self, message: MessageDto) -> dict[str, Any] | None:
        if message.tool_result is not None:
            result = message.tool_result
            return {
                "role": "user",
                "parts": [
                    {
                        "functionResponse": {
                            "name": result.name,
                            "response": {"content": result.content},
                        }
                    }
                ],
            }
        if message.is_from_ai:
            parts: list[dict[str, Any]] = []
            if message.content:
                parts.append({"text": message.content})
            parts.extend(
                {"functionCall": {"name": call.name, "args": _args(call.arguments)}}
                for call in message.tool_calls or ()
            )
            return {"role": "model", "parts": parts} if parts else None

        parts = [_part(p) for p in await self.resolve_parts(message)]
        return {"role": "user", "parts": parts} if parts else None

    async def build(self, context: RequestContext) -> ProviderPayload:
        body: dict[str, Any] = {"model": context.model.model_code, "stream": True}

        contents: list[dict[str, Any]] = []
        for message in context.history:
            converted = await self._content(message)
            if converted is not None:
                contents.append(converted)
        body["contents"] = merge_consecutive_roles(contents, content_key="parts")

        system = context.system_instructions
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}

        generation_config = self.sampling_parameters(context)
        if context.thinking_enabled:
            generation_config["thinkingConfig"] = {
                "thinkingBudget": -1,
                "includeThoughts": True,
            }
        if generation_config:
            body["generationConfig"] = generation_config

        body["safetySettings"] = [
            {"category": category, "threshold": "BLOCK_NONE"}
            for category in SAFETY_CATEGORIES
        ]

        if context.tools:
            body["tools"] = list(context.tools)
            choice = context.overrides.tool_choice
            if choice == "none":
                body["toolConfig"] = {"functionCallingConfig": {"mode": "NONE"}}
            elif choice not in (None, "", "auto"):
                body["toolConfig"] = {
                    "functionCallingConfig": {"mode": "ANY", "allowedFunctionNames": [choice]}
                }
        return ProviderPayload(self.model_type, body)
