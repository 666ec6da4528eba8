"""Shared payload-building machinery.

Every provider builder consumes a ``RequestContext`` and emits a
``ProviderPayload`` whose body is a plain ordered dict. Sampling parameters
are merged by priority, renamed to the provider's spelling and then passed
through an explicit allow-list; anything else is dropped with a debug log.
"""

from __future__ import annotations

import abc
import base64
import binascii
import logging
from typing import TYPE_CHECKING, Any, ClassVar

from relay.models import FilePart, ImagePart, TextPart

if TYPE_CHECKING:
    from collections.abc import Callable

    from relay.content import MultimodalContentResolver
    from relay.models import ContentPart, MessageDto, ModelType, ProviderPayload, RequestContext

logger = logging.getLogger(__name__)

SAMPLING_PARAMETERS: tuple[str, ...] = (
    "temperature",
    "top_p",
    "top_k",
    "frequency_penalty",
    "presence_penalty",
    "max_tokens",
    "stop",
)

CSV_MIME_TYPES = frozenset({"text/csv", "application/csv"})
TEXT_DOCUMENT_MIME_TYPES = frozenset({"text/plain", "text/markdown"})

ALTERNATION_FILLER = "..."


def is_csv(part: FilePart) -> bool:
    return part.mime_type.lower() in CSV_MIME_TYPES or part.file_name.lower().endswith(".csv")


def csv_tool_note(file_name: str, tool_name: str = "csv_reader") -> str:
    """Instruction text sent instead of a CSV payload."""
    return (
        f"Note: The CSV file '{file_name}' can't be processed directly. "
        f"Please use the {tool_name} tool to read it, for example: "
        f'{{"file_name": "{file_name}", "max_rows": 100}}'
    )


def data_url(mime_type: str, data: str) -> str:
    return f"data:{mime_type};base64,{data}"


def decode_text(data: str) -> str | None:
    """Decode a base64 text payload, or None when it is not UTF-8 text."""
    try:
        return base64.b64decode(data, validate=False).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


def part_label(part: ImagePart | FilePart) -> str:
    return part.file_name or part.mime_type


def text_of(parts: list[ContentPart]) -> str:
    return "\n\n".join(p.text for p in parts if isinstance(p, TextPart) and p.text)


def _as_blocks(content: Any) -> list[Any]:
    if isinstance(content, list):
        return list(content)
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return [content]


def _combine(a: Any, b: Any) -> Any:
    if isinstance(a, str) and isinstance(b, str):
        if a and b:
            return f"{a}\n\n{b}"
        return a or b
    return _as_blocks(a) + _as_blocks(b)


def merge_consecutive_roles(
    messages: list[dict[str, Any]],
    *,
    content_key: str = "content",
    mergeable: Callable[[dict[str, Any]], bool] | None = None,
) -> list[dict[str, Any]]:
    """Merge runs of messages with the same role into one message.

    String contents are joined with a blank line; block lists are
    concatenated. Messages rejected by *mergeable* are never merged.
    """
    merged: list[dict[str, Any]] = []
    for msg in messages:
        prev = merged[-1] if merged else None
        if (
            prev is not None
            and prev.get("role") == msg.get("role")
            and (mergeable is None or (mergeable(prev) and mergeable(msg)))
        ):
            prev[content_key] = _combine(prev.get(content_key), msg.get(content_key))
            continue
        merged.append(dict(msg))
    return merged


def ensure_alternating_roles(
    messages: list[dict[str, Any]],
    *,
    first_role: str = "user",
    content_key: str = "content",
    filler: Any = ALTERNATION_FILLER,
) -> list[dict[str, Any]]:
    """Return messages that strictly alternate, starting with *first_role*.

    Same-role runs are merged; a filler turn is prepended when the
    conversation would otherwise open with the other role.
    """
    merged = merge_consecutive_roles(messages, content_key=content_key)
    if merged and merged[0].get("role") != first_role:
        merged.insert(0, {"role": first_role, content_key: filler})
    return merged


class PayloadBuilder(abc.ABC):
    """Base class for per-provider payload builders."""

    model_type: ClassVar[ModelType]
    #: Allow-list of body keys for sampling and provider extras.
    supported_parameters: ClassVar[frozenset[str]] = frozenset()
    #: Canonical name -> provider spelling.
    parameter_renames: ClassVar[dict[str, str]] = {}
    #: Applied after user-level settings.
    provider_defaults: ClassVar[dict[str, Any]] = {}

    def __init__(self, resolver: MultimodalContentResolver) -> None:
        self._resolver = resolver

    @abc.abstractmethod
    async def build(self, context: RequestContext) -> ProviderPayload:
        """Build the provider request body for *context*."""

    async def resolve_parts(self, message: MessageDto) -> list[ContentPart]:
        if message.is_from_ai:
            return [TextPart(message.content)] if message.content else []
        return await self._resolver.resolve(message.content)

    def merge_parameters(self, context: RequestContext) -> dict[str, Any]:
        """Merge sampling parameters by priority.

        Per-call override, then agent settings, then user settings, then
        provider defaults. ``max_tokens`` falls back to the model limit before
        provider defaults apply.
        """
        layers: list[dict[str, Any]] = [
            {
                "temperature": context.overrides.temperature,
                "max_tokens": context.overrides.max_output_tokens,
            }
        ]
        if context.agent is not None and context.agent.sampling is not None:
            layers.append(context.agent.sampling.as_dict())
        if context.user_settings is not None and context.user_settings.sampling is not None:
            layers.append(context.user_settings.sampling.as_dict())
        layers.append({"max_tokens": context.model.max_output_tokens})
        layers.append(dict(self.provider_defaults))

        merged: dict[str, Any] = {}
        for layer in layers:
            for name, value in layer.items():
                if value is not None and name not in merged:
                    merged[name] = value
        return merged

    def filter_parameters(self, params: dict[str, Any]) -> dict[str, Any]:
        """Rename to provider spelling and drop anything not allow-listed."""
        kept: dict[str, Any] = {}
        for name, value in params.items():
            key = self.parameter_renames.get(name, name)
            if key not in self.supported_parameters:
                logger.debug(
                    "Dropping unsupported parameter %s for %s",
                    key,
                    self.model_type.value,
                )
                continue
            kept[key] = value
        return kept

    def sampling_parameters(self, context: RequestContext) -> dict[str, Any]:
        return self.filter_parameters(self.merge_parameters(context))
