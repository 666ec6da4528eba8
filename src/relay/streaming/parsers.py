"""Provider stream events -> ``StreamChunk``.

Parsers take one decoded event (a mapping, as produced by the SDKs'
``model_dump``) and return a ``StreamChunk``, or None when the event carries
nothing the turn machine cares about. Provider-reported stream errors raise
``APIError`` so the orchestrator can classify them.

Finish reasons are normalized: ``stop``, ``length``, ``content_filter`` and
the tool sentinel ``tool_calls``.
"""

from __future__ import annotations

from collections.abc import Mapping
import json
import logging
from typing import TYPE_CHECKING, Any

from relay.errors import APIError, UnsupportedModelTypeError
from relay.models import ModelType, StreamChunk, ToolCallFragment

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

TOOL_CALLS_FINISH = "tool_calls"
FUNCTION_CALL_FINISH = "function_call"
TOOL_FINISH_REASONS = frozenset({TOOL_CALLS_FINISH, FUNCTION_CALL_FINISH})


def _get(obj: Any, *path: str) -> Any:
    cur = obj
    for key in path:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


def _int(value: Any) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def _chunk_or_none(chunk: StreamChunk) -> StreamChunk | None:
    return None if chunk == StreamChunk() else chunk


def _stream_error(provider: str, error: Any) -> APIError:
    message = _get(error, "message") or str(error)
    error_type = _get(error, "type") or _get(error, "code") or ""
    retryable = error_type in ("overloaded_error", "rate_limit_error", "server_error", "api_error")
    return APIError(
        f"{provider} stream reported an error: {message}",
        retryable=retryable,
        provider=provider,
        phase="stream",
    )


# =============================================================================
# OpenAI Responses API
# =============================================================================

_OPENAI_INCOMPLETE_REASONS = {
    "max_output_tokens": "length",
    "content_filter": "content_filter",
}


def parse_openai_event(event: Mapping[str, Any]) -> StreamChunk | None:
    etype = event.get("type")
    if etype == "response.output_text.delta":
        return _chunk_or_none(StreamChunk(text=event.get("delta") or None))
    if etype == "response.reasoning_summary_text.delta":
        return _chunk_or_none(StreamChunk(thinking=event.get("delta") or None))
    if etype == "response.output_item.added":
        item = event.get("item") or {}
        if item.get("type") != "function_call":
            return None
        fragment = ToolCallFragment(
            index=_int(event.get("output_index")) or 0,
            id=item.get("call_id") or item.get("id"),
            name=item.get("name"),
            arguments=item.get("arguments") or None,
        )
        return StreamChunk(tool_calls=(fragment,))
    if etype == "response.function_call_arguments.delta":
        fragment = ToolCallFragment(
            index=_int(event.get("output_index")) or 0,
            arguments=event.get("delta") or None,
        )
        return StreamChunk(tool_calls=(fragment,))
    if etype in ("response.completed", "response.incomplete"):
        response = event.get("response") or {}
        usage = response.get("usage") or {}
        output = response.get("output") or []
        if any(isinstance(o, Mapping) and o.get("type") == "function_call" for o in output):
            finish = TOOL_CALLS_FINISH
        elif response.get("status") == "incomplete":
            reason = _get(response, "incomplete_details", "reason")
            finish = _OPENAI_INCOMPLETE_REASONS.get(reason, "length")
        else:
            finish = "stop"
        return StreamChunk(
            finish_reason=finish,
            input_tokens=_int(usage.get("input_tokens")),
            output_tokens=_int(usage.get("output_tokens")),
        )
    if etype == "response.failed":
        raise _stream_error("openai", _get(event, "response", "error") or {})
    if etype == "error":
        raise _stream_error("openai", event)
    return None


# =============================================================================
# Anthropic Messages API
# =============================================================================

_ANTHROPIC_STOP_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "pause_turn": "stop",
    "max_tokens": "length",
    "refusal": "content_filter",
    "tool_use": TOOL_CALLS_FINISH,
}


def parse_anthropic_event(event: Mapping[str, Any]) -> StreamChunk | None:
    etype = event.get("type")
    if etype == "message_start":
        usage = _get(event, "message", "usage") or {}
        return _chunk_or_none(
            StreamChunk(
                input_tokens=_int(usage.get("input_tokens")),
                output_tokens=_int(usage.get("output_tokens")),
            )
        )
    if etype == "content_block_start":
        block = event.get("content_block") or {}
        index = _int(event.get("index")) or 0
        if block.get("type") == "tool_use":
            fragment = ToolCallFragment(index=index, id=block.get("id"), name=block.get("name"))
            return StreamChunk(tool_calls=(fragment,))
        if block.get("type") == "text" and block.get("text"):
            return StreamChunk(text=block["text"])
        return None
    if etype == "content_block_delta":
        delta = event.get("delta") or {}
        dtype = delta.get("type")
        if dtype == "text_delta":
            return _chunk_or_none(StreamChunk(text=delta.get("text") or None))
        if dtype == "thinking_delta":
            return _chunk_or_none(StreamChunk(thinking=delta.get("thinking") or None))
        if dtype == "input_json_delta":
            partial = delta.get("partial_json") or None
            if partial is None:
                return None
            fragment = ToolCallFragment(index=_int(event.get("index")) or 0, arguments=partial)
            return StreamChunk(tool_calls=(fragment,))
        return None
    if etype == "message_delta":
        stop_reason = _get(event, "delta", "stop_reason")
        finish = None
        if stop_reason:
            finish = _ANTHROPIC_STOP_REASONS.get(stop_reason, stop_reason)
        return _chunk_or_none(
            StreamChunk(
                finish_reason=finish,
                output_tokens=_int(_get(event, "usage", "output_tokens")),
            )
        )
    if etype == "message_stop":
        return StreamChunk(finish_reason="stop")
    if etype == "error":
        raise _stream_error("anthropic", event.get("error") or {})
    return None


# =============================================================================
# Gemini
# =============================================================================

_GEMINI_FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
    "BLOCKLIST": "content_filter",
    "PROHIBITED_CONTENT": "content_filter",
    "SPII": "content_filter",
    "TOOL_CALLS": TOOL_CALLS_FINISH,
    "FUNCTION_CALL": TOOL_CALLS_FINISH,
}


def parse_gemini_event(event: Mapping[str, Any]) -> StreamChunk | None:
    if "error" in event and event["error"]:
        raise _stream_error("gemini", event["error"])

    text: list[str] = []
    thinking: list[str] = []
    fragments: list[ToolCallFragment] = []
    finish: str | None = None

    candidates = event.get("candidates") or []
    if candidates:
        candidate = candidates[0]
        raw_reason = candidate.get("finishReason")
        if isinstance(raw_reason, str) and raw_reason:
            reason = raw_reason.upper()
            finish = _GEMINI_FINISH_REASONS.get(reason)
            if finish is None:
                logger.warning("Unknown Gemini finish reason: %s", raw_reason)
                finish = reason.lower()
        for part in _get(candidate, "content", "parts") or []:
            if not isinstance(part, Mapping):
                continue
            call = part.get("functionCall")
            if isinstance(call, Mapping) and call.get("name"):
                fragments.append(
                    ToolCallFragment(
                        index=len(fragments),
                        id=call.get("id"),
                        name=call["name"],
                        arguments=json.dumps(call.get("args") or {}),
                    )
                )
            elif isinstance(part.get("text"), str):
                (thinking if part.get("thought") else text).append(part["text"])

    # Gemini reports STOP even when the candidate ends in function calls.
    if fragments and finish == "stop":
        finish = TOOL_CALLS_FINISH

    usage = event.get("usageMetadata") or {}
    input_tokens = _int(usage.get("promptTokenCount"))
    output_tokens = _int(usage.get("candidatesTokenCount"))
    if output_tokens is None:
        total = _int(usage.get("totalTokenCount"))
        if total is not None:
            output_tokens = total - (input_tokens or 0)

    return _chunk_or_none(
        StreamChunk(
            text="".join(text) or None,
            thinking="".join(thinking) or None,
            tool_calls=tuple(fragments),
            finish_reason=finish,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
    )


# =============================================================================
# OpenAI-compatible chat completions (DeepSeek, Grok, Qwen)
# =============================================================================


def parse_chat_completion_chunk(event: Mapping[str, Any]) -> StreamChunk | None:
    if event.get("error"):
        raise _stream_error("chat", event["error"])

    usage = event.get("usage") or {}
    text = thinking = finish = None
    fragments: list[ToolCallFragment] = []

    choices = event.get("choices") or []
    if choices:
        choice = choices[0]
        finish = choice.get("finish_reason") or None
        delta = choice.get("delta") or {}
        text = delta.get("content") or None
        thinking = delta.get("reasoning_content") or None
        for position, call in enumerate(delta.get("tool_calls") or []):
            if not isinstance(call, Mapping):
                continue
            index = _int(call.get("index"))
            fragments.append(
                ToolCallFragment(
                    index=position if index is None else index,
                    id=call.get("id") or None,
                    name=_get(call, "function", "name") or None,
                    arguments=_get(call, "function", "arguments") or None,
                )
            )

    return _chunk_or_none(
        StreamChunk(
            text=text,
            thinking=thinking,
            tool_calls=tuple(fragments),
            finish_reason=finish,
            input_tokens=_int(usage.get("prompt_tokens")),
            output_tokens=_int(usage.get("completion_tokens")),
        )
    )


_PARSERS: dict[ModelType, Callable[[Mapping[str, Any]], StreamChunk | None]] = {
    ModelType.OPENAI: parse_openai_event,
    ModelType.ANTHROPIC: parse_anthropic_event,
    ModelType.GEMINI: parse_gemini_event,
    ModelType.DEEPSEEK: parse_chat_completion_chunk,
    ModelType.GROK: parse_chat_completion_chunk,
    ModelType.QWEN: parse_chat_completion_chunk,
}


def parse_event(model_type: ModelType, event: Mapping[str, Any]) -> StreamChunk | None:
    """Dispatch *event* to the parser for *model_type*."""
    parser = _PARSERS.get(model_type)
    if parser is None:
        raise UnsupportedModelTypeError(f"No stream parser for model type {model_type!r}")
    return parser(event)


def is_tool_finish(finish_reason: str | None) -> bool:
    return finish_reason in TOOL_FINISH_REASONS
