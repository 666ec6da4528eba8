"""The multi-turn streaming state machine.

One call to ``ConversationTurnProcessor.stream_turn`` drives a single AI
message to a terminal turn: it streams a provider response, accumulates text,
thinking and tool-call fragments, executes requested tools and loops until
the model finishes, the turn limit is reached, or the task is cancelled.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING

from relay.builders import get_payload_builder
from relay.config import StreamingOptions
from relay.models import ResponseType, TurnResult
from relay.streaming.accumulator import ToolCallAccumulator
from relay.streaming.notifications import StreamEvent, StreamEventKind, safe_publish
from relay.streaming.parsers import TOOL_CALLS_FINISH, is_tool_finish

if TYPE_CHECKING:
    from collections.abc import Callable

    from relay.builders.base import PayloadBuilder
    from relay.content import MultimodalContentResolver
    from relay.interfaces import NotificationSink, ToolExecutor
    from relay.message import Message
    from relay.models import MessageDto, ModelType, RequestContext, StreamChunk
    from relay.providers.base import ProviderClient
    from relay.streaming.monitor import PerformanceMonitor

logger = logging.getLogger(__name__)


class ConversationTurnProcessor:
    """Stream, execute tools, repeat; bounded by ``max_conversation_turns``."""

    def __init__(
        self,
        *,
        resolver: MultimodalContentResolver,
        tool_executor: ToolExecutor,
        notifier: NotificationSink | None = None,
        monitor: PerformanceMonitor | None = None,
        options: StreamingOptions | None = None,
        builder_factory: Callable[[ModelType, MultimodalContentResolver], PayloadBuilder] = (
            get_payload_builder
        ),
    ) -> None:
        self._resolver = resolver
        self._tool_executor = tool_executor
        self._notifier = notifier
        self._monitor = monitor
        self._options = options or StreamingOptions()
        self._builder_factory = builder_factory

    def _notify(self, kind: StreamEventKind, context: RequestContext, message: Message, data: str) -> None:
        safe_publish(
            self._notifier,
            StreamEvent(kind, message.id, chat_session_id=context.chat_session_id, data=data),
        )
        if self._monitor is not None:
            self._monitor.record_notification(message.id)

    def _flush(self) -> None:
        flush = getattr(self._notifier, "flush", None)
        if callable(flush):
            flush()

    async def stream_turn(
        self,
        context: RequestContext,
        message: Message,
        client: ProviderClient,
        *,
        response_type: ResponseType = ResponseType.TEXT,
    ) -> TurnResult:
        """Drive *message* through up to ``max_conversation_turns`` turns.

        Mutates *message*: content is persisted at turn boundaries and the
        message is interrupted when the turn limit is hit or the task is
        cancelled (``CancelledError`` is re-raised after the interrupt).
        """
        builder = self._builder_factory(context.model_type, self._resolver)
        allow_tools = response_type.allows_tools
        max_turns = self._options.max_conversation_turns
        base_history: tuple[MessageDto, ...] = tuple(context.history)

        tool_request: MessageDto | None = None
        tool_results: list[MessageDto] = []
        text: list[str] = []
        thinking: list[str] = []
        input_tokens = output_tokens = 0
        completed = False
        turn = 0

        if self._monitor is not None:
            self._monitor.start_stream(message.id)
        try:
            while turn < max_turns and not completed:
                turn += 1
                history = base_history
                if tool_request is not None:
                    history = (*base_history, tool_request, *tool_results)
                payload = await builder.build(context.with_history(history))
                tool_request, tool_results = None, []

                accumulator = ToolCallAccumulator()
                turn_in = turn_out = 0
                finish: str | None = None
                logger.debug("Turn %d for message %s", turn, message.id)

                async with contextlib.aclosing(client.stream(payload)) as stream:
                    async for chunk in stream:
                        if finish is not None:
                            # Only usage-only chunks are read past the finish reason.
                            if chunk.text or chunk.thinking or chunk.tool_calls:
                                break
                            if chunk.input_tokens is not None:
                                turn_in = chunk.input_tokens
                            if chunk.output_tokens is not None:
                                turn_out = chunk.output_tokens
                            continue
                        started = time.perf_counter()
                        if chunk.input_tokens is not None:
                            turn_in = chunk.input_tokens
                        if chunk.output_tokens is not None:
                            turn_out = chunk.output_tokens
                        self._apply(chunk, context, message, text, thinking, accumulator)
                        if self._monitor is not None:
                            size = len(chunk.text or "") + len(chunk.thinking or "")
                            self._monitor.record_chunk(
                                message.id, size, time.perf_counter() - started
                            )
                        if chunk.finish_reason:
                            finish = chunk.finish_reason

                if finish is None:
                    # Stream ended without a finish reason.
                    finish = TOOL_CALLS_FINISH if accumulator.completed() else "stop"
                self._flush()
                input_tokens += turn_in
                output_tokens += turn_out

                calls = accumulator.completed() if is_tool_finish(finish) else []
                if calls and allow_tools:
                    message.update_content("".join(text))
                    logger.info(
                        "Turn %d requested %d tool call(s): %s",
                        turn,
                        len(calls),
                        ", ".join(c.name for c in calls),
                    )
                    for call in calls:
                        tool_results.append(await self._tool_executor.execute(call))
                    tool_request = await self._tool_executor.format_assistant_tool_request(
                        context.model_type, calls
                    )
                else:
                    completed = True
                    message.update_content("".join(text))

            if not completed:
                logger.warning(
                    "Message %s hit the %d-turn limit; marking interrupted",
                    message.id,
                    max_turns,
                )
                message.update_content("".join(text))
                message.interrupt()
        except asyncio.CancelledError:
            logger.info("Streaming cancelled for message %s", message.id)
            self._flush()
            message.update_content("".join(text))
            message.interrupt()
            raise
        finally:
            if self._monitor is not None:
                self._monitor.stop_stream(message.id)

        thinking_text = "".join(thinking) or None
        if thinking_text:
            message.thinking = thinking_text
        return TurnResult(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            completed=completed,
            thinking=thinking_text,
        )

    def _apply(
        self,
        chunk: StreamChunk,
        context: RequestContext,
        message: Message,
        text: list[str],
        thinking: list[str],
        accumulator: ToolCallAccumulator,
    ) -> None:
        if chunk.text:
            text.append(chunk.text)
            self._notify(StreamEventKind.TEXT_CHUNK, context, message, chunk.text)
        if chunk.thinking and context.thinking_enabled:
            thinking.append(chunk.thinking)
            self._notify(StreamEventKind.THINKING_CHUNK, context, message, chunk.thinking)
        if chunk.tool_calls:
            accumulator.extend(chunk.tool_calls)
