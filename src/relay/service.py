"""Caller-facing streaming service.

Wires the resolver, tool translator, turn machine, orchestrator, operation
registry and finalizer together. One ``stream_message`` call starts one
background task per AI message.

Example:
    async with StreamingService(keys=pool, quota=quota, tool_executor=tools) as svc:
        task = svc.stream_message(context, message)
        ...
        svc.stop_streaming(message.id)
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from relay.config import StreamingOptions
from relay.content import MultimodalContentResolver
from relay.models import ResponseType
from relay.orchestrator import RequestOrchestrator
from relay.providers import create_client
from relay.streaming.finalizer import MessageFinalizer
from relay.streaming.monitor import PerformanceMonitor
from relay.streaming.notifications import BatchingNotifier
from relay.streaming.registry import StopReason, StreamingOperationRegistry
from relay.streaming.turns import ConversationTurnProcessor
from relay.tools import ToolDefinitionTranslator

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Collection, Mapping
    from types import TracebackType

    from relay.config import ProviderSettings
    from relay.interfaces import (
        AttachmentStore,
        KeyManager,
        MessageRepository,
        NotificationSink,
        PluginCatalog,
        QuotaService,
        ToolExecutor,
    )
    from relay.message import Message
    from relay.models import RequestContext, TurnResult

logger = logging.getLogger(__name__)


class StreamingService:
    """Start, stop and finalize streaming AI messages."""

    def __init__(
        self,
        *,
        keys: KeyManager,
        quota: QuotaService,
        tool_executor: ToolExecutor,
        attachments: AttachmentStore | None = None,
        catalog: PluginCatalog | None = None,
        sink: NotificationSink | None = None,
        repository: MessageRepository | None = None,
        options: StreamingOptions | None = None,
        settings: ProviderSettings | None = None,
        client_factory: Callable[..., Any] = create_client,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._options = options or StreamingOptions()
        opts = self._options
        self._notifier = (
            BatchingNotifier(
                sink,
                batch_size=opts.notification_batch_size,
                interval_s=opts.notification_batch_interval_s,
            )
            if sink is not None
            else None
        )
        self.monitor = (
            PerformanceMonitor(
                summary_interval_s=opts.metrics_summary_interval_s,
                stale_after_s=opts.stale_metrics_after_s,
            )
            if opts.enable_performance_monitoring
            else None
        )
        self.registry = StreamingOperationRegistry(sweep_interval_s=opts.registry_sweep_interval_s)
        self._translator = ToolDefinitionTranslator(catalog) if catalog is not None else None
        self._finalizer = MessageFinalizer(notifier=self._notifier, repository=repository)
        self._orchestrator = RequestOrchestrator(
            keys=keys,
            quota=quota,
            turn_processor=ConversationTurnProcessor(
                resolver=MultimodalContentResolver(attachments),
                tool_executor=tool_executor,
                notifier=self._notifier,
                monitor=self.monitor,
                options=opts,
            ),
            client_factory=client_factory,
            options=opts,
            settings=settings,
            sleep=sleep,
        )

    async def __aenter__(self) -> StreamingService:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def start(self) -> None:
        """Start the background sweepers; requires a running event loop."""
        self.registry.start()
        if self.monitor is not None:
            self.monitor.start()

    async def aclose(self) -> None:
        """Stop sweepers and cancel every in-flight operation."""
        tasks = self.registry.live_tasks()
        await self.registry.aclose()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self.monitor is not None:
            await self.monitor.aclose()

    async def prepare_context(
        self,
        context: RequestContext,
        *,
        response_type: ResponseType = ResponseType.TEXT,
        preferences: Mapping[str, bool] | None = None,
        session_plugin_ids: Collection[str] | None = None,
    ) -> RequestContext:
        """Attach the provider-shaped tool list for the caller's active plugins."""
        if not response_type.allows_tools or context.model_type.is_image_generator:
            return context.with_tools(None)
        if context.tools is not None or self._translator is None:
            return context
        tools = await self._translator.get_tool_definitions(
            context.model_type,
            preferences=preferences,
            session_plugin_ids=session_plugin_ids,
            enable_deep_search=context.overrides.enable_deep_search,
        )
        return context.with_tools(tools)

    def stream_message(
        self,
        context: RequestContext,
        message: Message,
        *,
        response_type: ResponseType = ResponseType.TEXT,
        preferences: Mapping[str, bool] | None = None,
        session_plugin_ids: Collection[str] | None = None,
    ) -> asyncio.Task[TurnResult | None]:
        """Start streaming *message* in a background task.

        A previous operation for the same message id is cancelled and
        finalized as stopped, so each operation needs its own ``Message``
        instance. The task resolves to ``None`` when the stream was stopped
        through the registry and re-raises the last error when every attempt
        failed.
        """
        task = asyncio.create_task(
            self._run(
                context,
                message,
                response_type=response_type,
                preferences=preferences,
                session_plugin_ids=session_plugin_ids,
            ),
            name=f"relay-stream-{message.id}",
        )
        self.registry.register(message.id, task)
        return task

    def stop_streaming(
        self, message_id: str, reason: StopReason = StopReason.USER_REQUEST
    ) -> bool:
        return self.registry.stop_streaming(message_id, reason)

    def is_streaming(self, message_id: str) -> bool:
        return self.registry.is_active(message_id)

    def _stop_reason(self, message_id: str, task: asyncio.Task[Any] | None) -> StopReason | None:
        """Return why the registry cancelled *task*, or None for an outside cancel."""
        operation = self.registry.get(message_id)
        if operation is None:
            return StopReason.INTERNAL
        if operation.task is not task:
            return StopReason.REPLACED
        return operation.stop_reason

    async def _run(
        self,
        context: RequestContext,
        message: Message,
        *,
        response_type: ResponseType,
        preferences: Mapping[str, bool] | None,
        session_plugin_ids: Collection[str] | None,
    ) -> TurnResult | None:
        task = asyncio.current_task()
        session = context.chat_session_id
        try:
            context = await self.prepare_context(
                context,
                response_type=response_type,
                preferences=preferences,
                session_plugin_ids=session_plugin_ids,
            )
            result = await self._orchestrator.execute(
                context, message, response_type=response_type
            )
        except asyncio.CancelledError:
            reason = self._stop_reason(message.id, task)
            await self._finalizer.finalize_cancelled(
                message, reason or StopReason.INTERNAL, chat_session_id=session
            )
            if reason is None:
                raise
            # Stopped through the registry: report, do not propagate.
            if task is not None:
                task.uncancel()
            return None
        except Exception as e:
            await self._finalizer.finalize_error(message, e, chat_session_id=session)
            raise
        else:
            await self._finalizer.finalize_success(message, result, chat_session_id=session)
            return result
        finally:
            self.registry.unregister(message.id, task)
