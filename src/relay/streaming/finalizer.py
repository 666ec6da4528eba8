"""Terminal-state handling for streamed AI messages."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from relay.message import MessageStatus
from relay.streaming.notifications import StreamEvent, StreamEventKind, safe_publish
from relay.streaming.registry import StopReason

if TYPE_CHECKING:
    from relay.interfaces import MessageRepository, NotificationSink
    from relay.message import Message
    from relay.models import TurnResult

logger = logging.getLogger(__name__)

USER_STOP_MARKER = "\n[User Request]"
INTERNAL_STOP_MARKER = "\n[Internal Stop Command]"


class MessageFinalizer:
    """Move a message to its terminal state, persist it and notify."""

    def __init__(
        self,
        *,
        notifier: NotificationSink | None = None,
        repository: MessageRepository | None = None,
    ) -> None:
        self._notifier = notifier
        self._repository = repository

    async def _save(self, message: Message) -> None:
        if self._repository is not None:
            await self._repository.save(message)

    def _publish(self, kind: StreamEventKind, message: Message, chat_session_id: str | None, data: str) -> None:
        safe_publish(self._notifier, StreamEvent(kind, message.id, chat_session_id, data))

    async def finalize_success(
        self, message: Message, result: TurnResult, *, chat_session_id: str | None = None
    ) -> None:
        if message.status is MessageStatus.STREAMING:
            if result.completed:
                message.complete()
            else:
                message.interrupt()
        await self._save(message)
        kind = (
            StreamEventKind.COMPLETED
            if message.status is MessageStatus.COMPLETED
            else StreamEventKind.STOPPED
        )
        self._publish(kind, message, chat_session_id, message.content)

    async def finalize_cancelled(
        self,
        message: Message,
        reason: StopReason | None,
        *,
        chat_session_id: str | None = None,
    ) -> None:
        if message.status in (MessageStatus.COMPLETED, MessageStatus.FAILED):
            return
        marker = USER_STOP_MARKER if reason is StopReason.USER_REQUEST else INTERNAL_STOP_MARKER
        message.append_content(marker)
        message.interrupt()
        logger.info("Message %s stopped (%s)", message.id, reason.value if reason else "cancelled")
        await self._save(message)
        self._publish(StreamEventKind.STOPPED, message, chat_session_id, message.content)

    async def finalize_error(
        self, message: Message, exc: BaseException, *, chat_session_id: str | None = None
    ) -> None:
        if message.status in (MessageStatus.COMPLETED, MessageStatus.FAILED):
            return
        error_text = str(exc) or type(exc).__name__
        message.append_content(f"\n[Error: {error_text}]")
        message.fail(error_text)
        logger.warning("Message %s failed: %s", message.id, error_text)
        await self._save(message)
        self._publish(StreamEventKind.FAILED, message, chat_session_id, error_text)
