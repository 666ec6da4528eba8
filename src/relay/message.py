"""The AI message entity mutated while a response streams in."""

from __future__ import annotations

from dataclasses import dataclass
import enum

from relay.errors import InternalError


class MessageStatus(str, enum.Enum):
    STREAMING = "streaming"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    FAILED = "failed"


@dataclass
class Message:
    """Placeholder AI message that receives streamed content.

    Lifecycle: ``streaming`` -> ``completed`` | ``interrupted`` | ``failed``.
    An interrupted message may still fail (an error surfaced after a stop);
    completed and failed messages are final.
    """

    id: str
    content: str = ""
    status: MessageStatus = MessageStatus.STREAMING
    thinking: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not MessageStatus.STREAMING

    def _ensure_mutable(self, action: str) -> None:
        if self.status in (MessageStatus.COMPLETED, MessageStatus.FAILED):
            raise InternalError(
                f"Cannot {action} message {self.id} in status {self.status.value}"
            )

    def update_content(self, content: str) -> None:
        self._ensure_mutable("update")
        self.content = content

    def append_content(self, text: str) -> None:
        self._ensure_mutable("append to")
        self.content += text

    def complete(self) -> None:
        if self.status is MessageStatus.COMPLETED:
            return
        if self.status is not MessageStatus.STREAMING:
            raise InternalError(
                f"Cannot complete message {self.id} in status {self.status.value}"
            )
        self.status = MessageStatus.COMPLETED

    def interrupt(self) -> None:
        if self.status is MessageStatus.INTERRUPTED:
            return
        self._ensure_mutable("interrupt")
        self.status = MessageStatus.INTERRUPTED

    def fail(self, error: str) -> None:
        self._ensure_mutable("fail")
        self.status = MessageStatus.FAILED
        self.error = error
