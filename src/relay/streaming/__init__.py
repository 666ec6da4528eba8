"""Streaming: chunk parsing, the turn machine and operation lifecycle."""

from __future__ import annotations

from relay.streaming.accumulator import ToolCallAccumulator
from relay.streaming.finalizer import MessageFinalizer
from relay.streaming.monitor import PerformanceMonitor, StreamMetrics
from relay.streaming.notifications import (
    BatchingNotifier,
    StreamEvent,
    StreamEventKind,
)
from relay.streaming.parsers import parse_event
from relay.streaming.registry import StopReason, StreamingOperationRegistry
from relay.streaming.turns import ConversationTurnProcessor

__all__ = [
    "BatchingNotifier",
    "ConversationTurnProcessor",
    "MessageFinalizer",
    "PerformanceMonitor",
    "StopReason",
    "StreamEvent",
    "StreamEventKind",
    "StreamMetrics",
    "StreamingOperationRegistry",
    "ToolCallAccumulator",
    "parse_event",
]
