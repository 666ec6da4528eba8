"""Execute model-requested tool calls against registered plugins."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING
import uuid

from relay.models import MessageDto, ToolCall, ToolResult

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from relay.interfaces import Plugin
    from relay.models import ModelType

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


class PluginToolExecutor:
    """``ToolExecutor`` backed by an in-process plugin table.

    Tool failures never raise: they come back as ``Error: ...`` result text so
    the model can see what went wrong and continue.
    """

    def __init__(self, plugins: Iterable[Plugin] = ()) -> None:
        self._plugins: dict[str, Plugin] = {}
        for plugin in plugins:
            self.register(plugin)

    def register(self, plugin: Plugin) -> None:
        self._plugins[plugin.name.lower()] = plugin

    def find(self, name: str) -> Plugin | None:
        return self._plugins.get(name.lower())

    async def _run(self, tool_call: ToolCall) -> str:
        plugin = self.find(tool_call.name)
        if plugin is None:
            logger.error("No plugin matches tool name %s", tool_call.name)
            return f"Error: Plugin '{tool_call.name}' not found."
        try:
            arguments = json.loads(tool_call.arguments)
        except json.JSONDecodeError:
            logger.error(
                "Invalid arguments for tool %s (%s): %s",
                tool_call.name,
                tool_call.id,
                tool_call.arguments,
            )
            return f"Error: Invalid arguments provided for tool '{tool_call.name}'."
        if not isinstance(arguments, dict):
            return f"Error: Could not parse arguments for tool '{tool_call.name}'."

        logger.info("Executing plugin %s for tool call %s", plugin.name, tool_call.id)
        try:
            return await plugin.execute(arguments)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Plugin %s failed for tool call %s", plugin.name, tool_call.id)
            return f"Error: {e}"

    async def execute(self, tool_call: ToolCall) -> MessageDto:
        content = await self._run(tool_call)
        return MessageDto(
            id=_new_id(),
            is_from_ai=False,
            content=content,
            tool_result=ToolResult(call_id=tool_call.id, name=tool_call.name, content=content),
        )

    async def format_assistant_tool_request(
        self, model_type: ModelType, tool_calls: Sequence[ToolCall]
    ) -> MessageDto:
        calls = tuple(
            call
            if call.id
            else ToolCall(
                id=f"call_{uuid.uuid4().hex[:24]}", name=call.name, arguments=call.arguments
            )
            for call in tool_calls
        )
        logger.debug("Formatting %d tool call(s) for %s", len(calls), model_type.value)
        return MessageDto(id=_new_id(), is_from_ai=True, tool_calls=calls)
