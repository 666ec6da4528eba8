"""Plugin-backed tool execution."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from relay.models import ModelType, ToolCall
from relay.tool_calls import PluginToolExecutor

pytestmark = pytest.mark.unit


class Calculator:
    name = "Calc"

    def __init__(self) -> None:
        self.calls: list[Mapping[str, Any]] = []

    async def execute(self, arguments: Mapping[str, Any]) -> str:
        self.calls.append(arguments)
        return str(arguments["a"] + arguments["b"])


class Exploding:
    name = "explode"

    async def execute(self, arguments: Mapping[str, Any]) -> str:
        raise RuntimeError("kaboom")


@pytest.mark.asyncio
async def test_executes_plugin_case_insensitively() -> None:
    calc = Calculator()
    executor = PluginToolExecutor([calc])

    result = await executor.execute(ToolCall("call_1", "calc", '{"a": 2, "b": 3}'))

    assert result.content == "5"
    assert result.is_from_ai is False
    assert result.tool_result is not None
    assert (result.tool_result.call_id, result.tool_result.name) == ("call_1", "calc")
    assert calc.calls == [{"a": 2, "b": 3}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("call", "expected"),
    [
        (ToolCall("c", "missing", "{}"), "Error: Plugin 'missing' not found."),
        (ToolCall("c", "calc", "{not json"), "Error: Invalid arguments provided for tool 'calc'."),
        (ToolCall("c", "calc", "[1, 2]"), "Error: Could not parse arguments for tool 'calc'."),
        (ToolCall("c", "explode", "{}"), "Error: kaboom"),
    ],
)
async def test_failures_come_back_as_error_text(call: ToolCall, expected: str) -> None:
    executor = PluginToolExecutor([Calculator(), Exploding()])

    result = await executor.execute(call)

    assert result.content == expected
    assert result.tool_result is not None
    assert result.tool_result.content == expected


@pytest.mark.asyncio
async def test_assistant_tool_request_keeps_or_generates_ids() -> None:
    executor = PluginToolExecutor()
    calls = [ToolCall("call_keep", "calc", "{}"), ToolCall("", "calc", '{"a": 1}')]

    request = await executor.format_assistant_tool_request(ModelType.OPENAI, calls)

    assert request.is_from_ai is True
    assert request.tool_calls is not None
    kept, generated = request.tool_calls
    assert kept.id == "call_keep"
    assert generated.id.startswith("call_")
    assert len(generated.id) == len("call_") + 24
    assert generated.arguments == '{"a": 1}'
