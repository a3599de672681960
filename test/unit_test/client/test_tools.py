from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from copilot_sdk.schemas.core import Tool, ToolInvocation, ToolResult
from copilot_sdk.tools import build_unsupported_tool_result, define_tool, execute_tool


def _invocation(**arguments) -> ToolInvocation:
    return ToolInvocation.model_validate(
        {"sessionId": "s1", "toolCallId": "c1", "toolName": "t", "arguments": arguments}
    )


def test_define_tool_uses_function_name_and_docstring() -> None:
    @define_tool(parameters={"type": "object", "properties": {"city": {"type": "string"}}})
    async def get_weather(invocation: ToolInvocation) -> dict:
        """Current weather for a city.

        Longer explanation that is not sent.
        """
        return {}

    assert isinstance(get_weather, Tool)
    assert get_weather.name == "get_weather"
    assert get_weather.description == "Current weather for a city."
    assert get_weather.to_definition() == {
        "name": "get_weather",
        "description": "Current weather for a city.",
        "parameters": {"type": "object", "properties": {"city": {"type": "string"}}},
    }


def test_define_tool_explicit_name_and_description() -> None:
    @define_tool("lookup", description="Find things")
    def handler(invocation: ToolInvocation) -> str:
        return "found"

    assert (handler.name, handler.description) == ("lookup", "Find things")
    assert handler.to_definition() == {"name": "lookup", "description": "Find things"}


def test_unsupported_tool_result() -> None:
    assert build_unsupported_tool_result("rm_rf").to_wire() == {
        "resultType": "failure",
        "error": "tool 'rm_rf' not supported",
    }


@pytest.mark.asyncio
async def test_execute_sync_and_async_handlers() -> None:
    def sync_handler(invocation: ToolInvocation) -> int:
        return invocation.arguments["a"] + invocation.arguments["b"]

    async def async_handler(invocation: ToolInvocation) -> str:
        return "done"

    assert (await execute_tool(sync_handler, _invocation(a=1, b=2))).to_wire() == {
        "resultType": "success",
        "result": 3,
    }
    assert (await execute_tool(async_handler, _invocation())).result == "done"


@pytest.mark.asyncio
async def test_execute_converts_exceptions_to_failure() -> None:
    async def broken(invocation: ToolInvocation) -> None:
        raise KeyError("city")

    result = await execute_tool(broken, _invocation())

    assert result.result_type == "failure"
    assert result.error == "'city'"


@pytest.mark.asyncio
async def test_execute_passes_tool_result_through() -> None:
    explicit = ToolResult.failure("permission denied")

    assert await execute_tool(lambda inv: explicit, _invocation()) is explicit


@pytest.mark.asyncio
async def test_execute_converts_values_to_json_types() -> None:
    stamp = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

    dated = await execute_tool(lambda inv: {"at": stamp}, _invocation())
    tags = await execute_tool(lambda inv: ToolResult.success({"tags": {"a"}}), _invocation())

    assert dated.to_wire() == {"resultType": "success", "result": {"at": "2024-05-01T12:30:00Z"}}
    assert tags.to_wire() == {"resultType": "success", "result": {"tags": ["a"]}}
    json.dumps(dated.to_wire())


@pytest.mark.asyncio
async def test_execute_unserializable_value_becomes_failure() -> None:
    result = await execute_tool(lambda inv: {"handle": object()}, _invocation())

    assert result.result_type == "failure"
    assert "not JSON serializable" in result.error
    json.dumps(result.to_wire())


def test_invocation_ignores_unknown_wire_fields() -> None:
    invocation = ToolInvocation.model_validate(
        {"sessionId": "s1", "toolCallId": "c1", "toolName": "t", "arguments": None, "traceId": "x"}
    )

    assert invocation.tool_name == "t"
    assert invocation.arguments is None
