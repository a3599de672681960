from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Dict, Optional

from pydantic_core import PydanticSerializationError, to_jsonable_python

from .schemas.core import Tool, ToolInvocation, ToolResult

logger = logging.getLogger(__name__)

ToolHandler = Callable[[ToolInvocation], Any]


def define_tool(
    name: Optional[str] = None,
    *,
    description: Optional[str] = None,
    parameters: Optional[Dict[str, Any]] = None,
) -> Callable[[ToolHandler], Tool]:
    """Decorator turning a handler function into a `Tool`.

    The tool name defaults to the function name and the description to the
    first line of its docstring.

    Examples:
        >>> @define_tool(parameters={"type": "object", "properties": {"city": {"type": "string"}}})
        ... async def get_weather(invocation: ToolInvocation) -> dict:
        ...     '''Current weather for a city.'''
        ...     return {"city": invocation.arguments["city"], "temp": 21}
    """

    def wrap(handler: ToolHandler) -> Tool:
        doc = inspect.getdoc(handler)
        return Tool(
            name=name or handler.__name__,
            description=description if description is not None else (doc.splitlines()[0] if doc else None),
            parameters=parameters,
            handler=handler,
        )

    return wrap


def build_unsupported_tool_result(tool_name: str) -> ToolResult:
    return ToolResult.failure(f"tool '{tool_name}' not supported")


async def execute_tool(handler: ToolHandler, invocation: ToolInvocation) -> ToolResult:
    """Run a tool handler and normalise whatever it produced into a `ToolResult`.

    Never raises for handler problems: an exception becomes a failure result
    carrying the exception message. Return values are converted to plain JSON
    types (datetimes to ISO strings, sets to lists); anything that cannot be
    converted becomes a failure result as well.
    """
    try:
        value = handler(invocation)
        if inspect.isawaitable(value):
            value = await value
    except Exception as e:
        logger.warning("Tool '%s' (call %s) failed: %s", invocation.tool_name, invocation.tool_call_id, e)
        return ToolResult.failure(str(e))

    if isinstance(value, ToolResult):
        if value.result_type == "failure":
            return value
        value = value.result
    try:
        return ToolResult.success(to_jsonable_python(value))
    except (PydanticSerializationError, TypeError, ValueError) as e:
        logger.warning(
            "Tool '%s' (call %s) returned an unserializable value: %s", invocation.tool_name, invocation.tool_call_id, e
        )
        return ToolResult.failure(f"Tool '{invocation.tool_name}' returned a value that is not JSON serializable: {e}")
