from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, Literal, Optional

from pydantic import Field

from .base import BaseSchema, WireSchema


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class SessionEventType(str, Enum):
    ASSISTANT_MESSAGE = "assistant.message"
    ASSISTANT_MESSAGE_DELTA = "assistant.message_delta"
    ASSISTANT_REASONING = "assistant.reasoning"
    USER_MESSAGE = "user.message"
    SESSION_START = "session.start"
    SESSION_IDLE = "session.idle"
    SESSION_ERROR = "session.error"
    TOOL_EXECUTION_START = "tool.execution_start"
    TOOL_EXECUTION_COMPLETE = "tool.execution_complete"
    ABORT = "abort"


class SessionLifecycleEventType(str, Enum):
    CREATED = "session.created"
    DELETED = "session.deleted"
    UPDATED = "session.updated"
    FOREGROUND = "session.foreground"
    BACKGROUND = "session.background"


class Tool(BaseSchema):
    """A locally implemented capability the runtime may call back into.

    `handler` receives a `ToolInvocation` and may be sync or async. Its return
    value becomes the success result; an exception becomes a failure result.
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Tool name the model uses to request this tool.",
        examples=["get_weather", "lookup_issue"],
    )
    description: Optional[str] = Field(None, description="What the tool does, shown to the model.")
    parameters: Optional[Dict[str, Any]] = Field(
        None,
        description="JSON schema describing the arguments object.",
    )
    handler: Callable[..., Any] = Field(..., exclude=True, description="Callable invoked for each tool call.")

    def to_definition(self) -> Dict[str, Any]:
        definition: Dict[str, Any] = {"name": self.name, "description": self.description or ""}
        if self.parameters:
            definition["parameters"] = self.parameters
        return definition


class ToolInvocation(WireSchema):
    session_id: str = Field(..., min_length=1, description="Session the tool call belongs to.")
    tool_call_id: str = Field(..., min_length=1, description="Runtime-assigned id of this call.")
    tool_name: str = Field(..., min_length=1, description="Exact name of the requested tool.")
    arguments: Any = Field(default=None, description="Opaque structured arguments from the model.")


class ToolResult(BaseSchema):
    result_type: Literal["success", "failure"] = Field(
        "success",
        description="Outcome discriminator sent back to the runtime.",
    )
    result: Optional[Any] = Field(None, description="Handler return value on success.")
    error: Optional[str] = Field(None, description="Error message on failure.")

    @classmethod
    def success(cls, value: Any) -> "ToolResult":
        return cls(result_type="success", result=value)

    @classmethod
    def failure(cls, message: str) -> "ToolResult":
        return cls(result_type="failure", error=message)

    def to_wire(self) -> Dict[str, Any]:
        if self.result_type == "failure":
            return {"resultType": "failure", "error": self.error or ""}
        return {"resultType": "success", "result": self.result}


class SessionEvent(WireSchema):
    id: Optional[str] = Field(None, description="Runtime-assigned event id.")
    timestamp: Optional[str] = Field(None, description="ISO-8601 timestamp from the runtime.")
    type: str = Field(..., min_length=1, description="Event type, see SessionEventType.")
    data: Dict[str, Any] = Field(default_factory=dict, description="Event payload.")
    parent_id: Optional[str] = Field(None, description="Id of the event this one follows from.")
    ephemeral: bool = Field(False, description="Whether the event is not persisted by the runtime.")

    @property
    def content(self) -> Optional[str]:
        """Message text for assistant/user message events."""
        value = self.data.get("content")
        return value if isinstance(value, str) else None


class SessionLifecycleEvent(WireSchema):
    type: str = Field(..., min_length=1, description="Lifecycle event type.")
    session_id: str = Field(..., min_length=1, description="Session the event refers to.")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Optional extra details.")


class SessionMetadata(WireSchema):
    session_id: str = Field(..., min_length=1)
    start_time: Optional[str] = None
    modified_time: Optional[str] = None
    summary: Optional[str] = None
    is_remote: bool = False


class PingResponse(WireSchema):
    message: Optional[str] = None
    timestamp: Optional[float] = None
    protocol_version: Optional[int] = None


class GetStatusResponse(WireSchema):
    version: Optional[str] = None
    protocol_version: Optional[int] = None


class StopError(BaseSchema):
    message: str = Field(..., description="What failed while stopping.")
