"""JSON-RPC 2.0 frame models.

Frames are modelled as pydantic schemas so outbound messages are built in one
place and inbound ones are validated before they reach the dispatcher.
`classify_frame` decides what an inbound dict is without raising on content
the dispatcher should simply drop.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

JSONRPC_VERSION = "2.0"

RequestId = Union[int, str]


class ErrorCode:
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


class FrameKind(str, Enum):
    REQUEST = "request"
    NOTIFICATION = "notification"
    RESPONSE = "response"
    INVALID = "invalid"


class _Frame(BaseModel):
    model_config = ConfigDict(extra="ignore")

    jsonrpc: str = Field(default=JSONRPC_VERSION, description="Protocol version marker.")

    def to_dict(self) -> Dict[str, Any]:
        # params are passed through untouched; only top-level members are dropped when unset
        d: Dict[str, Any] = {}
        for name in type(self).model_fields:
            value = getattr(self, name)
            if value is not None:
                d[name] = value
        return d


class JsonRpcRequest(_Frame):
    id: RequestId = Field(..., description="Caller-assigned id echoed back in the response.")
    method: str = Field(..., min_length=1, description="Method name, e.g. 'session.create'.")
    params: Optional[Any] = Field(default=None, description="Structured parameters.")


class JsonRpcNotification(_Frame):
    method: str = Field(..., min_length=1, description="Notification/event name.")
    params: Optional[Any] = Field(default=None, description="Structured parameters.")


class JsonRpcErrorObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: int = Field(default=ErrorCode.INTERNAL_ERROR, description="JSON-RPC error code.")
    message: str = Field(default="Unknown error", description="Human-readable error message.")
    data: Optional[Any] = Field(default=None, description="Optional extra error payload.")

    @classmethod
    def from_wire(cls, error: Any) -> "JsonRpcErrorObject":
        """Read a response's ``error`` member without ever raising.

        Peers do not always follow the schema (string codes, null codes,
        non-string messages); whatever message they sent is still kept.
        """
        if not isinstance(error, dict):
            return cls(message=str(error))
        try:
            return cls.model_validate(error)
        except ValidationError:
            code = error.get("code")
            message = error.get("message")
            return cls(
                code=code if isinstance(code, int) and not isinstance(code, bool) else ErrorCode.INTERNAL_ERROR,
                message=message if isinstance(message, str) else str(message or "Unknown error"),
                data=error.get("data"),
            )


class JsonRpcResponse(_Frame):
    id: Optional[RequestId] = Field(default=None, description="Id of the request being answered.")
    result: Optional[Any] = Field(default=None, description="Result value on success.")
    error: Optional[JsonRpcErrorObject] = Field(default=None, description="Error object on failure.")

    @classmethod
    def success(cls, id: Optional[RequestId], result: Any) -> "JsonRpcResponse":
        return cls(id=id, result=result)

    @classmethod
    def failure(cls, id: Optional[RequestId], code: int, message: str, data: Any = None) -> "JsonRpcResponse":
        return cls(id=id, error=JsonRpcErrorObject(code=code, message=message, data=data))

    def to_dict(self) -> Dict[str, Any]:
        # "result": null is meaningful on success, so it is not stripped
        d: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            d["error"] = self.error.model_dump(exclude_none=True)
        else:
            d["result"] = self.result
        return d


def classify_frame(frame: Any) -> FrameKind:
    """Return the kind of an inbound decoded JSON value."""
    if not isinstance(frame, dict):
        return FrameKind.INVALID
    has_method = isinstance(frame.get("method"), str)
    request_id = frame.get("id")
    if request_id is not None and (isinstance(request_id, bool) or not isinstance(request_id, (int, str))):
        return FrameKind.INVALID
    has_id = request_id is not None
    if has_method and has_id:
        return FrameKind.REQUEST
    if has_method:
        return FrameKind.NOTIFICATION
    if has_id and ("result" in frame or "error" in frame):
        return FrameKind.RESPONSE
    return FrameKind.INVALID
