from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

import pytest
import pytest_asyncio

from copilot_sdk.client import SDK_PROTOCOL_VERSION, CopilotClient


class FakeRuntimeBridge:
    """In-process stand-in for the Copilot runtime.

    Answers the session/status methods the client uses, emits session events
    through the bound side channel and can call back into the client's tool
    handler the way the runtime does.
    """

    def __init__(self, protocol_version: Optional[int] = SDK_PROTOCOL_VERSION) -> None:
        self.protocol_version = protocol_version
        self.calls: List[Dict[str, Any]] = []
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.errors: Dict[str, str] = {}
        self.dispatch_event: Optional[Callable[[str, str], None]] = None
        self.dispatch_request: Optional[Callable[[str, str], Awaitable[str]]] = None
        self._ids = itertools.count(1)

    async def init(self) -> None:
        return None

    def bind(self, dispatch_event: Any, dispatch_request: Any) -> None:
        self.dispatch_event = dispatch_event
        self.dispatch_request = dispatch_request

    def methods(self) -> List[str]:
        return [c["method"] for c in self.calls]

    async def send_jsonrpc(self, request_json: str) -> str:
        req = json.loads(request_json)
        self.calls.append(req)
        method = req["method"]
        if method in self.errors:
            return json.dumps(
                {"jsonrpc": "2.0", "id": req["id"], "error": {"code": -32000, "message": self.errors[method]}}
            )
        handler = getattr(self, "_" + method.replace(".", "_"), None)
        if handler is None:
            return json.dumps(
                {"jsonrpc": "2.0", "id": req["id"], "error": {"code": -32601, "message": f"Unknown method {method}"}}
            )
        return json.dumps({"jsonrpc": "2.0", "id": req["id"], "result": handler(req.get("params") or {})})

    # -- runtime side helpers -------------------------------------------

    def emit(self, session_id: str, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        event = {
            "id": f"evt-{next(self._ids)}",
            "timestamp": "2025-01-01T00:00:00Z",
            "type": event_type,
            "data": data or {},
        }
        self.dispatch_event("session.event", json.dumps({"sessionId": session_id, "event": event}))

    def emit_lifecycle(self, event_type: str, session_id: str) -> None:
        self.dispatch_event("session.lifecycle", json.dumps({"type": event_type, "sessionId": session_id}))

    async def call_tool(self, session_id: str, tool_name: str, arguments: Any = None) -> Dict[str, Any]:
        params = {"sessionId": session_id, "toolCallId": "call-1", "toolName": tool_name, "arguments": arguments}
        return json.loads(await self.dispatch_request("tool.call", json.dumps(params)))

    # -- methods ---------------------------------------------------------

    def _ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {"message": f"pong: {params.get('message')}", "timestamp": 1700000000.0}
        if self.protocol_version is not None:
            result["protocolVersion"] = self.protocol_version
        return result

    def _status_get(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"version": "1.0.0", "protocolVersion": self.protocol_version}

    def _session_create(self, params: Dict[str, Any]) -> Dict[str, Any]:
        session_id = params.get("sessionId") or f"session-{len(self.sessions) + 1}"
        self.sessions[session_id] = params
        return {"sessionId": session_id, "workspacePath": f"/workspaces/{session_id}"}

    def _session_resume(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.sessions.setdefault(params["sessionId"], params)
        return {"sessionId": params["sessionId"]}

    def _session_list(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"sessions": [{"sessionId": sid, "summary": "chat", "isRemote": False} for sid in self.sessions]}

    def _session_delete(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if self.sessions.pop(params["sessionId"], None) is None:
            return {"success": False, "error": "not found"}
        return {"success": True}

    def _session_destroy(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.sessions.pop(params["sessionId"], None)
        return {}

    def _session_abort(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    def _session_getMessages(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"events": [{"id": "m1", "type": "user.message", "data": {"content": "hi"}}]}

    def _session_send(self, params: Dict[str, Any]) -> Dict[str, Any]:
        session_id, prompt = params["sessionId"], params["prompt"]
        # events follow the response, as they do over a real channel
        asyncio.get_running_loop().call_soon(self._play_turn, session_id, prompt)
        return {"messageId": f"msg-{next(self._ids)}"}

    def _play_turn(self, session_id: str, prompt: str) -> None:
        if prompt == "hang":
            return
        if prompt == "fail":
            self.emit(session_id, "session.error", {"message": "model unavailable"})
            return
        self.emit(session_id, "assistant.message_delta", {"deltaContent": "ec"})
        self.emit(session_id, "assistant.message", {"content": f"echo: {prompt}"})
        self.emit(session_id, "session.idle")


@pytest.fixture
def make_bridge() -> Type[FakeRuntimeBridge]:
    return FakeRuntimeBridge


@pytest.fixture
def bridge() -> FakeRuntimeBridge:
    return FakeRuntimeBridge()


@pytest_asyncio.fixture
async def client(bridge: FakeRuntimeBridge):
    c = CopilotClient({"runtime": "wasm", "bridge": bridge})
    await c.start()
    yield c
    await c.force_stop()
