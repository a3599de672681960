"""
Client entry point for the Copilot runtime.

`CopilotClient` picks a transport from its options, keeps the single
connection to the runtime, owns the sessions created over it and answers the
runtime's callbacks (tool calls and, when configured, filesystem access).

Example:
    >>> async with CopilotClient({"log_level": "error"}) as client:
    ...     session = await client.create_session({"model": "gpt-5"})
    ...     reply = await session.send_and_wait("Hello!")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from .errors import ConfigurationError, CopilotClientError, JsonRpcError, ProtocolError
from .filesystem import FileSystemProvider
from .schemas.config import ClientOptions, Endpoint, ResumeSessionConfig, SessionConfig
from .schemas.core import (
    ConnectionState,
    GetStatusResponse,
    PingResponse,
    SessionEvent,
    SessionLifecycleEvent,
    SessionLifecycleEventType,
    SessionMetadata,
    StopError,
    Tool,
    ToolInvocation,
)
from .schemas.jsonrpc import ErrorCode
from .session import CopilotSession
from .tools import build_unsupported_tool_result, execute_tool
from .transport import Connection, Transport
from .transport.in_process import InProcessTransport
from .transport.stdio import StdioTransport
from .transport.tcp import TcpTransport, parse_cli_url

logger = logging.getLogger(__name__)

SDK_PROTOCOL_VERSION = 2

SessionLifecycleHandler = Callable[[SessionLifecycleEvent], Any]


class CopilotClient:
    def __init__(
        self,
        options: Union[ClientOptions, Mapping[str, Any], None] = None,
        *,
        transport: Optional[Transport] = None,
    ) -> None:
        if options is None:
            options = ClientOptions()
        elif not isinstance(options, ClientOptions):
            try:
                options = ClientOptions.model_validate(dict(options))
            except ValidationError as e:
                raise ConfigurationError(str(e)) from e
        self._options = options.resolved()
        # endpoint problems surface here, before anything is launched
        self._endpoint: Optional[Endpoint] = parse_cli_url(self._options.cli_url) if self._options.cli_url else None
        self._transport: Transport = transport or self._create_transport()
        self._state = ConnectionState.DISCONNECTED
        self._start_lock = asyncio.Lock()
        self._stopping = False
        self._sessions: Dict[str, CopilotSession] = {}
        self._tools: Dict[str, Tool] = {}
        self._lifecycle_handlers: List[SessionLifecycleHandler] = []
        self._typed_lifecycle_handlers: Dict[str, List[SessionLifecycleHandler]] = {}

    def _create_transport(self) -> Transport:
        opts = self._options
        if opts.runtime == "wasm":
            logger.debug("CopilotClient: using in-process transport")
            return InProcessTransport(opts.bridge, request_timeout=opts.request_timeout)
        if self._endpoint is not None:
            logger.debug("CopilotClient: using TCP transport to %s:%s", self._endpoint.host, self._endpoint.port)
            return TcpTransport(self._endpoint.host, self._endpoint.port, request_timeout=opts.request_timeout)
        logger.debug("CopilotClient: using stdio transport")
        return StdioTransport(opts)

    @property
    def options(self) -> ClientOptions:
        return self._options

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def sessions(self) -> Dict[str, CopilotSession]:
        return dict(self._sessions)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Start the transport and verify the runtime speaks our protocol version.

        Called automatically by the first runtime call when ``auto_start`` is
        enabled (default).

        Raises:
            TransportError: If the channel cannot be opened.
            ProtocolError: If the runtime reports a different protocol version.
        """
        async with self._start_lock:
            if self._state is ConnectionState.CONNECTED:
                return
            self._state = ConnectionState.CONNECTING
            try:
                await self._transport.start()
                connection = self._transport.connection
                if connection is None:
                    raise CopilotClientError("Transport started without a connection")
                self._register_handlers(connection)
                await self._verify_protocol_version(connection)
            except Exception:
                self._state = ConnectionState.ERROR
                self._stopping = True
                try:
                    await self._transport.force_stop()
                finally:
                    self._stopping = False
                raise
            self._state = ConnectionState.CONNECTED
            logger.info("CopilotClient connected")

    async def stop(self) -> List[StopError]:
        """
        Destroy every session, then stop the transport.

        Returns:
            One `StopError` per failure met along the way; empty on a clean stop.
        """
        errors: List[StopError] = []
        sessions = list(self._sessions.values())
        for session in sessions:
            try:
                await session.destroy()
            except Exception as e:
                errors.append(StopError(message=f"Failed to destroy session {session.session_id}: {e}"))
        self._sessions.clear()

        self._stopping = True
        try:
            for e in await self._transport.stop():
                errors.append(StopError(message=f"Failed to stop transport: {e}"))
        finally:
            self._stopping = False
            self._state = ConnectionState.DISCONNECTED
        if errors:
            logger.warning("CopilotClient stopped with %d error(s)", len(errors))
        return errors

    async def force_stop(self) -> None:
        """Drop sessions without contacting the runtime and tear the transport down."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            session._close()
        self._stopping = True
        try:
            await self._transport.force_stop()
        finally:
            self._stopping = False
            self._state = ConnectionState.DISCONNECTED

    async def __aenter__(self) -> "CopilotClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, config: Union[SessionConfig, Mapping[str, Any], None] = None) -> CopilotSession:
        cfg = self._coerce(config, SessionConfig)
        response = await self._request("session.create", cfg.to_wire())
        session = self._attach_session(response, cfg.tools)
        logger.debug("Created session %s", session.session_id)
        return session

    async def resume_session(
        self,
        session_id: str,
        config: Union[ResumeSessionConfig, Mapping[str, Any], None] = None,
    ) -> CopilotSession:
        cfg = self._coerce(config, ResumeSessionConfig)
        payload = {"sessionId": session_id, **cfg.to_wire()}
        response = await self._request("session.resume", payload)
        session = self._attach_session(response, cfg.tools)
        logger.debug("Resumed session %s", session.session_id)
        return session

    async def list_sessions(self) -> List[SessionMetadata]:
        response = await self._request("session.list", {})
        return [SessionMetadata.model_validate(s) for s in (response or {}).get("sessions", [])]

    async def delete_session(self, session_id: str) -> None:
        response = await self._request("session.delete", {"sessionId": session_id}) or {}
        if response.get("success") is False:
            raise CopilotClientError(f"Failed to delete session {session_id}: {response.get('error', 'Unknown error')}")
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session._close()

    def _attach_session(self, response: Any, tools: List[Tool]) -> CopilotSession:
        if not isinstance(response, dict) or not response.get("sessionId"):
            raise ProtocolError(f"Runtime returned no sessionId: {response!r}")
        session = CopilotSession(response["sessionId"], self, workspace_path=response.get("workspacePath"))
        session._register_tools(tools)
        self._sessions[session.session_id] = session
        return session

    def _forget_session(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    # ------------------------------------------------------------------
    # Runtime info
    # ------------------------------------------------------------------

    async def ping(self, message: Optional[str] = None) -> PingResponse:
        return PingResponse.model_validate(await self._request("ping", {"message": message}) or {})

    async def get_status(self) -> GetStatusResponse:
        return GetStatusResponse.model_validate(await self._request("status.get", {}) or {})

    async def _verify_protocol_version(self, connection: Connection) -> None:
        result = await connection.send_request("ping", {"message": None})
        server_version = PingResponse.model_validate(result or {}).protocol_version
        if server_version is None:
            raise ProtocolError(
                f"SDK protocol version mismatch: SDK expects version {SDK_PROTOCOL_VERSION}, "
                "but the runtime does not report a protocol version"
            )
        if server_version != SDK_PROTOCOL_VERSION:
            raise ProtocolError(
                f"SDK protocol version mismatch: SDK expects version {SDK_PROTOCOL_VERSION}, "
                f"but the runtime reports version {server_version}"
            )

    # ------------------------------------------------------------------
    # Tools and lifecycle subscriptions
    # ------------------------------------------------------------------

    def register_tool(self, tool: Tool) -> Callable[[], None]:
        """Make `tool` available to every session; a session tool of the same name wins."""
        self._tools[tool.name] = tool

        def unregister() -> None:
            if self._tools.get(tool.name) is tool:
                del self._tools[tool.name]

        return unregister

    def on(
        self,
        event_type_or_handler: Union[str, SessionLifecycleEventType, SessionLifecycleHandler],
        handler: Optional[SessionLifecycleHandler] = None,
    ) -> Callable[[], None]:
        """
        Subscribe to session lifecycle events.

        Can be called in two ways:
        - on(handler): every lifecycle event
        - on(event_type, handler): only events of that type

        Returns:
            A function that removes the subscription.
        """
        if handler is None and callable(event_type_or_handler):
            handlers = self._lifecycle_handlers
            target = event_type_or_handler
        elif isinstance(event_type_or_handler, str) and handler is not None:
            key = getattr(event_type_or_handler, "value", event_type_or_handler)
            handlers = self._typed_lifecycle_handlers.setdefault(key, [])
            target = handler
        else:
            raise ValueError("Invalid arguments: use on(handler) or on(event_type, handler)")

        handlers.append(target)

        def unsubscribe() -> None:
            if target in handlers:
                handlers.remove(target)

        return unsubscribe

    # ------------------------------------------------------------------
    # Connection plumbing
    # ------------------------------------------------------------------

    async def _request(self, method: str, params: Any = None, *, timeout: Optional[float] = None) -> Any:
        connection = await self._ensure_connected()
        return await connection.send_request(method, params, timeout=timeout)

    async def _ensure_connected(self) -> Connection:
        if self._state is not ConnectionState.CONNECTED:
            if not self._options.auto_start:
                raise CopilotClientError("Client not connected; call start() first")
            await self.start()
        connection = self._transport.connection
        if connection is None:
            raise CopilotClientError("Client not connected")
        return connection

    def _register_handlers(self, connection: Connection) -> None:
        connection.on_notification("session.event", self._handle_session_event)
        connection.on_notification("session.lifecycle", self._handle_lifecycle_event)
        connection.on_request("tool.call", self._handle_tool_call_request)
        fs = self._options.filesystem
        if fs is not None:
            self._register_filesystem_handlers(connection, fs)
        connection.on_close(self._on_connection_closed)

    def _register_filesystem_handlers(self, connection: Connection, fs: FileSystemProvider) -> None:
        async def read_file(params: Dict[str, Any]) -> Dict[str, Any]:
            return {"content": await fs.read_file(params["path"])}

        async def write_file(params: Dict[str, Any]) -> Dict[str, Any]:
            await fs.write_file(params["path"], params.get("content", ""))
            return {}

        async def exists(params: Dict[str, Any]) -> Dict[str, Any]:
            return {"exists": await fs.exists(params["path"])}

        async def read_dir(params: Dict[str, Any]) -> Dict[str, Any]:
            return {"entries": await fs.read_dir(params["path"])}

        async def mkdir(params: Dict[str, Any]) -> Dict[str, Any]:
            await fs.mkdir(params["path"], bool(params.get("recursive", False)))
            return {}

        async def remove(params: Dict[str, Any]) -> Dict[str, Any]:
            await fs.remove(params["path"])
            return {}

        connection.on_request("fs.readFile", read_file)
        connection.on_request("fs.writeFile", write_file)
        connection.on_request("fs.exists", exists)
        connection.on_request("fs.readDir", read_dir)
        connection.on_request("fs.mkdir", mkdir)
        connection.on_request("fs.remove", remove)

    def _on_connection_closed(self, error: Optional[BaseException]) -> None:
        if self._stopping:
            return
        logger.error("Connection to the Copilot runtime ended: %s", error)
        self._state = ConnectionState.ERROR
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            session._close()

    def _handle_session_event(self, params: Any) -> None:
        if not isinstance(params, dict):
            logger.warning("Dropping malformed session.event: %r", params)
            return
        session = self._sessions.get(params.get("sessionId", ""))
        if session is None:
            logger.debug("session.event for unknown session %s", params.get("sessionId"))
            return
        try:
            event = SessionEvent.model_validate(params.get("event") or {})
        except ValidationError as e:
            logger.warning("Dropping invalid session event for %s: %s", session.session_id, e)
            return
        session._dispatch_event(event)

    def _handle_lifecycle_event(self, params: Any) -> None:
        try:
            event = SessionLifecycleEvent.model_validate(params or {})
        except ValidationError as e:
            logger.warning("Dropping invalid session.lifecycle notification: %s", e)
            return
        for handler in list(self._typed_lifecycle_handlers.get(event.type, ())) + list(self._lifecycle_handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Lifecycle handler failed for %s", event.type)

    async def _handle_tool_call_request(self, params: Any) -> Dict[str, Any]:
        try:
            invocation = ToolInvocation.model_validate(params or {})
        except ValidationError as e:
            raise JsonRpcError(ErrorCode.INVALID_PARAMS, f"invalid tool call payload: {e}") from e

        session = self._sessions.get(invocation.session_id)
        tool = session.get_tool(invocation.tool_name) if session is not None else None
        if tool is None:
            tool = self._tools.get(invocation.tool_name)
        if tool is None:
            logger.warning("Runtime requested unsupported tool '%s'", invocation.tool_name)
            result = build_unsupported_tool_result(invocation.tool_name)
        else:
            result = await execute_tool(tool.handler, invocation)
        return {"result": result.to_wire()}

    @staticmethod
    def _coerce(config: Any, model: Any) -> Any:
        if config is None:
            return model()
        if isinstance(config, model):
            return config
        return model.model_validate(dict(config))
