"""In-process transport for a runtime linked into this process.

There is no byte stream here: each outbound request is serialized to a JSON
string and handed to the bridge's ``send_jsonrpc``, which answers with the
serialized response frame. Events and requests travelling the other way come
in through the two side channels the bridge receives from `bind`.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Union, runtime_checkable

from copilot_sdk.errors import (
    ConfigurationError,
    DisposedError,
    JsonRpcError,
    MethodNotFoundError,
    ProtocolError,
    RequestTimeoutError,
)
from copilot_sdk.schemas.jsonrpc import JsonRpcErrorObject, JsonRpcNotification, JsonRpcRequest

from . import CloseCallback, NotificationHandler, RequestHandler, TransportCommonMixin, TransportState

logger = logging.getLogger(__name__)

DispatchEvent = Callable[[str, str], None]
DispatchRequest = Callable[[str, str], Awaitable[str]]


@runtime_checkable
class RuntimeBridge(Protocol):
    """Protocol for a runtime hosted inside this process.

    Implementations may additionally provide
    ``bind(dispatch_event, dispatch_request)``; when present it is called once
    after `init` so the runtime can push events and call back into the client.

    Examples:
        >>> class EchoBridge:
        ...     async def init(self) -> None: ...
        ...     def send_jsonrpc(self, request_json: str) -> str:
        ...         req = json.loads(request_json)
        ...         return json.dumps({"jsonrpc": "2.0", "id": req["id"], "result": req["params"]})
    """

    async def init(self) -> None: ...

    def send_jsonrpc(self, request_json: str) -> Union[str, Awaitable[str]]: ...


BridgeLoader = Callable[[], Union[RuntimeBridge, Awaitable[RuntimeBridge]]]


class InProcessConnection:
    def __init__(self, bridge: RuntimeBridge, *, default_timeout: Optional[float] = None) -> None:
        self._bridge = bridge
        self._default_timeout = default_timeout
        self._next_id = 0
        self._pending: Dict[int, str] = {}
        self._request_handlers: Dict[str, RequestHandler] = {}
        self._notification_handlers: Dict[str, List[NotificationHandler]] = {}
        self._close_callbacks: List[CloseCallback] = []
        self._background: Set[asyncio.Future] = set()
        self._disposed = False

    @property
    def is_closed(self) -> bool:
        return self._disposed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_request(self, method: str, params: Any = None, *, timeout: Optional[float] = None) -> Any:
        if self._disposed:
            raise DisposedError()
        self._next_id += 1
        request_id = self._next_id
        self._pending[request_id] = method
        try:
            request_json = json.dumps(JsonRpcRequest(id=request_id, method=method, params=params).to_dict())
            raw = self._bridge.send_jsonrpc(request_json)
            if inspect.isawaitable(raw):
                effective = timeout if timeout is not None else self._default_timeout
                if effective is None:
                    raw = await raw
                else:
                    try:
                        raw = await asyncio.wait_for(raw, effective)
                    except asyncio.TimeoutError:
                        raise RequestTimeoutError(method, effective) from None
            return self._parse_response(method, raw)
        finally:
            self._pending.pop(request_id, None)

    async def send_notification(self, method: str, params: Any = None) -> None:
        if self._disposed:
            raise DisposedError()
        raw = self._bridge.send_jsonrpc(json.dumps(JsonRpcNotification(method=method, params=params).to_dict()))
        if inspect.isawaitable(raw):
            await raw

    @staticmethod
    def _parse_response(method: str, raw: Any) -> Any:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Unparseable response to '{method}': {e}") from e
        if not isinstance(frame, dict):
            raise ProtocolError(f"Response to '{method}' is not a JSON object")
        error = frame.get("error")
        if error is not None:
            obj = JsonRpcErrorObject.from_wire(error)
            raise JsonRpcError(obj.code, obj.message, obj.data)
        if "result" not in frame:
            raise ProtocolError(f"Response to '{method}' has neither result nor error")
        return frame["result"]

    # ------------------------------------------------------------------
    # Handler registries
    # ------------------------------------------------------------------

    def on_request(self, method: str, handler: RequestHandler) -> None:
        self._request_handlers[method] = handler

    def on_notification(self, method: str, handler: NotificationHandler) -> Callable[[], None]:
        handlers = self._notification_handlers.setdefault(method, [])
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def on_close(self, callback: CloseCallback) -> None:
        if self._disposed:
            callback(None)
            return
        self._close_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Side channels used by the bridge
    # ------------------------------------------------------------------

    def dispatch_event(self, name: str, payload_json: str) -> None:
        handlers = list(self._notification_handlers.get(name, ()))
        if not handlers:
            logger.debug("No handler for in-process event %s", name)
            return
        try:
            payload = json.loads(payload_json) if payload_json else None
        except ValueError:
            logger.warning("Dropping in-process event %s with unparseable payload", name)
            return
        for handler in handlers:
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    self._track(asyncio.ensure_future(result))
            except Exception:
                logger.exception("Event handler for %s failed", name)

    async def dispatch_request(self, method: str, params_json: str) -> str:
        handler = self._request_handlers.get(method)
        if handler is None:
            raise MethodNotFoundError(method)
        params = json.loads(params_json) if params_json else None
        result = handler(params)
        if inspect.isawaitable(result):
            result = await result
        return json.dumps(result)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def dispose(self) -> None:
        """Reject later calls; requests already handed to the bridge are left to finish."""
        if self._disposed:
            return
        self._disposed = True
        for fut in list(self._background):
            fut.cancel()
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(None)
            except Exception:
                logger.exception("Close callback for in-process connection failed")

    async def close(self) -> None:
        self.dispose()

    def _track(self, fut: asyncio.Future) -> None:
        self._background.add(fut)
        fut.add_done_callback(self._on_background_done)

    def _on_background_done(self, fut: asyncio.Future) -> None:
        self._background.discard(fut)
        if not fut.cancelled() and fut.exception() is not None:
            logger.error("In-process event handler failed", exc_info=fut.exception())


class InProcessTransport(TransportCommonMixin):
    def __init__(
        self,
        bridge: Optional[Union[RuntimeBridge, BridgeLoader]] = None,
        *,
        loader: Optional[BridgeLoader] = None,
        request_timeout: Optional[float] = None,
    ) -> None:
        if bridge is not None and loader is None and not hasattr(bridge, "send_jsonrpc") and callable(bridge):
            bridge, loader = None, bridge
        self._bridge: Optional[RuntimeBridge] = bridge
        self._loader = loader
        self._request_timeout = request_timeout
        self._state = TransportState.NOT_STARTED
        self._connection: Optional[InProcessConnection] = None

    @property
    def bridge(self) -> Optional[RuntimeBridge]:
        return self._bridge

    async def start(self) -> None:
        if self._state in (TransportState.STARTING, TransportState.STARTED):
            return
        if self._bridge is None and self._loader is None:
            raise ConfigurationError("bridge is required for runtime='wasm'")
        self._state = TransportState.STARTING
        try:
            if self._bridge is None:
                loaded = self._loader()
                self._bridge = await loaded if inspect.isawaitable(loaded) else loaded
            ready = self._bridge.init()
            if inspect.isawaitable(ready):
                await ready
        except BaseException:
            self._state = TransportState.NOT_STARTED
            raise

        connection = InProcessConnection(self._bridge, default_timeout=self._request_timeout)
        bind = getattr(self._bridge, "bind", None)
        if callable(bind):
            bind(connection.dispatch_event, connection.dispatch_request)
        self._connection = connection
        self._state = TransportState.STARTED
        logger.info("In-process Copilot runtime initialised")

    async def stop(self) -> List[Exception]:
        errors: List[Exception] = []
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                connection.dispose()
            except Exception as e:
                errors.append(e)
        self._state = TransportState.STOPPED
        return errors

    async def force_stop(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.dispose()
        self._state = TransportState.STOPPED
