"""JSON-RPC connection over an asyncio byte stream.

`JsonRpcConnection` is the dispatcher used by the stdio and TCP transports. A
single read-loop task decodes frames and routes them:

- responses resolve the pending call with the same id, exactly once;
- notifications go to every handler registered for the method, in
  registration order, on the read-loop itself so per-method arrival order is
  preserved;
- inbound requests run in their own task (a handler may issue requests of its
  own) and are answered with the handler's return value or an error frame.

A connection created with ``reattachable=True`` survives the loss of its
stream: pending calls fail, new calls wait, and the owner either re-attaches
fresh streams (`attach`) or gives up (`fail`).
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from copilot_sdk.errors import (
    ConnectionClosedError,
    DisposedError,
    JsonRpcError,
    ProtocolError,
    RequestTimeoutError,
    TransportError,
)
from copilot_sdk.schemas.jsonrpc import (
    ErrorCode,
    FrameKind,
    JsonRpcErrorObject,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    RequestId,
    classify_frame,
)

from . import CloseCallback, NotificationHandler, RequestHandler
from .framing import encode_frame, read_frame

logger = logging.getLogger(__name__)


class JsonRpcConnection:
    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        name: str = "runtime",
        reattachable: bool = False,
        default_timeout: Optional[float] = None,
    ) -> None:
        self._name = name
        self._reattachable = reattachable
        self._default_timeout = default_timeout
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None
        self._next_id = 0
        self._pending: Dict[RequestId, asyncio.Future] = {}
        self._request_handlers: Dict[str, RequestHandler] = {}
        self._notification_handlers: Dict[str, List[NotificationHandler]] = {}
        self._close_callbacks: List[CloseCallback] = []
        self._background: Set[asyncio.Future] = set()
        self._attached = asyncio.Event()
        self._disposed = False
        self._terminal_error: Optional[BaseException] = None
        self._close_fired = False
        self.attach(reader, writer)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_closed(self) -> bool:
        return self._disposed or self._terminal_error is not None

    @property
    def is_attached(self) -> bool:
        return self._attached.is_set() and self._writer is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def attach(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Bind fresh streams and start reading from them.

        Handler registries survive; only the byte channel changes.
        """
        if self.is_closed:
            raise TransportError(f"Cannot attach a closed connection to {self._name}")
        self._cancel_read_task()
        self._reader = reader
        self._writer = writer
        self._read_task = asyncio.get_running_loop().create_task(self._read_loop(reader))
        self._attached.set()
        logger.debug("JsonRpcConnection attached to %s", self._name)

    def suspend(self, error: BaseException) -> None:
        """Drop the current streams and fail pending calls; new calls wait for `attach`."""
        if self.is_closed:
            return
        self._attached.clear()
        self._cancel_read_task()
        self._close_writer()
        self._fail_pending(error)
        logger.debug("JsonRpcConnection to %s suspended: %s", self._name, error)

    def fail(self, error: BaseException) -> None:
        """End the connection for good; every later call raises `error`."""
        if self.is_closed:
            return
        self._terminal_error = error
        self._cancel_read_task()
        self._close_writer()
        self._fail_pending(error)
        self._cancel_background()
        self._attached.set()
        self._fire_close(error)

    def dispose(self) -> None:
        """Close immediately; pending calls fail with `ConnectionClosedError`."""
        self._teardown()

    async def close(self) -> None:
        """Close and wait for the underlying stream to finish closing."""
        writer = self._teardown()
        if writer is not None:
            await writer.wait_closed()

    def _teardown(self) -> Optional[asyncio.StreamWriter]:
        if self._disposed:
            return None
        self._disposed = True
        writer = self._writer
        self._cancel_read_task()
        self._close_writer()
        self._fail_pending(ConnectionClosedError(f"Connection to {self._name} closed"))
        self._cancel_background()
        self._attached.set()
        self._fire_close(None)
        return writer

    # ------------------------------------------------------------------
    # Handler registries
    # ------------------------------------------------------------------

    def on_request(self, method: str, handler: RequestHandler) -> None:
        self._request_handlers[method] = handler

    def on_notification(self, method: str, handler: NotificationHandler) -> Callable[[], None]:
        handlers = self._notification_handlers.setdefault(method, [])
        handlers.append(handler)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                handlers.remove(handler)

        return unsubscribe

    def on_close(self, callback: CloseCallback) -> None:
        if self._close_fired:
            callback(self._terminal_error)
            return
        self._close_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_request(self, method: str, params: Any = None, *, timeout: Optional[float] = None) -> Any:
        # the timeout also covers waiting for a suspended connection to be re-attached
        effective = timeout if timeout is not None else self._default_timeout
        if effective is None:
            return await self._call(method, params)
        try:
            return await asyncio.wait_for(self._call(method, params), effective)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(method, effective) from None

    async def _call(self, method: str, params: Any) -> Any:
        await self._wait_attached(method)
        self._ensure_open()

        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            frame = encode_frame(JsonRpcRequest(id=request_id, method=method, params=params).to_dict())
            await self._write_frame(frame)
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def send_notification(self, method: str, params: Any = None) -> None:
        frame = encode_frame(JsonRpcNotification(method=method, params=params).to_dict())
        if self._default_timeout is None:
            await self._wait_attached(method)
        else:
            try:
                await asyncio.wait_for(self._wait_attached(method), self._default_timeout)
            except asyncio.TimeoutError:
                raise RequestTimeoutError(method, self._default_timeout) from None
        self._ensure_open()
        await self._write_frame(frame)

    async def _wait_attached(self, method: str) -> None:
        if not self._attached.is_set():
            logger.debug("%s waiting for %s to come back", method, self._name)
            await self._attached.wait()

    def _ensure_open(self) -> None:
        if self._disposed:
            raise DisposedError(f"Connection to {self._name} is disposed")
        if self._terminal_error is not None:
            raise self._terminal_error
        if self._writer is None:
            raise ConnectionClosedError(f"Connection to {self._name} is not attached")

    async def _write_frame(self, frame: bytes) -> None:
        writer = self._writer
        if writer is None:
            raise ConnectionClosedError(f"Connection to {self._name} is not attached")
        try:
            writer.write(frame)
            await writer.drain()
        except (ConnectionError, OSError) as e:
            raise ConnectionClosedError(f"Failed writing to {self._name}: {e}") from e

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        error: Optional[BaseException] = None
        try:
            while True:
                frame = await read_frame(reader)
                if frame is None:
                    break
                try:
                    self._dispatch(frame)
                except Exception:
                    logger.exception("Dropping frame from %s that could not be dispatched", self._name)
        except ProtocolError as e:
            logger.error("Protocol error on %s: %s", self._name, e)
            error = e
        except (ConnectionError, OSError) as e:
            error = e

        if reader is not self._reader or self.is_closed:
            return
        detail = f": {error}" if error is not None else ""
        closed = ConnectionClosedError(f"{self._name} closed the connection{detail}")
        if self._reattachable:
            logger.warning("Lost channel to %s%s", self._name, detail)
            self.suspend(closed)
        else:
            logger.info("Connection to %s ended%s", self._name, detail)
            self.fail(closed)

    def _dispatch(self, frame: Any) -> None:
        kind = classify_frame(frame)
        if kind is FrameKind.RESPONSE:
            self._handle_response(frame)
        elif kind is FrameKind.NOTIFICATION:
            self._handle_notification(frame["method"], frame.get("params"))
        elif kind is FrameKind.REQUEST:
            self._track(asyncio.ensure_future(self._handle_request(frame["id"], frame["method"], frame.get("params"))))
        else:
            logger.warning("Dropping invalid JSON-RPC frame from %s: %r", self._name, frame)

    def _handle_response(self, frame: Dict[str, Any]) -> None:
        future = self._pending.pop(frame["id"], None)
        if future is None:
            logger.warning("Response for unknown request id %s from %s", frame["id"], self._name)
            return
        if future.done():
            return
        error = frame.get("error")
        if error is not None:
            obj = JsonRpcErrorObject.from_wire(error)
            future.set_exception(JsonRpcError(obj.code, obj.message, obj.data))
        else:
            future.set_result(frame.get("result"))

    def _handle_notification(self, method: str, params: Any) -> None:
        handlers = list(self._notification_handlers.get(method, ()))
        if not handlers:
            logger.debug("No handler for notification %s", method)
            return
        for handler in handlers:
            try:
                result = handler(params)
                if inspect.isawaitable(result):
                    self._track(asyncio.ensure_future(result))
            except Exception:
                logger.exception("Notification handler for %s failed", method)

    async def _handle_request(self, request_id: RequestId, method: str, params: Any) -> None:
        handler = self._request_handlers.get(method)
        if handler is None:
            logger.warning("No handler for inbound request %s", method)
            response = JsonRpcResponse.failure(request_id, ErrorCode.METHOD_NOT_FOUND, f"Unhandled method {method}")
        else:
            try:
                result = handler(params)
                if inspect.isawaitable(result):
                    result = await result
                response = JsonRpcResponse.success(request_id, result)
            except JsonRpcError as e:
                response = JsonRpcResponse.failure(request_id, e.code, e.message, e.data)
            except Exception as e:
                logger.exception("Request handler for %s failed", method)
                response = JsonRpcResponse.failure(request_id, ErrorCode.INTERNAL_ERROR, str(e))

        try:
            frame = encode_frame(response.to_dict())
        except (TypeError, ValueError) as e:
            frame = encode_frame(
                JsonRpcResponse.failure(
                    request_id, ErrorCode.INTERNAL_ERROR, f"Result is not JSON serializable: {e}"
                ).to_dict()
            )
        try:
            await self._write_frame(frame)
        except TransportError as e:
            logger.warning("Could not answer %s request %s: %s", method, request_id, e)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _track(self, fut: asyncio.Future) -> None:
        self._background.add(fut)
        fut.add_done_callback(self._on_background_done)

    def _on_background_done(self, fut: asyncio.Future) -> None:
        self._background.discard(fut)
        if not fut.cancelled() and fut.exception() is not None:
            logger.error("Background handler on %s failed", self._name, exc_info=fut.exception())

    def _cancel_background(self) -> None:
        current = asyncio.current_task()
        for fut in list(self._background):
            if fut is not current:
                fut.cancel()

    def _cancel_read_task(self) -> None:
        task = self._read_task
        self._read_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _close_writer(self) -> None:
        writer = self._writer
        self._writer = None
        if writer is not None:
            with contextlib.suppress(OSError, RuntimeError):
                writer.close()

    def _fail_pending(self, error: BaseException) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(error)

    def _fire_close(self, error: Optional[BaseException]) -> None:
        if self._close_fired:
            return
        self._close_fired = True
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(error)
            except Exception:
                logger.exception("Close callback for %s failed", self._name)
