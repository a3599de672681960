from __future__ import annotations

import asyncio
import logging
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Union,
)

from .errors import SessionClosedError, SessionError
from .schemas.core import SessionEvent, SessionEventType, Tool

if TYPE_CHECKING:
    from .client import CopilotClient

logger = logging.getLogger(__name__)

SessionEventHandler = Callable[[SessionEvent], Any]

_END_OF_STREAM = object()


class CopilotSession:
    """
    One conversation with the runtime, multiplexed over the client's connection.

    Events for this session arrive through the client, which routes each
    ``session.event`` notification by session id. Handlers and `events()`
    iterators see them in arrival order.
    """

    def __init__(self, session_id: str, client: "CopilotClient", *, workspace_path: Optional[str] = None) -> None:
        self._session_id = session_id
        self._client = client
        self._workspace_path = workspace_path
        self._tools: Dict[str, Tool] = {}
        self._handlers: List[SessionEventHandler] = []
        self._typed_handlers: Dict[str, List[SessionEventHandler]] = {}
        self._queues: List[asyncio.Queue] = []
        self._waiters: Set[asyncio.Future] = set()
        self._closed = False

    def __repr__(self) -> str:
        return f"CopilotSession(session_id={self._session_id!r}, closed={self._closed})"

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def workspace_path(self) -> Optional[str]:
        return self._workspace_path

    @property
    def is_closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _register_tools(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self._tools[tool.name] = tool

    def get_tool(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(
        self,
        event_type_or_handler: Union[str, SessionEventType, SessionEventHandler],
        handler: Optional[SessionEventHandler] = None,
    ) -> Callable[[], None]:
        """Subscribe to this session's events.

        ``on(handler)`` receives every event, ``on(event_type, handler)`` only
        events of that type. Returns a callable that removes the subscription.

        Example:
            >>> unsubscribe = session.on("assistant.message", lambda e: print(e.content))
            >>> unsubscribe()
        """
        if handler is None and callable(event_type_or_handler):
            handlers = self._handlers
            target = event_type_or_handler
        elif isinstance(event_type_or_handler, str) and handler is not None:
            key = getattr(event_type_or_handler, "value", event_type_or_handler)
            handlers = self._typed_handlers.setdefault(key, [])
            target = handler
        else:
            raise ValueError("Invalid arguments: use on(handler) or on(event_type, handler)")

        handlers.append(target)

        def unsubscribe() -> None:
            if target in handlers:
                handlers.remove(target)

        return unsubscribe

    async def events(self) -> AsyncIterator[SessionEvent]:
        """Iterate over events as they arrive; ends when the session closes."""
        if self._closed:
            return
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _END_OF_STREAM:
                    return
                yield item
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    def _dispatch_event(self, event: SessionEvent) -> None:
        if self._closed:
            return
        for handler in list(self._typed_handlers.get(event.type, ())) + list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Session %s event handler failed for %s", self._session_id, event.type)
        for queue in self._queues:
            queue.put_nowait(event)

    # ------------------------------------------------------------------
    # Runtime calls
    # ------------------------------------------------------------------

    async def send(
        self,
        prompt: str,
        attachments: Optional[List[Dict[str, Any]]] = None,
        mode: Optional[str] = None,
    ) -> Optional[str]:
        """Send a user message; returns the runtime's message id."""
        self._ensure_open()
        params: Dict[str, Any] = {"sessionId": self._session_id, "prompt": prompt}
        if attachments:
            params["attachments"] = attachments
        if mode:
            params["mode"] = mode
        response = await self._client._request("session.send", params)
        return (response or {}).get("messageId")

    async def send_and_wait(
        self,
        prompt: str,
        attachments: Optional[List[Dict[str, Any]]] = None,
        mode: Optional[str] = None,
        timeout: float = 60.0,
    ) -> Optional[SessionEvent]:
        """
        Send a message and wait until the session goes idle.

        Returns:
            The last ``assistant.message`` event seen before ``session.idle``,
            or None if the turn produced no assistant message.

        Raises:
            SessionError: If a ``session.error`` event arrives first.
            TimeoutError: If the session does not go idle within `timeout`.
        """
        self._ensure_open()
        idle: asyncio.Future = asyncio.get_running_loop().create_future()
        last_message: Optional[SessionEvent] = None

        def handler(event: SessionEvent) -> None:
            nonlocal last_message
            if idle.done():
                return
            if event.type == SessionEventType.ASSISTANT_MESSAGE.value:
                last_message = event
            elif event.type == SessionEventType.SESSION_IDLE.value:
                idle.set_result(None)
            elif event.type == SessionEventType.SESSION_ERROR.value:
                idle.set_exception(SessionError(self._session_id, str(event.data.get("message", "unknown error"))))

        unsubscribe = self.on(handler)
        self._waiters.add(idle)
        try:
            await self.send(prompt, attachments=attachments, mode=mode)
            try:
                await asyncio.wait_for(idle, timeout)
            except asyncio.TimeoutError:
                raise TimeoutError(f"Timeout after {timeout}s waiting for session.idle") from None
            return last_message
        finally:
            unsubscribe()
            self._waiters.discard(idle)
            if not idle.done():
                idle.cancel()
            elif not idle.cancelled():
                idle.exception()

    async def abort(self) -> None:
        self._ensure_open()
        await self._client._request("session.abort", {"sessionId": self._session_id})

    async def get_messages(self) -> List[SessionEvent]:
        self._ensure_open()
        response = await self._client._request("session.getMessages", {"sessionId": self._session_id})
        return [SessionEvent.model_validate(e) for e in (response or {}).get("events", [])]

    async def destroy(self) -> None:
        """Tell the runtime to drop the session, then close it locally.

        The session is closed and detached from the client even when the
        runtime call fails.
        """
        if self._closed:
            return
        try:
            await self._client._request("session.destroy", {"sessionId": self._session_id})
        finally:
            self._close()
            self._client._forget_session(self._session_id)

    async def __aenter__(self) -> "CopilotSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.destroy()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(self._session_id)

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in self._queues:
            queue.put_nowait(_END_OF_STREAM)
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_exception(SessionClosedError(self._session_id))
        self._handlers.clear()
        self._typed_handlers.clear()
        logger.debug("Session %s closed", self._session_id)
