"""Transport interfaces for talking to the Copilot runtime.

Defines the Protocols shared by every channel implementation:

- `Connection`: the JSON-RPC dispatcher (ids, pending calls, handler registries).
- `Transport`: establishes a channel and owns exactly one `Connection`.

Concrete transports live alongside these interfaces (`stdio.py`, `tcp.py`,
`in_process.py`) and form a closed set selected by `CopilotClient` from its
options.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Union, runtime_checkable

RequestHandler = Callable[[Any], Union[Any, Awaitable[Any]]]
NotificationHandler = Callable[[Any], Any]
CloseCallback = Callable[[Optional[BaseException]], None]


class TransportState(str, Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    STARTED = "started"
    STOPPING = "stopping"
    STOPPED = "stopped"


@runtime_checkable
class Connection(Protocol):
    """Protocol for a live JSON-RPC connection to the runtime.

    Implementations assign request ids, track pending calls and route inbound
    frames to responses, notification handlers or request handlers.

    Examples:
        >>> result = await connection.send_request("ping", {"message": "hi"})
        >>> unsubscribe = connection.on_notification("session.event", print)
        >>> connection.on_request("tool.call", handle_tool_call)
    """

    @property
    def is_closed(self) -> bool: ...

    async def send_request(self, method: str, params: Any = None, *, timeout: Optional[float] = None) -> Any:
        """Send a request and wait for its result.

        Raises:
            JsonRpcError: If the response carries an ``error`` member.
            TransportError: If the channel is closed, disposed or fails.
        """
        ...

    async def send_notification(self, method: str, params: Any = None) -> None:
        """Send a notification; no response is expected."""
        ...

    def on_request(self, method: str, handler: RequestHandler) -> None:
        """Register the single handler for inbound requests named `method`.

        A later registration replaces the earlier one.
        """
        ...

    def on_notification(self, method: str, handler: NotificationHandler) -> Callable[[], None]:
        """Add a handler for notifications named `method`.

        Handlers run in registration order. Returns a callable that removes
        this handler.
        """
        ...

    def on_close(self, callback: CloseCallback) -> None:
        """Call `callback(error)` once when the connection ends for good."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Protocol for a channel to the runtime.

    Examples:
        >>> await transport.start()
        >>> await transport.connection.send_request("ping", {})
        >>> errors = await transport.stop()
    """

    @property
    def connection(self) -> Optional[Connection]:
        """The live connection, or None before start / after stop."""
        ...

    @property
    def state(self) -> TransportState: ...

    async def start(self) -> None:
        """Establish the channel. Calling it again while started is a no-op.

        Raises:
            ConfigurationError: If a prerequisite (binary, bridge) is missing.
            TransportError: If the channel cannot be opened.
        """
        ...

    async def stop(self) -> List[Exception]:
        """Shut down gracefully and return the errors met along the way.

        Never raises for teardown problems; an empty list means a clean stop.
        """
        ...

    async def force_stop(self) -> None:
        """Tear down immediately, discarding in-flight state."""
        ...


class TransportCommonMixin:
    """State bookkeeping shared by the concrete transports."""

    _state: TransportState = TransportState.NOT_STARTED
    _connection: Optional[Any] = None

    @property
    def connection(self) -> Optional[Any]:
        return self._connection

    @property
    def state(self) -> TransportState:
        return self._state
