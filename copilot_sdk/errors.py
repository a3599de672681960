"""Error types for the Copilot SDK.

Defines the exception hierarchy raised by transports, connections, clients and
sessions. Configuration errors are raised before any I/O happens; channel and
protocol errors are surfaced to the awaiting caller; tool failures are never
raised at all (they travel back to the runtime as structured results).
"""

from __future__ import annotations

from typing import Any, Optional


class CopilotClientError(Exception):
    """Base error for all Copilot SDK exceptions."""


class ConfigurationError(CopilotClientError, ValueError):
    """Raised when client or transport configuration is invalid."""


class EndpointError(ConfigurationError):
    """Raised when a runtime endpoint string cannot be used."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(message)
        self.url = url


class InvalidEndpointError(EndpointError):
    """Raised when an endpoint does not match ``[scheme://][host:]port``."""

    def __init__(self, url: str) -> None:
        super().__init__(url, f"Invalid cli_url format: {url}")


class InvalidPortError(EndpointError):
    """Raised when an endpoint's port is not an integer in 1-65535."""

    def __init__(self, url: str) -> None:
        super().__init__(url, f"Invalid port in cli_url: {url}")


class TransportError(CopilotClientError):
    """Channel-level failure (process, socket or bridge)."""


class ConnectionClosedError(TransportError):
    """Raised for calls that were pending or issued while the channel was closed."""

    def __init__(self, message: str = "Connection closed") -> None:
        super().__init__(message)


class DisposedError(TransportError):
    """Raised for calls issued after a connection was disposed."""

    def __init__(self, message: str = "Connection is disposed") -> None:
        super().__init__(message)


class RequestTimeoutError(TransportError, TimeoutError):
    """Raised when no response arrives within the request timeout."""

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"Request '{method}' timed out after {timeout}s")
        self.method = method
        self.timeout = timeout


class RuntimeExitedError(TransportError):
    """Raised when the runtime subprocess exits and no restart is attempted."""

    def __init__(self, returncode: Optional[int]) -> None:
        super().__init__(f"Copilot runtime exited unexpectedly (code={returncode})")
        self.returncode = returncode


class RuntimeRestartError(TransportError):
    """Raised once the restart supervisor has given up on the runtime."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None) -> None:
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"Copilot runtime could not be restarted after {attempts} attempt(s){detail}")
        self.attempts = attempts
        self.last_error = last_error


class ProtocolError(CopilotClientError):
    """Raised for malformed frames or responses that violate JSON-RPC."""


class JsonRpcError(CopilotClientError):
    """A response frame carried an ``error`` member.

    ``str(exc)`` is the frame's error message so callers see exactly what the
    runtime reported.
    """

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


class MethodNotFoundError(JsonRpcError):
    """Raised when an inbound request names a method with no registered handler."""

    def __init__(self, method: str) -> None:
        super().__init__(-32601, f"Unhandled method {method}")
        self.method = method


class SessionClosedError(CopilotClientError):
    """Raised when using a session after it was destroyed or its connection closed."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' is closed")
        self.session_id = session_id


class SessionError(CopilotClientError):
    """Raised by ``send_and_wait`` when the runtime reports a session error."""

    def __init__(self, session_id: str, message: str) -> None:
        super().__init__(f"Session '{session_id}' failed: {message}")
        self.session_id = session_id
