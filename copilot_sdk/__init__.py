"""Copilot SDK.

This package drives a separate, long-running Copilot runtime (an agent
process) over JSON-RPC 2.0.

High-level architecture
-----------------------

- **Transports** open the channel to the runtime. Three interchangeable
  implementations share one contract (``copilot_sdk.transport``):

  - ``StdioTransport``: launches the runtime as a subprocess and talks over
    its pipes (or a TCP port it announces), relaunching it after a crash.
  - ``TcpTransport``: connects to an already running runtime.
  - ``InProcessTransport``: calls a runtime linked into this process through
    a ``RuntimeBridge``.

- **Connection** frames and correlates requests and responses and routes the
  runtime's own requests and notifications to registered handlers.

- **Client and sessions**: ``CopilotClient`` owns the transport and the
  sessions created over it, and answers tool calls on their behalf.

Typical workflow
----------------

1. Build a ``CopilotClient`` from ``ClientOptions`` (or ``preset(...)``).
2. ``await client.start()`` (or let the first call start it).
3. Create a session, register tools, send prompts and consume events.
4. ``await client.stop()`` to destroy sessions and release the runtime.
"""

from .client import SDK_PROTOCOL_VERSION, CopilotClient
from .errors import (
    ConfigurationError,
    CopilotClientError,
    JsonRpcError,
    ProtocolError,
    SessionClosedError,
    SessionError,
    TransportError,
)
from .filesystem import FileSystemProvider, InMemoryFileSystem
from .presets import PresetConfig, preset
from .schemas.config import ClientOptions, RestartPolicy, SessionConfig
from .schemas.core import SessionEvent, Tool, ToolInvocation, ToolResult
from .session import CopilotSession
from .tools import define_tool
from .transport.in_process import InProcessTransport, RuntimeBridge
from .transport.stdio import StdioTransport
from .transport.tcp import TcpTransport, parse_cli_url

__all__ = [
    "SDK_PROTOCOL_VERSION",
    "ClientOptions",
    "ConfigurationError",
    "CopilotClient",
    "CopilotClientError",
    "CopilotSession",
    "FileSystemProvider",
    "InMemoryFileSystem",
    "InProcessTransport",
    "JsonRpcError",
    "PresetConfig",
    "ProtocolError",
    "RestartPolicy",
    "RuntimeBridge",
    "SessionClosedError",
    "SessionConfig",
    "SessionError",
    "SessionEvent",
    "StdioTransport",
    "TcpTransport",
    "Tool",
    "ToolInvocation",
    "ToolResult",
    "TransportError",
    "define_tool",
    "parse_cli_url",
    "preset",
]
