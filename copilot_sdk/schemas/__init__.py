from .config import ClientOptions, Endpoint, RestartPolicy, ResumeSessionConfig, SessionConfig
from .core import SessionEvent, Tool, ToolInvocation, ToolResult

__all__ = [
    "ClientOptions",
    "Endpoint",
    "RestartPolicy",
    "ResumeSessionConfig",
    "SessionConfig",
    "SessionEvent",
    "Tool",
    "ToolInvocation",
    "ToolResult",
]
