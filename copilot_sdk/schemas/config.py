from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, model_validator

from .base import BaseSchema
from .core import Tool

LogLevel = Literal["none", "error", "warning", "info", "debug", "all"]


class Endpoint(BaseSchema):
    host: str = Field(
        "localhost",
        min_length=1,
        description="Host name or address of an already running runtime.",
        examples=["localhost", "127.0.0.1"],
    )
    port: int = Field(
        ...,
        ge=1,
        le=65535,
        description="TCP port the runtime listens on.",
        examples=[8080],
    )


class RestartPolicy(BaseSchema):
    """Bounded relaunch policy for a crashed runtime subprocess."""

    max_attempts: int = Field(
        3,
        ge=0,
        le=100,
        description="Relaunch attempts allowed before the runtime is declared failed.",
        examples=[3],
    )
    backoff_initial: float = Field(
        0.5,
        ge=0.0,
        le=60.0,
        description="Delay in seconds before the first relaunch attempt.",
    )
    backoff_factor: float = Field(
        2.0,
        ge=1.0,
        le=10.0,
        description="Multiplier applied to the delay after each failed attempt.",
    )
    backoff_max: float = Field(
        8.0,
        ge=0.0,
        le=300.0,
        description="Upper bound for the delay between attempts.",
    )
    reset_after: float = Field(
        60.0,
        ge=0.0,
        description="Seconds a relaunched process must stay up before the attempt budget is restored.",
    )

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before the zero-based `attempt`."""
        return min(self.backoff_initial * (self.backoff_factor**attempt), self.backoff_max)


class ClientOptions(BaseSchema):
    """Configuration for `CopilotClient`.

    Exactly one connection mode applies: a local runtime binary (default), an
    already running runtime reached through `cli_url`, or an in-process bridge
    selected with `runtime="wasm"`.
    """

    cli_path: Optional[str] = Field(
        None,
        min_length=1,
        description="Path to the runtime executable. Looked up on PATH when omitted.",
        examples=["/usr/local/bin/copilot"],
    )
    cli_args: List[str] = Field(
        default_factory=list,
        description="Extra arguments placed right after the executable.",
    )
    cli_url: Optional[str] = Field(
        None,
        min_length=1,
        description="Endpoint of an already running runtime: 'port', 'host:port' or 'http(s)://host:port'.",
        examples=["localhost:8080", "8080"],
    )
    use_stdio: Optional[bool] = Field(
        None,
        description="Talk to a spawned runtime over its stdio pipes (default) instead of a TCP port.",
    )
    port: int = Field(
        0,
        ge=0,
        le=65535,
        description="Port a spawned runtime should listen on when use_stdio is False (0 = any).",
    )
    runtime: Literal["cli", "wasm"] = Field(
        "cli",
        description="'wasm' selects a runtime linked into this process through `bridge`.",
    )
    bridge: Optional[Any] = Field(
        None,
        description="RuntimeBridge instance, or an async loader returning one, for runtime='wasm'.",
    )
    cwd: Optional[str] = Field(None, description="Working directory for a spawned runtime.")
    env: Optional[Dict[str, str]] = Field(None, description="Environment for a spawned runtime.")
    log_level: LogLevel = Field("info", description="Log level passed to a spawned runtime.")
    auto_start: bool = Field(True, description="Start the client on first use.")
    auto_restart: bool = Field(True, description="Relaunch a spawned runtime that exits unexpectedly.")
    restart_policy: RestartPolicy = Field(
        default_factory=RestartPolicy,
        description="Bounds on automatic relaunches.",
    )
    github_token: Optional[str] = Field(
        None,
        min_length=1,
        max_length=512,
        description="Explicit credential handed to a spawned runtime.",
        examples=["gho_exampletoken"],
    )
    use_logged_in_user: Optional[bool] = Field(
        None,
        description="Let the runtime use the already logged-in identity. Resolves to False when unset.",
    )
    request_timeout: Optional[float] = Field(
        None,
        ge=0.1,
        le=3600.0,
        description="Default per-request timeout in seconds. None waits indefinitely.",
    )
    filesystem: Optional[Any] = Field(
        None,
        description="FileSystemProvider served to the runtime's fs.* requests.",
    )

    @model_validator(mode="after")
    def _check_connection_modes(self) -> "ClientOptions":
        if self.cli_url and (self.use_stdio or self.cli_path):
            raise ValueError("cli_url is mutually exclusive with use_stdio and cli_path")
        if self.runtime == "wasm" and (self.cli_path or self.cli_url):
            raise ValueError("runtime='wasm' is mutually exclusive with cli_path and cli_url")
        if self.cli_url and (self.github_token or self.use_logged_in_user is not None):
            raise ValueError(
                "github_token and use_logged_in_user cannot be used with cli_url "
                "(external server manages its own auth)"
            )
        return self

    @property
    def is_external_server(self) -> bool:
        return bool(self.cli_url)

    def resolved(self) -> "ClientOptions":
        """Return a copy with defaults that depend on other fields filled in."""
        return self.model_copy(
            update={
                "use_logged_in_user": bool(self.use_logged_in_user),
                "use_stdio": False if self.cli_url else (True if self.use_stdio is None else self.use_stdio),
            }
        )

    @staticmethod
    def from_env(**overrides: Any) -> "ClientOptions":
        """Build options from `COPILOT_*` environment settings plus explicit overrides."""
        from copilot_sdk.core.config import get_settings

        s = get_settings()
        values: Dict[str, Any] = {}
        if s.cli_url:
            values["cli_url"] = s.cli_url
        else:
            if s.cli_path:
                values["cli_path"] = s.cli_path
            if s.github_token:
                values["github_token"] = s.github_token
        values.update(overrides)
        return ClientOptions(**values)


class SystemMessageConfig(BaseSchema):
    mode: Literal["append", "replace"] = Field("append", description="How content combines with the default prompt.")
    content: str = Field(..., description="System message text.")


class SessionConfig(BaseSchema):
    session_id: Optional[str] = Field(None, min_length=1, description="Requested id; the runtime picks one if unset.")
    model: Optional[str] = Field(None, description="Model identifier.", examples=["gpt-5", "claude-sonnet-4.5"])
    tools: List[Tool] = Field(default_factory=list, description="Session-scoped tools.")
    system_message: Optional[SystemMessageConfig] = Field(None, description="System prompt customisation.")
    available_tools: Optional[List[str]] = Field(None, description="Allow-list of runtime tools.")
    excluded_tools: Optional[List[str]] = Field(None, description="Deny-list of runtime tools.")
    streaming: Optional[bool] = Field(None, description="Emit assistant.message_delta events.")
    working_directory: Optional[str] = Field(None, description="Directory the session operates in.")
    config_discovery: Optional[bool] = Field(None, description="Let the runtime discover config files.")
    agent_discovery: Optional[bool] = Field(None, description="Let the runtime discover custom agents.")
    session_storage: Optional[Literal["disk", "memory"]] = Field(None, description="Where session state lives.")

    def to_wire(self) -> Dict[str, Any]:
        payload = self.model_dump(by_alias=True, exclude_none=True, exclude={"tools"}, mode="json")
        if self.tools:
            payload["tools"] = [t.to_definition() for t in self.tools]
        return payload


class ResumeSessionConfig(BaseSchema):
    tools: List[Tool] = Field(default_factory=list, description="Tools to register on the resumed session.")
    streaming: Optional[bool] = Field(None, description="Emit assistant.message_delta events.")

    def to_wire(self) -> Dict[str, Any]:
        payload = self.model_dump(by_alias=True, exclude_none=True, exclude={"tools"}, mode="json")
        if self.tools:
            payload["tools"] = [t.to_definition() for t in self.tools]
        return payload
