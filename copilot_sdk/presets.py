"""Ready-made option sets for common deployment scenarios.

Example:
    >>> config = preset("minimal", {"session": {"config_discovery": True}})
    >>> client = CopilotClient(config.client_options())
    >>> session = await client.create_session(config.session_config())
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import Field

from .schemas.base import BaseSchema
from .schemas.config import ClientOptions, SessionConfig

PresetName = Literal["cli", "filesystem", "minimal"]


class PresetConfig(BaseSchema):
    client: Dict[str, Any] = Field(default_factory=dict, description="ClientOptions field values.")
    session: Dict[str, Any] = Field(default_factory=dict, description="SessionConfig field values.")

    def client_options(self, **extra: Any) -> ClientOptions:
        return ClientOptions(**{**self.client, **extra})

    def session_config(self, **extra: Any) -> SessionConfig:
        return SessionConfig(**{**self.session, **extra})


_PRESETS: Dict[str, Dict[str, Dict[str, Any]]] = {
    # full local CLI experience
    "cli": {
        "client": {"use_logged_in_user": True, "auto_start": True, "auto_restart": True},
        "session": {"config_discovery": True, "agent_discovery": True, "session_storage": "disk"},
    },
    # sandboxed: nothing discovered from disk, state kept in memory
    "filesystem": {
        "client": {"auto_start": True},
        "session": {"config_discovery": False, "agent_discovery": False, "session_storage": "memory"},
    },
    "minimal": {
        "client": {"auto_start": True},
        "session": {"config_discovery": False, "agent_discovery": False, "session_storage": "memory"},
    },
}


def preset(name: str, overrides: Optional[Mapping[str, Mapping[str, Any]]] = None) -> PresetConfig:
    """Return the preset `name` with `overrides` merged into each section.

    Raises:
        ValueError: If `name` is not a known preset.
    """
    base = _PRESETS.get(name)
    if base is None:
        raise ValueError(f"Unknown preset: {name}. Available presets: {', '.join(_PRESETS)}")
    overrides = overrides or {}
    merged = copy.deepcopy(base)
    merged["client"].update(overrides.get("client") or {})
    merged["session"].update(overrides.get("session") or {})
    return PresetConfig(**merged)
