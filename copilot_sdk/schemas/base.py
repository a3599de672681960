"""Pydantic base schema utilities for Copilot SDK models.

Provides `BaseSchema` for option objects built by callers and `WireSchema` for
payloads received from the runtime. Both alias snake_case fields to camelCase
so models dump straight to the runtime's wire format.
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


def _to_camel(s: str) -> str:
    """Convert snake_case to camelCase for JSON aliasing."""
    parts = s.split("_")
    return parts[0] + "".join(p.capitalize() or "_" for p in parts[1:])


class BaseSchema(BaseModel):
    """Shared base for caller-facing option models.

    - Rejects unknown fields so typos in options fail fast
    - Enables populate_by_name for using either snake_case or camelCase
    - Uses a snake->camel alias generator for JSON interop
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        alias_generator=_to_camel,
        arbitrary_types_allowed=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        """Dump to a camelCase dict without unset optional members."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class WireSchema(BaseModel):
    """Base for payloads produced by the runtime.

    Unknown members are ignored: the runtime may add fields faster than the SDK.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        alias_generator=_to_camel,
    )
