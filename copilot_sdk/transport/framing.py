"""Content-Length framing for JSON-RPC over byte streams.

Each message is ``Content-Length: <n>\\r\\n\\r\\n`` followed by ``n`` bytes of
UTF-8 JSON, the same framing the runtime uses on both its stdio pipes and
its TCP port.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from copilot_sdk.errors import ProtocolError

# Maximum frame size to prevent memory exhaustion (100 MB)
MAX_FRAME_SIZE = 100 * 1024 * 1024

# Maximum size of a single header line
MAX_HEADER_LINE = 8 * 1024

CONTENT_LENGTH = b"content-length"


def encode_frame(message: Any) -> bytes:
    """Serialize a JSON-compatible value into one framed message."""
    body = json.dumps(message, separators=(",", ":")).encode("utf-8")
    return b"Content-Length: %d\r\n\r\n" % len(body) + body


async def read_frame(reader: asyncio.StreamReader) -> Optional[Any]:
    """Read and decode one framed message.

    Returns None on a clean EOF before a new frame starts.

    Raises:
        ProtocolError: On malformed headers, oversized frames, truncated bodies
            or invalid JSON.
    """
    length: Optional[int] = None
    first = True
    while True:
        try:
            line = await reader.readline()
        except ValueError as e:
            raise ProtocolError("Frame header line too long") from e
        if not line:
            if first:
                return None
            raise ProtocolError("Connection closed inside frame header")
        first = False
        if len(line) > MAX_HEADER_LINE:
            raise ProtocolError("Frame header line too long")
        stripped = line.strip()
        if not stripped:
            break
        name, sep, value = stripped.partition(b":")
        if not sep:
            raise ProtocolError(f"Malformed frame header: {stripped!r}")
        if name.strip().lower() == CONTENT_LENGTH:
            try:
                length = int(value.strip())
            except ValueError as e:
                raise ProtocolError(f"Invalid Content-Length: {value.strip()!r}") from e

    if length is None or length < 0:
        raise ProtocolError("Missing Content-Length header")
    if length > MAX_FRAME_SIZE:
        raise ProtocolError(f"Frame too large: {length}")

    try:
        body = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise ProtocolError("Connection closed inside frame body") from e

    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Invalid JSON frame: {e}") from e
