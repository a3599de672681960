from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import pytest

from copilot_sdk.transport.framing import encode_frame, read_frame


class FakeWriter:
    """Stands in for an asyncio StreamWriter; written bytes land in `outbound`."""

    def __init__(self) -> None:
        self.outbound = asyncio.StreamReader()
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionResetError("writer closed")
        self.outbound.feed_data(data)

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.outbound.feed_eof()

    def is_closing(self) -> bool:
        return self.closed

    async def wait_closed(self) -> None:
        return None


class FakePeer:
    """The runtime side of an in-memory framed channel."""

    def __init__(self) -> None:
        self.reader = asyncio.StreamReader()
        self.writer = FakeWriter()

    def send(self, message: Any) -> None:
        self.reader.feed_data(encode_frame(message))

    def send_raw(self, data: bytes) -> None:
        self.reader.feed_data(data)

    async def recv(self, timeout: float = 1.0) -> Optional[Any]:
        return await asyncio.wait_for(read_frame(self.writer.outbound), timeout)

    def hang_up(self) -> None:
        self.reader.feed_eof()


@pytest.fixture
def make_peer() -> Callable[[], FakePeer]:
    return FakePeer
