"""TCP transport for an already running Copilot runtime.

The runtime's lifetime is managed elsewhere, so `stop()` and `force_stop()`
only close the socket.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import List, Optional

from copilot_sdk.errors import InvalidEndpointError, InvalidPortError, TransportError
from copilot_sdk.schemas.config import Endpoint

from . import TransportCommonMixin, TransportState
from .connection import JsonRpcConnection

logger = logging.getLogger(__name__)

_SCHEME = re.compile(r"^https?://", re.IGNORECASE)


def parse_cli_url(url: str) -> Endpoint:
    """Parse ``port``, ``host:port`` or ``http(s)://host:port`` into an `Endpoint`.

    Raises:
        InvalidEndpointError: If `url` does not have one of the accepted shapes.
        InvalidPortError: If the port is not an integer in 1-65535.
    """
    clean = _SCHEME.sub("", url.strip())

    if clean.isdigit():
        host, port_text = "localhost", clean
    else:
        parts = clean.split(":")
        if len(parts) != 2:
            raise InvalidEndpointError(url)
        host, port_text = parts[0] or "localhost", parts[1]

    try:
        port = int(port_text)
    except ValueError:
        raise InvalidPortError(url) from None
    if port < 1 or port > 65535:
        raise InvalidPortError(url)
    return Endpoint(host=host, port=port)


class TcpTransport(TransportCommonMixin):
    def __init__(
        self,
        host: str,
        port: int,
        *,
        connect_timeout: float = 10.0,
        request_timeout: Optional[float] = None,
    ) -> None:
        self._endpoint = Endpoint(host=host, port=port)
        self._connect_timeout = connect_timeout
        self._request_timeout = request_timeout
        self._state = TransportState.NOT_STARTED
        self._connection: Optional[JsonRpcConnection] = None

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "TcpTransport":
        endpoint = parse_cli_url(url)
        return cls(endpoint.host, endpoint.port, **kwargs)

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    async def start(self) -> None:
        if self._state in (TransportState.STARTING, TransportState.STARTED):
            return
        self._state = TransportState.STARTING
        host, port = self._endpoint.host, self._endpoint.port
        logger.debug("Connecting to Copilot runtime at %s:%s", host, port)
        try:
            reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), self._connect_timeout)
        except asyncio.TimeoutError:
            self._state = TransportState.NOT_STARTED
            raise TransportError(
                f"Timed out connecting to Copilot runtime at {host}:{port} after {self._connect_timeout}s"
            ) from None
        except OSError as e:
            self._state = TransportState.NOT_STARTED
            raise TransportError(f"Failed to connect to Copilot runtime at {host}:{port}: {e}") from e

        connection = JsonRpcConnection(
            reader,
            writer,
            name=f"{host}:{port}",
            default_timeout=self._request_timeout,
        )
        connection.on_close(lambda error: self._on_connection_closed(connection, error))
        self._connection = connection
        self._state = TransportState.STARTED
        logger.info("Connected to Copilot runtime at %s:%s", host, port)

    def _on_connection_closed(self, connection: JsonRpcConnection, error: Optional[BaseException]) -> None:
        # the next start() dials again
        if self._connection is not connection:
            return
        logger.warning(
            "Connection to Copilot runtime at %s:%s ended: %s", self._endpoint.host, self._endpoint.port, error
        )
        self._connection = None
        self._state = TransportState.STOPPED

    async def stop(self) -> List[Exception]:
        if self._state in (TransportState.NOT_STARTED, TransportState.STOPPED):
            return []
        self._state = TransportState.STOPPING
        errors: List[Exception] = []
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                errors.append(e)
        self._state = TransportState.STOPPED
        return errors

    async def force_stop(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.dispose()
        self._state = TransportState.STOPPED
