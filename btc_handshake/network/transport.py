"""
btc-handshake - Transport
===========================
Stream di byte affidabile e ordinato verso un singolo endpoint.

Il codec legge tramite `readexactly`, quindi qualsiasi oggetto che
implementa il protocollo Transport (o un asyncio.StreamReader) è valido.
"""

from __future__ import annotations
from typing import Optional, Protocol, Awaitable, Callable
import asyncio

# Internal imports
from btc_handshake.network.address import Endpoint
from btc_handshake.errors import PeerConnectionError, PeerTimeoutError
from btc_handshake.logging_setup import get_logger


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("network.transport")


# ============================================================================
# TRANSPORT PROTOCOL
# ============================================================================

class Transport(Protocol):
    """Connessione bidirezionale verso un peer"""

    @property
    def local_endpoint(self) -> Optional[Endpoint]:
        ...

    async def readexactly(self, n: int) -> bytes:
        ...

    async def write(self, data: bytes) -> None:
        ...

    async def close(self) -> None:
        ...


Connector = Callable[[Endpoint], Awaitable[Transport]]


# ============================================================================
# ASYNCIO STREAM TRANSPORT
# ============================================================================

class StreamTransport:
    """
    Transport su asyncio StreamReader/StreamWriter.

    Examples:
        >>> reader, writer = await asyncio.open_connection(host, port)
        >>> transport = StreamTransport(reader, writer)
        >>> await transport.write(data)
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self.bytes_sent = 0
        self.bytes_received = 0

    @property
    def local_endpoint(self) -> Optional[Endpoint]:
        sockname = self.writer.get_extra_info("sockname")
        if not sockname:
            return None
        try:
            return Endpoint.from_sockaddr(sockname)
        except ValueError:
            return None

    @property
    def remote_endpoint(self) -> Optional[Endpoint]:
        peername = self.writer.get_extra_info("peername")
        if not peername:
            return None
        try:
            return Endpoint.from_sockaddr(peername)
        except ValueError:
            return None

    async def readexactly(self, n: int) -> bytes:
        data = await self.reader.readexactly(n)
        self.bytes_received += len(data)
        return data

    async def write(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()
        self.bytes_sent += len(data)

    async def close(self) -> None:
        if self.writer.is_closing():
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error while closing transport: {e}")


# ============================================================================
# CONNECTOR
# ============================================================================

async def open_connection(endpoint: Endpoint, timeout: Optional[float] = None) -> StreamTransport:
    """
    Apre connessione TCP verso endpoint.

    Raises:
        PeerTimeoutError: Timeout connessione
        PeerConnectionError: Connessione rifiutata/fallita
    """
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(endpoint.host, endpoint.port),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        raise PeerTimeoutError(
            f"Connection timeout to {endpoint}",
            code="PEER_CONNECT_TIMEOUT",
            details={"endpoint": str(endpoint), "timeout": timeout}
        )
    except OSError as e:
        raise PeerConnectionError(
            f"Failed to connect to {endpoint}: {e}",
            code="PEER_CONNECT_FAILED",
            details={"endpoint": str(endpoint)}
        ) from e

    logger.debug(f"Connected to {endpoint}")
    return StreamTransport(reader, writer)


def make_connector(timeout: Optional[float] = None) -> Connector:
    """Connector con timeout di connessione fissato"""

    async def connect(endpoint: Endpoint) -> StreamTransport:
        return await open_connection(endpoint, timeout=timeout)

    return connect


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "Transport",
    "Connector",
    "StreamTransport",
    "open_connection",
    "make_connector",
]
