"""
btc-handshake - Pytest Configuration
======================================
Fixtures e configurazione per testing.

Last Updated: 2026-10-19
Version: 1.0.0
"""

import asyncio
import logging
import pytest
from typing import List, Optional

# Internal imports
from btc_handshake.config import override_settings
from btc_handshake.logging_setup import ROOT_LOGGER_NAME
from btc_handshake.network.address import Endpoint
from btc_handshake.network.message import (
    MessageFactory,
    UnknownMessage,
    encode_message,
)


MAINNET_MAGIC = bytes.fromhex("d9b4bef9")

PEER_NONCE = 0x1122334455667788
LOCAL_NONCE = 0x0102030405060708
FIXED_TIME = 1_700_000_000


# ============================================================================
# FAKE TRANSPORT
# ============================================================================

class FakeTransport:
    """
    Transport in memoria: restituisce byte pre-registrati e registra
    quelli scritti.

    Lo StreamReader viene creato alla prima lettura, dentro il loop.
    """

    def __init__(
        self,
        inbound: bytes = b"",
        local_endpoint: Optional[Endpoint] = None,
        fail_on_write: bool = False,
        hang: bool = False,
    ):
        self.inbound = inbound
        self.fail_on_write = fail_on_write
        self.hang = hang
        self.written: List[bytes] = []
        self.closed = False
        self._local_endpoint = local_endpoint
        self._reader: Optional[asyncio.StreamReader] = None

    @property
    def local_endpoint(self) -> Optional[Endpoint]:
        return self._local_endpoint

    async def readexactly(self, n: int) -> bytes:
        if self.hang:
            await asyncio.Event().wait()
        if self._reader is None:
            self._reader = asyncio.StreamReader()
            self._reader.feed_data(self.inbound)
            self._reader.feed_eof()
        return await self._reader.readexactly(n)

    async def write(self, data: bytes) -> None:
        if self.fail_on_write:
            raise ConnectionResetError("connection reset by peer")
        self.written.append(data)

    async def close(self) -> None:
        self.closed = True


def connector_for(transport):
    """Connector che restituisce sempre lo stesso transport"""

    async def connect(endpoint):
        return transport

    return connect


def peer_version_bytes(
    magic: bytes = MAINNET_MAGIC,
    nonce: int = PEER_NONCE,
    user_agent: bytes = b"/Satoshi:27.0.0/",
    start_height: int = 850_000,
    relay: Optional[int] = 1,
) -> bytes:
    """VERSION come lo invierebbe un nodo remoto"""
    message = MessageFactory.create_version(
        nonce=nonce,
        local=Endpoint.parse("203.0.113.7:8333"),
        remote=Endpoint.parse("198.51.100.1:50000"),
        clock=lambda: FIXED_TIME,
        services=0x409,
        user_agent=user_agent,
        start_height=start_height,
        relay=relay,
    )
    return encode_message(message, magic)


def verack_bytes(magic: bytes = MAINNET_MAGIC) -> bytes:
    return encode_message(MessageFactory.create_verack(), magic)


def unknown_bytes(command: bytes, payload: bytes = b"", magic: bytes = MAINNET_MAGIC) -> bytes:
    return encode_message(UnknownMessage(command=command, payload=payload), magic)


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================

@pytest.fixture
def test_config(monkeypatch):
    """Mainnet settings senza influenze dall'environment"""
    for name in ("BTC_NETWORK", "BTC_START_STRING", "BTC_PEERS", "BTC_DNS_SEED", "BTC_NETWORK_PORT"):
        monkeypatch.delenv(name, raising=False)
    return override_settings(network="mainnet", handshake_timeout=2)


@pytest.fixture
def magic():
    """Magic mainnet in forma wire"""
    return MAINNET_MAGIC


@pytest.fixture
def peer_endpoint():
    return Endpoint.parse("198.51.100.1:8333")


@pytest.fixture
def local_endpoint():
    return Endpoint.parse("192.0.2.10:50000")


# ============================================================================
# TRANSPORT FIXTURES
# ============================================================================

@pytest.fixture
def handshake_peer_bytes():
    """Risposta completa di un peer: VERSION + VERACK"""
    return peer_version_bytes() + verack_bytes()


@pytest.fixture
def fake_transport(handshake_peer_bytes, local_endpoint):
    """Transport che completa l'handshake"""
    return FakeTransport(handshake_peer_bytes, local_endpoint=local_endpoint)


# ============================================================================
# LOGGING
# ============================================================================

@pytest.fixture(autouse=True)
def reset_logging():
    """Rimuove gli handler installati da setup_logging durante il test"""
    yield
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
