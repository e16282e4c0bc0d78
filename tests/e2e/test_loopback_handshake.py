"""
btc-handshake - Loopback Handshake E2E Test
=============================================
Handshake reale su TCP verso un peer asyncio locale.
"""

import asyncio
import socket
import pytest

from btc_handshake.config import override_settings
from btc_handshake.errors import HandshakeException
from btc_handshake.network.address import Endpoint
from btc_handshake.network.fanout import HandshakeFanOut
from btc_handshake.network.handshake import HandshakeOrchestrator, HandshakeState
from btc_handshake.network.message import MessageFactory, encode_message, read_message
from btc_handshake.network.seeds import discover_endpoints
from btc_handshake.network.transport import make_connector


REGTEST_MAGIC = bytes.fromhex("dab5bffa")


def peer_handler(echo_nonce: bool = False):
    """
    Peer minimale: riceve VERSION, risponde VERSION + VERACK,
    attende il VERACK del client.
    """

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            their_version = await read_message(reader, magic=REGTEST_MAGIC)
            host, port = writer.get_extra_info("peername")[:2]

            reply = MessageFactory.create_version(
                nonce=their_version.nonce if echo_nonce else 0xABCDEF,
                local=Endpoint.parse("127.0.0.1:18444"),
                remote=Endpoint.parse(f"{host}:{port}"),
                user_agent=b"/loopback:0.1/",
                start_height=123,
                relay=1,
            )
            writer.write(encode_message(reply, REGTEST_MAGIC))
            writer.write(encode_message(MessageFactory.create_verack(), REGTEST_MAGIC))
            await writer.drain()

            await read_message(reader, magic=REGTEST_MAGIC)
        except (HandshakeException, ConnectionError):
            pass
        finally:
            writer.close()

    return handle


def closed_port() -> int:
    """Porta locale su cui nessuno è in ascolto"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class TestLoopbackHandshake:
    """Handshake completo su socket TCP reali"""

    @pytest.mark.asyncio
    async def test_handshake_completes(self):
        server = await asyncio.start_server(peer_handler(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]

        try:
            orchestrator = HandshakeOrchestrator(
                endpoint=Endpoint.parse(f"127.0.0.1:{port}"),
                magic=REGTEST_MAGIC,
                connector=make_connector(timeout=2),
                timeout=5,
            )
            outcome = await orchestrator.run()
        finally:
            server.close()
            await server.wait_closed()

        assert outcome.state is HandshakeState.COMPLETE
        assert outcome.peer_version.user_agent == b"/loopback:0.1/"
        assert outcome.peer_version.start_height == 123
        assert outcome.peer_version.relay == 1

    @pytest.mark.asyncio
    async def test_self_connection_detected(self):
        server = await asyncio.start_server(peer_handler(echo_nonce=True), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]

        try:
            orchestrator = HandshakeOrchestrator(
                endpoint=Endpoint.parse(f"127.0.0.1:{port}"),
                magic=REGTEST_MAGIC,
                connector=make_connector(timeout=2),
                timeout=5,
            )
            outcome = await orchestrator.run()
        finally:
            server.close()
            await server.wait_closed()

        assert outcome.state is HandshakeState.SELF_CONNECTION
        assert orchestrator.messages_sent == 1

    @pytest.mark.asyncio
    async def test_fanout_mixed(self, monkeypatch):
        """Test fan-out: un peer attivo, uno irraggiungibile"""
        monkeypatch.delenv("BTC_PEERS", raising=False)
        server = await asyncio.start_server(peer_handler(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]

        settings = override_settings(
            network="regtest",
            peers=[f"127.0.0.1:{port}", f"127.0.0.1:{closed_port()}"],
            handshake_timeout=5,
            connect_timeout=2,
        )

        try:
            endpoints = await discover_endpoints(settings)
            summary = await HandshakeFanOut.from_settings(settings).run(endpoints)
        finally:
            server.close()
            await server.wait_closed()

        assert summary.succeeded == 1
        assert summary.failed == 1
        assert summary.total == 2
        assert summary.failures_by_state[HandshakeState.TRANSPORT_FAILED] == 1
