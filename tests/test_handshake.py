"""
btc-handshake - Handshake Tests
=================================
Unit tests for the per-peer VERSION/VERACK state machine.
"""

import pytest

from btc_handshake.errors import (
    ChecksumMismatchError,
    DecodeError,
    PeerConnectionError,
    PeerTimeoutError,
    SelfConnectionError,
)
from btc_handshake.network.address import Endpoint, canonicalize
from btc_handshake.network.handshake import (
    FAILURE_STATES,
    HandshakeOrchestrator,
    HandshakeState,
    check_self_connection,
    failure_state_for,
)
from btc_handshake.network.message import (
    MessageFactory,
    VerackMessage,
    VersionMessage,
    decode_message,
)

from conftest import (
    FIXED_TIME,
    LOCAL_NONCE,
    PEER_NONCE,
    FakeTransport,
    connector_for,
    peer_version_bytes,
    unknown_bytes,
    verack_bytes,
)


def make_orchestrator(endpoint, magic, transport=None, connector=None, **kwargs):
    options = dict(
        nonce_source=lambda: LOCAL_NONCE,
        clock=lambda: FIXED_TIME,
    )
    options.update(kwargs)
    return HandshakeOrchestrator(
        endpoint=endpoint,
        magic=magic,
        connector=connector or connector_for(transport),
        **options
    )


class TestHandshakeSuccess:
    """Test handshake completo"""

    @pytest.mark.asyncio
    async def test_complete_handshake(self, peer_endpoint, magic, fake_transport):
        """Test sequenza stati fino a COMPLETE"""
        orchestrator = make_orchestrator(peer_endpoint, magic, fake_transport)
        outcome = await orchestrator.run()

        assert outcome.succeeded
        assert outcome.state is HandshakeState.COMPLETE
        assert outcome.error is None
        assert outcome.local_nonce == LOCAL_NONCE
        assert outcome.peer_version.nonce == PEER_NONCE
        assert outcome.peer_version.start_height == 850_000
        assert orchestrator.history == [
            HandshakeState.PENDING,
            HandshakeState.CONNECTED,
            HandshakeState.VERSION_SENT,
            HandshakeState.VERSION_RECEIVED,
            HandshakeState.VERACK_SENT,
            HandshakeState.COMPLETE,
        ]
        assert fake_transport.closed

    @pytest.mark.asyncio
    async def test_messages_sent(self, peer_endpoint, local_endpoint, magic, fake_transport):
        """Test VERSION poi VERACK, con i campi attesi"""
        orchestrator = make_orchestrator(peer_endpoint, magic, fake_transport)
        await orchestrator.run()

        assert len(fake_transport.written) == 2
        version = decode_message(fake_transport.written[0], magic=magic)
        verack = decode_message(fake_transport.written[1], magic=magic)

        assert isinstance(version, VersionMessage)
        assert isinstance(verack, VerackMessage)
        assert version.nonce == LOCAL_NONCE
        assert version.payload.timestamp == FIXED_TIME
        assert version.payload.user_agent == b""
        assert version.payload.relay is None
        assert version.payload.addr_recv == canonicalize(peer_endpoint)
        assert version.payload.addr_from == canonicalize(local_endpoint)
        assert orchestrator.messages_sent == 2
        assert orchestrator.messages_received == 2

    @pytest.mark.asyncio
    async def test_explicit_local_endpoint(self, peer_endpoint, magic, fake_transport):
        announced = Endpoint.parse("203.0.113.50:8333")
        orchestrator = make_orchestrator(peer_endpoint, magic, fake_transport, local_endpoint=announced)
        await orchestrator.run()

        version = decode_message(fake_transport.written[0])
        assert version.payload.addr_from == canonicalize(announced)

    @pytest.mark.asyncio
    async def test_unspecified_local_endpoint(self, peer_endpoint, magic, handshake_peer_bytes):
        """Test senza endpoint locale viene annunciato 0.0.0.0:0"""
        transport = FakeTransport(handshake_peer_bytes)
        await make_orchestrator(peer_endpoint, magic, transport).run()

        version = decode_message(transport.written[0])
        assert version.payload.addr_from == canonicalize(Endpoint.unspecified())

    @pytest.mark.asyncio
    async def test_unknown_messages_skipped(self, peer_endpoint, magic):
        """Test comandi sconosciuti ignorati durante l'attesa"""
        inbound = (
            unknown_bytes(b"sendaddrv2")
            + peer_version_bytes()
            + unknown_bytes(b"wtxidrelay")
            + unknown_bytes(b"sendcmpct", b"\x00" * 9)
            + verack_bytes()
        )
        transport = FakeTransport(inbound)
        outcome = await make_orchestrator(peer_endpoint, magic, transport).run()

        assert outcome.state is HandshakeState.COMPLETE

    @pytest.mark.asyncio
    async def test_perform_returns_peer_version(self, peer_endpoint, magic, fake_transport):
        peer_version = await make_orchestrator(peer_endpoint, magic, fake_transport).perform()
        assert peer_version.user_agent == b"/Satoshi:27.0.0/"


class TestHandshakeFailures:
    """Test stati terminali di fallimento"""

    @pytest.mark.asyncio
    async def test_self_connection(self, peer_endpoint, magic):
        """Test peer che restituisce il nostro nonce: nessun VERACK inviato"""
        inbound = peer_version_bytes(nonce=LOCAL_NONCE) + verack_bytes()
        transport = FakeTransport(inbound)
        orchestrator = make_orchestrator(peer_endpoint, magic, transport)

        outcome = await orchestrator.run()

        assert outcome.state is HandshakeState.SELF_CONNECTION
        assert isinstance(outcome.error, SelfConnectionError)
        assert len(transport.written) == 1
        assert HandshakeState.VERACK_SENT not in orchestrator.history
        assert transport.closed

    @pytest.mark.asyncio
    async def test_checksum_failure(self, peer_endpoint, magic):
        data = bytearray(peer_version_bytes())
        data[-5] ^= 0x01
        transport = FakeTransport(bytes(data) + verack_bytes())

        outcome = await make_orchestrator(peer_endpoint, magic, transport).run()

        assert outcome.state is HandshakeState.CHECKSUM_FAILED
        assert isinstance(outcome.error, ChecksumMismatchError)

    @pytest.mark.asyncio
    async def test_unexpected_message(self, peer_endpoint, magic):
        """Test VERACK ricevuto prima del VERSION"""
        transport = FakeTransport(verack_bytes() + peer_version_bytes())

        outcome = await make_orchestrator(peer_endpoint, magic, transport).run()

        assert outcome.state is HandshakeState.DECODE_FAILED
        assert outcome.error.code == "UNEXPECTED_MESSAGE"

    @pytest.mark.asyncio
    async def test_peer_closes_early(self, peer_endpoint, magic):
        """Test stream terminato prima del VERACK"""
        transport = FakeTransport(peer_version_bytes())

        outcome = await make_orchestrator(peer_endpoint, magic, transport).run()

        assert outcome.state is HandshakeState.DECODE_FAILED
        assert isinstance(outcome.error, DecodeError)
        assert outcome.error.code == "SHORT_READ"
        assert outcome.peer_version is not None

    @pytest.mark.asyncio
    async def test_wrong_network_magic(self, peer_endpoint, magic):
        testnet_magic = bytes.fromhex("0b110907")
        transport = FakeTransport(peer_version_bytes(magic=testnet_magic))

        outcome = await make_orchestrator(peer_endpoint, magic, transport).run()

        assert outcome.state is HandshakeState.DECODE_FAILED
        assert outcome.error.code == "MAGIC_MISMATCH"

    @pytest.mark.asyncio
    async def test_connect_refused(self, peer_endpoint, magic):
        async def refuse(endpoint):
            raise ConnectionRefusedError("connection refused")

        outcome = await make_orchestrator(peer_endpoint, magic, connector=refuse).run()

        assert outcome.state is HandshakeState.TRANSPORT_FAILED
        assert isinstance(outcome.error, PeerConnectionError)
        assert outcome.error.code == "PEER_CONNECT_FAILED"
        assert outcome.local_nonce is None

    @pytest.mark.asyncio
    async def test_write_failure(self, peer_endpoint, magic, handshake_peer_bytes):
        transport = FakeTransport(handshake_peer_bytes, fail_on_write=True)

        outcome = await make_orchestrator(peer_endpoint, magic, transport).run()

        assert outcome.state is HandshakeState.TRANSPORT_FAILED
        assert outcome.error.code == "PEER_SEND_FAILED"
        assert transport.closed

    @pytest.mark.asyncio
    async def test_timeout(self, peer_endpoint, magic):
        """Test peer che non risponde entro la deadline"""
        transport = FakeTransport(hang=True)
        orchestrator = make_orchestrator(peer_endpoint, magic, transport, timeout=0.05)

        outcome = await orchestrator.run()

        assert outcome.state is HandshakeState.TRANSPORT_FAILED
        assert isinstance(outcome.error, PeerTimeoutError)
        assert outcome.error.code == "HANDSHAKE_TIMEOUT"
        assert outcome.error.details["state"] == "version_sent"
        assert transport.closed

    @pytest.mark.asyncio
    async def test_perform_raises(self, peer_endpoint, magic):
        transport = FakeTransport(verack_bytes())

        with pytest.raises(DecodeError):
            await make_orchestrator(peer_endpoint, magic, transport).perform()


class TestHandshakeHelpers:
    """Test funzioni di supporto"""

    def test_check_self_connection(self, peer_endpoint, local_endpoint):
        sent = MessageFactory.create_version(nonce=7, local=local_endpoint, remote=peer_endpoint)
        echoed = MessageFactory.create_version(nonce=7, local=peer_endpoint, remote=local_endpoint)
        other = MessageFactory.create_version(nonce=8, local=peer_endpoint, remote=local_endpoint)

        with pytest.raises(SelfConnectionError):
            check_self_connection(sent, echoed)
        check_self_connection(sent, other)

    def test_failure_state_mapping(self):
        assert failure_state_for(ChecksumMismatchError("x")) is HandshakeState.CHECKSUM_FAILED
        assert failure_state_for(SelfConnectionError("x")) is HandshakeState.SELF_CONNECTION
        assert failure_state_for(DecodeError("x")) is HandshakeState.DECODE_FAILED
        assert failure_state_for(PeerTimeoutError("x")) is HandshakeState.TRANSPORT_FAILED

    def test_terminal_states(self):
        assert HandshakeState.COMPLETE.is_terminal
        assert not HandshakeState.COMPLETE.is_failure
        assert not HandshakeState.VERSION_SENT.is_terminal
        assert all(state.is_terminal and state.is_failure for state in FAILURE_STATES)
