"""
btc-handshake - Network Package
=================================
Wire codec, handshake state machine e fan-out concorrente.
"""

from btc_handshake.network.address import Endpoint, encode_endpoint, decode_endpoint
from btc_handshake.network.checksum import digest
from btc_handshake.network.message import (
    MessageType,
    MessageHeader,
    VersionPayload,
    VersionMessage,
    VerackMessage,
    UnknownMessage,
    MessageFactory,
    encode_message,
    decode_message,
    read_message,
)
from btc_handshake.network.transport import StreamTransport, open_connection
from btc_handshake.network.handshake import (
    HandshakeOrchestrator,
    HandshakeOutcome,
    HandshakeState,
)
from btc_handshake.network.fanout import HandshakeFanOut, HandshakeSummary, summarize
from btc_handshake.network.seeds import resolve_seed, discover_endpoints

__all__ = [
    "Endpoint",
    "encode_endpoint",
    "decode_endpoint",
    "digest",
    "MessageType",
    "MessageHeader",
    "VersionPayload",
    "VersionMessage",
    "VerackMessage",
    "UnknownMessage",
    "MessageFactory",
    "encode_message",
    "decode_message",
    "read_message",
    "StreamTransport",
    "open_connection",
    "HandshakeOrchestrator",
    "HandshakeOutcome",
    "HandshakeState",
    "HandshakeFanOut",
    "HandshakeSummary",
    "summarize",
    "resolve_seed",
    "discover_endpoints",
]
