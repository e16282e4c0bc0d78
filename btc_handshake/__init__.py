"""
btc-handshake - Bitcoin P2P Handshake
=======================================
Codec wire protocol e handshake VERSION/VERACK concorrente.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__license__ = "MIT"

from btc_handshake.config import HandshakeSettings, get_settings
from btc_handshake.network import (
    Endpoint,
    HandshakeFanOut,
    HandshakeOrchestrator,
    HandshakeOutcome,
    HandshakeState,
    HandshakeSummary,
    VersionMessage,
    VerackMessage,
    encode_message,
    decode_message,
)

__all__ = [
    # Version
    "__version__",

    # Config
    "HandshakeSettings",
    "get_settings",

    # Network
    "Endpoint",
    "HandshakeFanOut",
    "HandshakeOrchestrator",
    "HandshakeOutcome",
    "HandshakeState",
    "HandshakeSummary",
    "VersionMessage",
    "VerackMessage",
    "encode_message",
    "decode_message",
]
