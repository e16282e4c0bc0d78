"""
btc-handshake - Protocol Constants
====================================
Costanti immutabili del wire protocol e preset di rete.

Last Updated: 2026-10-19
Version: 1.0.0
"""

from enum import IntFlag
from typing import Final, Dict
import hashlib


# ============================================================================
# PROJECT IDENTIFICATION
# ============================================================================

SOFTWARE_NAME: Final[str] = "btc-handshake"
SOFTWARE_VERSION: Final[str] = "1.0.0"

# Versione protocollo annunciata nel messaggio VERSION
PROTOCOL_VERSION: Final[int] = 70016

# Prima versione che definisce il campo relay (BIP37)
RELAY_MIN_PROTOCOL_VERSION: Final[int] = 70001


# ============================================================================
# SERVICE FLAGS
# ============================================================================

class ServiceFlags(IntFlag):
    """Bitfield servizi nodo"""
    NONE = 0
    NODE_NETWORK = 1 << 0
    NODE_BLOOM = 1 << 2
    NODE_WITNESS = 1 << 3
    NODE_COMPACT_FILTERS = 1 << 6
    NODE_NETWORK_LIMITED = 1 << 10


DEFAULT_SERVICES: Final[int] = int(ServiceFlags.NODE_NETWORK)


# ============================================================================
# WIRE FORMAT
# ============================================================================

MAGIC_SIZE: Final[int] = 4
COMMAND_SIZE: Final[int] = 12
LENGTH_SIZE: Final[int] = 4
CHECKSUM_SIZE: Final[int] = 4
HEADER_SIZE: Final[int] = MAGIC_SIZE + COMMAND_SIZE + LENGTH_SIZE + CHECKSUM_SIZE

# Endpoint: 16 byte indirizzo IPv6 + 2 byte porta big-endian
ADDRESS_SIZE: Final[int] = 16
PORT_SIZE: Final[int] = 2
ENDPOINT_SIZE: Final[int] = ADDRESS_SIZE + PORT_SIZE

# version(4) services(8) timestamp(8) recv(8+18) from(8+18) nonce(8)
# user_agent_len(1) start_height(4)
VERSION_FIXED_SIZE: Final[int] = 85

MAX_USER_AGENT_LENGTH: Final[int] = 255

# 32 MiB, come MAX_SIZE del protocollo
MAX_PAYLOAD_SIZE: Final[int] = 0x02000000

# Checksum del payload vuoto (double-SHA256, primi 4 byte)
EMPTY_CHECKSUM: Final[bytes] = hashlib.sha256(hashlib.sha256(b"").digest()).digest()[:4]


# ============================================================================
# NETWORK PRESETS
# ============================================================================

# start_string: magic in forma esadecimale, sempre invertito sul wire
# (anche per testnet/regtest/signet: "fabfb5da" -> da b5 bf fa)
NETWORK_PRESETS: Final[Dict[str, Dict[str, object]]] = {
    "mainnet": {
        "start_string": "f9beb4d9",
        "network_port": 8333,
        "dns_seed": "seed.bitcoin.sipa.be",
        "max_nbits": "1d00ffff",
    },
    "testnet": {
        "start_string": "0b110907",
        "network_port": 18333,
        "dns_seed": "testnet-seed.bitcoin.jonasschnelli.ch",
        "max_nbits": "1d00ffff",
    },
    "regtest": {
        "start_string": "fabfb5da",
        "network_port": 18444,
        "dns_seed": "localhost",
        "max_nbits": "207fffff",
    },
    "signet": {
        "start_string": "0a03cf40",
        "network_port": 38333,
        "dns_seed": "seed.signet.bitcoin.sprovoost.nl",
        "max_nbits": "1e0377ae",
    },
}

SUPPORTED_NETWORKS: Final[tuple] = tuple(NETWORK_PRESETS)


# ============================================================================
# TIMEOUTS & LIMITS
# ============================================================================

DEFAULT_HANDSHAKE_TIMEOUT: Final[float] = 30.0
DEFAULT_CONNECT_TIMEOUT: Final[float] = 10.0
DEFAULT_MAX_CONCURRENCY: Final[int] = 64
DEFAULT_RETRY_BACKOFF: Final[float] = 1.0
DEFAULT_RETRY_BACKOFF_MAX: Final[float] = 30.0


# ============================================================================
# EXPORT ALL
# ============================================================================

__all__ = [
    "SOFTWARE_NAME",
    "SOFTWARE_VERSION",
    "PROTOCOL_VERSION",
    "RELAY_MIN_PROTOCOL_VERSION",
    "ServiceFlags",
    "DEFAULT_SERVICES",
    "MAGIC_SIZE",
    "COMMAND_SIZE",
    "LENGTH_SIZE",
    "CHECKSUM_SIZE",
    "HEADER_SIZE",
    "ADDRESS_SIZE",
    "PORT_SIZE",
    "ENDPOINT_SIZE",
    "VERSION_FIXED_SIZE",
    "MAX_USER_AGENT_LENGTH",
    "MAX_PAYLOAD_SIZE",
    "EMPTY_CHECKSUM",
    "NETWORK_PRESETS",
    "SUPPORTED_NETWORKS",
    "DEFAULT_HANDSHAKE_TIMEOUT",
    "DEFAULT_CONNECT_TIMEOUT",
    "DEFAULT_MAX_CONCURRENCY",
    "DEFAULT_RETRY_BACKOFF",
    "DEFAULT_RETRY_BACKOFF_MAX",
]
