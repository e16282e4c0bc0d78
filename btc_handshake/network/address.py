"""
btc-handshake - Endpoint Address Codec
========================================
Forma canonica wire di un endpoint di rete.

Wire format (18 bytes):
- Address (16): IPv6, IPv4 mappato come ::ffff:a.b.c.d
- Port (2): big-endian

La decodifica restituisce sempre IPv6: gli indirizzi IPv4 non vengono
mai ri-convertiti, quindi encode/decode non preserva la famiglia originale.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Union, Tuple
import ipaddress
import struct

from btc_handshake.constants import ADDRESS_SIZE, ENDPOINT_SIZE
from btc_handshake.errors import format_decode_error
from btc_handshake.utils.validators import validate_port


IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_IPV4_MAPPED_PREFIX = b"\x00" * 10 + b"\xff\xff"


# ============================================================================
# ENDPOINT
# ============================================================================

@dataclass(frozen=True)
class Endpoint:
    """
    Endpoint di rete (indirizzo + porta).

    Attributes:
        ip: Indirizzo IPv4 o IPv6
        port: Porta TCP

    Examples:
        >>> Endpoint.parse("127.0.0.1:8333")
        Endpoint(ip=IPv4Address('127.0.0.1'), port=8333)
    """

    ip: IPAddress
    port: int

    def __post_init__(self):
        if not isinstance(self.ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            object.__setattr__(self, "ip", ipaddress.ip_address(self.ip))
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"Invalid port: {self.port}")

    @classmethod
    def parse(cls, value: str, default_port: int = 0) -> Endpoint:
        """
        Parse "host:port", "[ipv6]:port" o indirizzo senza porta.

        Raises:
            ValueError: Se host non è un indirizzo IP letterale o la porta
                esplicita è fuori da 1..65535
        """
        value = value.strip()
        explicit = True

        if value.startswith("["):
            host, _, rest = value[1:].partition("]")
            explicit = rest.startswith(":")
            port = int(rest[1:]) if explicit else default_port
        elif value.count(":") == 1:
            host, port_str = value.split(":")
            port = int(port_str)
        else:
            # IPv4 senza porta o IPv6 nudo
            host, port, explicit = value, default_port, False

        if explicit or port:
            validate_port(port)
        return cls(ipaddress.ip_address(host), port)

    @classmethod
    def from_sockaddr(cls, sockaddr: Tuple) -> Endpoint:
        """Da tupla socket (host, port[, flowinfo, scope_id])"""
        host = str(sockaddr[0]).split("%", 1)[0]
        return cls(ipaddress.ip_address(host), int(sockaddr[1]))

    @classmethod
    def unspecified(cls) -> Endpoint:
        return cls(ipaddress.IPv4Address("0.0.0.0"), 0)

    @property
    def host(self) -> str:
        """Host adatto a asyncio.open_connection"""
        if isinstance(self.ip, ipaddress.IPv6Address) and self.ip.ipv4_mapped:
            return str(self.ip.ipv4_mapped)
        return str(self.ip)

    def canonical(self) -> Endpoint:
        return canonicalize(self)

    def __str__(self) -> str:
        if isinstance(self.ip, ipaddress.IPv6Address):
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


# ============================================================================
# CODEC
# ============================================================================

def canonicalize(endpoint: Endpoint) -> Endpoint:
    """
    IPv4 -> IPv4-mapped IPv6. Idempotente.

    Examples:
        >>> str(canonicalize(Endpoint.parse("10.0.0.1:8333")))
        '[::ffff:a00:1]:8333'
    """
    if isinstance(endpoint.ip, ipaddress.IPv4Address):
        mapped = ipaddress.IPv6Address(_IPV4_MAPPED_PREFIX + endpoint.ip.packed)
        return Endpoint(mapped, endpoint.port)
    return endpoint


def encode_endpoint(endpoint: Endpoint) -> bytes:
    """
    Serializza endpoint in 18 byte. Sempre riuscito.
    """
    canonical = canonicalize(endpoint)
    return canonical.ip.packed + struct.pack(">H", canonical.port)


def decode_endpoint(data: bytes) -> Endpoint:
    """
    Deserializza 18 byte in endpoint IPv6.

    Raises:
        DecodeError: Se la lunghezza non è 18
    """
    if len(data) != ENDPOINT_SIZE:
        raise format_decode_error(
            "endpoint",
            f"expected {ENDPOINT_SIZE} bytes, got {len(data)}",
            code="SHORT_READ" if len(data) < ENDPOINT_SIZE else "ENDPOINT_SIZE",
            size=len(data),
        )
    address = ipaddress.IPv6Address(bytes(data[:ADDRESS_SIZE]))
    port = struct.unpack(">H", data[ADDRESS_SIZE:])[0]
    return Endpoint(address, port)


__all__ = [
    "Endpoint",
    "IPAddress",
    "canonicalize",
    "encode_endpoint",
    "decode_endpoint",
]
