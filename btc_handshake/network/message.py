"""
btc-handshake - P2P Message Codec
===================================
Framing header + payload per i messaggi dell'handshake.

Last Updated: 2026-10-19
Version: 1.0.0

Wire format:
- Magic (4): Network identifier (start string invertita)
- Command (12): Nome ASCII, padding con byte zero
- Payload length (4): uint32 little-endian
- Checksum (4): First 4 bytes of double-SHA256
- Payload (variable): Message data

Message Types:
- VERSION: Handshake iniziale
- VERACK: Conferma versione (payload vuoto)
- Qualsiasi altro comando viene decodificato come UnknownMessage
"""

from __future__ import annotations
from typing import Optional, Callable, ClassVar, Dict, Union
from dataclasses import dataclass, field
from enum import Enum
import asyncio
import struct
import time

# Internal imports
from btc_handshake.constants import (
    MAGIC_SIZE,
    COMMAND_SIZE,
    HEADER_SIZE,
    CHECKSUM_SIZE,
    ENDPOINT_SIZE,
    VERSION_FIXED_SIZE,
    MAX_USER_AGENT_LENGTH,
    MAX_PAYLOAD_SIZE,
    PROTOCOL_VERSION,
    RELAY_MIN_PROTOCOL_VERSION,
    DEFAULT_SERVICES,
)
from btc_handshake.errors import CodecError, format_decode_error
from btc_handshake.logging_setup import get_logger
from btc_handshake.network.address import (
    Endpoint,
    canonicalize,
    encode_endpoint,
    decode_endpoint,
)
from btc_handshake.network.checksum import digest, verify
from btc_handshake.utils.serialization import ByteReader, magic_to_start_string


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("network.message")


# ============================================================================
# MESSAGE TYPES
# ============================================================================

class MessageType(str, Enum):
    """Comandi conosciuti dal codec"""
    VERSION = "version"
    VERACK = "verack"

    @property
    def command(self) -> bytes:
        return self.value.encode("ascii")


# ============================================================================
# HEADER
# ============================================================================

@dataclass
class MessageHeader:
    """
    Header fisso di 24 byte.

    Attributes:
        magic: 4 byte magic come sul wire
        command: Nome comando senza padding
        payload_size: Lunghezza payload
        checksum: Checksum del payload (4 byte)
    """

    magic: bytes
    command: bytes
    payload_size: int
    checksum: bytes

    def serialize(self) -> bytes:
        if len(self.magic) != MAGIC_SIZE:
            raise CodecError(
                f"Magic must be {MAGIC_SIZE} bytes, got {len(self.magic)}",
                code="INVALID_MAGIC"
            )
        if len(self.command) > COMMAND_SIZE:
            raise CodecError(
                f"Command too long: {self.command!r}",
                code="COMMAND_TOO_LONG"
            )
        return (
            self.magic
            + self.command.ljust(COMMAND_SIZE, b"\x00")
            + struct.pack("<I", self.payload_size)
            + self.checksum
        )

    @classmethod
    def deserialize(cls, data: bytes, magic: Optional[bytes] = None) -> MessageHeader:
        """
        Parse header.

        Args:
            data: Esattamente 24 byte
            magic: Magic atteso (None = nessun controllo)

        Raises:
            DecodeError: Header troncato, magic errato o payload troppo grande
        """
        reader = ByteReader(data, label="header")
        raw_magic = reader.read(MAGIC_SIZE)
        raw_command = reader.read(COMMAND_SIZE)
        payload_size = reader.read_struct("<I")
        checksum = reader.read(CHECKSUM_SIZE)

        if magic is not None and raw_magic != magic:
            raise format_decode_error(
                "header",
                f"magic mismatch: expected {magic.hex()}, got {raw_magic.hex()}",
                code="MAGIC_MISMATCH",
                expected=magic.hex(),
                received=raw_magic.hex(),
            )

        if payload_size > MAX_PAYLOAD_SIZE:
            raise format_decode_error(
                "header",
                f"payload size {payload_size} exceeds {MAX_PAYLOAD_SIZE}",
                code="PAYLOAD_TOO_LARGE",
                payload_size=payload_size,
            )

        return cls(
            magic=raw_magic,
            command=raw_command.rstrip(b"\x00"),
            payload_size=payload_size,
            checksum=checksum,
        )

    @property
    def start_string(self) -> str:
        return magic_to_start_string(self.magic)

    @property
    def command_name(self) -> str:
        return self.command.decode("ascii", errors="replace")


# ============================================================================
# VERSION PAYLOAD
# ============================================================================

def relay_expected(version: int) -> bool:
    """True se la versione di protocollo definisce il byte relay"""
    return version >= RELAY_MIN_PROTOCOL_VERSION


@dataclass
class VersionPayload:
    """
    Payload del messaggio VERSION.

    Gli endpoint vengono canonicalizzati (IPv4 -> IPv4-mapped IPv6)
    alla costruzione, quindi decode(encode(p)) == p.

    Attributes:
        version: Protocol version (int32)
        services: Service flags (uint64)
        timestamp: Unix seconds (int64)
        addr_recv_services: Servizi del ricevente (uint64)
        addr_recv: Endpoint del ricevente
        addr_from_services: Servizi del mittente (uint64)
        addr_from: Endpoint del mittente
        nonce: Nonce casuale (uint64), rileva self-connection
        user_agent: Byte user agent (max 255)
        start_height: Altezza chain (int32)
        relay: Byte relay opzionale
    """

    version: int
    services: int
    timestamp: int
    addr_recv_services: int
    addr_recv: Endpoint
    addr_from_services: int
    addr_from: Endpoint
    nonce: int
    user_agent: bytes = b""
    start_height: int = 0
    relay: Optional[int] = None

    def __post_init__(self):
        self.addr_recv = canonicalize(self.addr_recv)
        self.addr_from = canonicalize(self.addr_from)
        if isinstance(self.user_agent, str):
            self.user_agent = self.user_agent.encode("utf-8")
        if len(self.user_agent) > MAX_USER_AGENT_LENGTH:
            raise CodecError(
                f"User agent too long: {len(self.user_agent)} bytes",
                code="USER_AGENT_TOO_LONG"
            )

    @property
    def size(self) -> int:
        return VERSION_FIXED_SIZE + len(self.user_agent) + (1 if self.relay is not None else 0)

    def serialize(self) -> bytes:
        """Serializza nell'ordine fisso del protocollo"""
        try:
            parts = [
                struct.pack("<iQqQ", self.version, self.services, self.timestamp, self.addr_recv_services),
                encode_endpoint(self.addr_recv),
                struct.pack("<Q", self.addr_from_services),
                encode_endpoint(self.addr_from),
                struct.pack("<QB", self.nonce, len(self.user_agent)),
                self.user_agent,
                struct.pack("<i", self.start_height),
            ]
            if self.relay is not None:
                parts.append(struct.pack("<B", self.relay))
        except struct.error as e:
            raise CodecError(
                f"Version field out of range: {e}",
                code="ENCODE_FAILED"
            ) from e
        return b"".join(parts)

    @classmethod
    def deserialize(cls, payload: bytes) -> VersionPayload:
        """
        Parse VERSION payload.

        Il byte relay è presente solo se restano esattamente 1 byte dopo
        start_height (payload_size - (85 + len(user_agent)) == 1).

        Raises:
            DecodeError: Payload troncato
        """
        reader = ByteReader(payload, label="version payload")

        version, services, timestamp, addr_recv_services = reader.read_structs("<iQqQ")
        addr_recv = decode_endpoint(reader.read(ENDPOINT_SIZE))
        addr_from_services = reader.read_struct("<Q")
        addr_from = decode_endpoint(reader.read(ENDPOINT_SIZE))
        nonce = reader.read_struct("<Q")
        user_agent_length = reader.read_struct("<B")
        user_agent = reader.read(user_agent_length)
        start_height = reader.read_struct("<i")

        remaining = len(payload) - (VERSION_FIXED_SIZE + user_agent_length)
        relay = reader.read_struct("<B") if remaining == 1 else None

        if remaining > 1:
            logger.debug(
                f"Ignoring {remaining} trailing bytes in version payload",
                extra_data={"trailing": remaining, "version": version}
            )

        if (relay is not None) != relay_expected(version):
            # Euristica sulla lunghezza, non gate sulla versione
            logger.debug(
                "Relay byte presence disagrees with protocol version",
                extra_data={"version": version, "relay_present": relay is not None}
            )

        return cls(
            version=version,
            services=services,
            timestamp=timestamp,
            addr_recv_services=addr_recv_services,
            addr_recv=addr_recv,
            addr_from_services=addr_from_services,
            addr_from=addr_from,
            nonce=nonce,
            user_agent=user_agent,
            start_height=start_height,
            relay=relay,
        )


# ============================================================================
# MESSAGE VARIANTS
# ============================================================================

@dataclass
class VersionMessage:
    """VERSION message per handshake"""

    payload: VersionPayload

    message_type: ClassVar[MessageType] = MessageType.VERSION

    @property
    def command(self) -> bytes:
        return self.message_type.command

    @property
    def nonce(self) -> int:
        return self.payload.nonce

    def serialize_payload(self) -> bytes:
        return self.payload.serialize()

    @classmethod
    def from_payload(cls, payload: bytes) -> VersionMessage:
        return cls(payload=VersionPayload.deserialize(payload))


@dataclass
class VerackMessage:
    """VERACK message: solo header, payload vuoto"""

    message_type: ClassVar[MessageType] = MessageType.VERACK

    @property
    def command(self) -> bytes:
        return self.message_type.command

    def serialize_payload(self) -> bytes:
        return b""

    @classmethod
    def from_payload(cls, payload: bytes) -> VerackMessage:
        if payload:
            raise format_decode_error(
                "verack payload",
                f"expected empty payload, got {len(payload)} bytes",
                code="UNEXPECTED_PAYLOAD",
                payload_size=len(payload),
            )
        return cls()


@dataclass
class UnknownMessage:
    """Comando non gestito dal codec (checksum comunque verificato)"""

    command: bytes
    payload: bytes = field(default=b"", repr=False)

    message_type: ClassVar[Optional[MessageType]] = None

    def serialize_payload(self) -> bytes:
        return self.payload


Message = Union[VersionMessage, VerackMessage, UnknownMessage]

_PAYLOAD_DECODERS: Dict[MessageType, Callable[[bytes], Message]] = {
    MessageType.VERSION: VersionMessage.from_payload,
    MessageType.VERACK: VerackMessage.from_payload,
}


# ============================================================================
# ENCODE / DECODE
# ============================================================================

def encode_message(message: Message, magic: bytes) -> bytes:
    """
    Serializza messaggio in formato wire protocol.

    Examples:
        >>> data = encode_message(VerackMessage(), bytes.fromhex("d9b4bef9"))
        >>> len(data)
        24
    """
    payload = message.serialize_payload()
    header = MessageHeader(
        magic=magic,
        command=message.command,
        payload_size=len(payload),
        checksum=digest(payload),
    )
    return header.serialize() + payload


def _decode_payload(header: MessageHeader, payload: bytes) -> Message:
    verify(payload, header.checksum, command=header.command_name)

    try:
        message_type = MessageType(header.command_name)
    except ValueError:
        return UnknownMessage(command=header.command, payload=payload)

    return _PAYLOAD_DECODERS[message_type](payload)


def decode_message(data: bytes, magic: Optional[bytes] = None) -> Message:
    """
    Deserializza un singolo messaggio da buffer.

    Raises:
        DecodeError: Header/payload malformato, troncato o con byte in eccesso
        ChecksumMismatchError: Payload corrotto
    """
    header = MessageHeader.deserialize(data[:HEADER_SIZE], magic=magic)

    payload = data[HEADER_SIZE:]
    if len(payload) < header.payload_size:
        raise format_decode_error(
            "payload",
            f"short read: expected {header.payload_size} bytes, got {len(payload)}",
            code="SHORT_READ",
            expected=header.payload_size,
            received=len(payload),
        )
    if len(payload) > header.payload_size:
        raise format_decode_error(
            "payload",
            f"{len(payload) - header.payload_size} bytes after declared payload",
            code="TRAILING_BYTES",
            expected=header.payload_size,
            received=len(payload),
        )

    return _decode_payload(header, payload)


async def read_message(stream, magic: Optional[bytes] = None) -> Message:
    """
    Legge un messaggio da stream (qualsiasi oggetto con readexactly async).

    Legge esattamente 24 byte di header, poi esattamente payload_size byte.

    Raises:
        DecodeError: Stream terminato prima del messaggio completo
        ChecksumMismatchError: Payload corrotto
    """
    header_data = await _read_exactly(stream, HEADER_SIZE, "header")
    header = MessageHeader.deserialize(header_data, magic=magic)

    payload = await _read_exactly(stream, header.payload_size, "payload")

    logger.debug(
        f"Read {header.command_name} ({HEADER_SIZE + len(payload)} bytes)",
        extra_data={"command": header.command_name, "payload_size": header.payload_size}
    )

    return _decode_payload(header, payload)


async def _read_exactly(stream, size: int, field_name: str) -> bytes:
    if size == 0:
        return b""
    try:
        return await stream.readexactly(size)
    except asyncio.IncompleteReadError as e:
        raise format_decode_error(
            field_name,
            f"short read: expected {size} bytes, got {len(e.partial)}",
            code="SHORT_READ",
            expected=size,
            received=len(e.partial),
        ) from e


# ============================================================================
# MESSAGE FACTORY
# ============================================================================

class MessageFactory:
    """Factory per creare messaggi dell'handshake"""

    @staticmethod
    def create_version(
        nonce: int,
        local: Endpoint,
        remote: Endpoint,
        clock: Callable[[], float] = time.time,
        version: int = PROTOCOL_VERSION,
        services: int = DEFAULT_SERVICES,
        user_agent: bytes = b"",
        start_height: int = 0,
        relay: Optional[int] = None,
    ) -> VersionMessage:
        """
        Crea VERSION message in uscita.

        Args:
            nonce: Nonce generato per questo tentativo
            local: Endpoint locale (addr_from)
            remote: Endpoint del peer (addr_recv)
            clock: Sorgente tempo (unix seconds)
        """
        payload = VersionPayload(
            version=version,
            services=services,
            timestamp=int(clock()),
            addr_recv_services=services,
            addr_recv=remote,
            addr_from_services=services,
            addr_from=local,
            nonce=nonce,
            user_agent=user_agent,
            start_height=start_height,
            relay=relay,
        )
        return VersionMessage(payload=payload)

    @staticmethod
    def create_verack() -> VerackMessage:
        return VerackMessage()


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "MessageType",
    "MessageHeader",
    "VersionPayload",
    "VersionMessage",
    "VerackMessage",
    "UnknownMessage",
    "Message",
    "MessageFactory",
    "encode_message",
    "decode_message",
    "read_message",
    "relay_expected",
]
