"""
btc-handshake - Serialization Utilities
=========================================
Helper hex e lettura binaria a cursore per il wire protocol.
"""

import struct
from typing import Tuple

from btc_handshake.errors import format_decode_error
from btc_handshake.constants import MAGIC_SIZE


# ============================================================================
# BYTES/HEX CONVERSION
# ============================================================================

def hex_to_bytes(hex_str: str) -> bytes:
    """
    Convert hex string to bytes.

    Raises:
        ValueError: If invalid hex string

    Examples:
        >>> hex_to_bytes('000102')
        b'\\x00\\x01\\x02'
    """
    try:
        return bytes.fromhex(hex_str)
    except ValueError as e:
        raise ValueError(f"Invalid hex string {hex_str!r}: {e}")


def hex_dump(data: bytes, width: int = 16) -> str:
    """Hex dump a righe, spazio tra i byte"""
    lines = []
    for offset in range(0, len(data), width):
        chunk = data[offset:offset + width]
        lines.append(f"{offset:08x}  {chunk.hex(' ')}")
    return "\n".join(lines)


# ============================================================================
# NETWORK MAGIC
# ============================================================================

def start_string_to_magic(start_string: str) -> bytes:
    """
    Converte start string esadecimale nei 4 byte magic del wire.

    I byte sono invertiti rispetto alla forma testuale.

    Examples:
        >>> start_string_to_magic("f9beb4d9").hex()
        'd9b4bef9'
    """
    decoded = hex_to_bytes(start_string)
    if len(decoded) != MAGIC_SIZE:
        raise ValueError(
            f"Start string must encode {MAGIC_SIZE} bytes, got {len(decoded)}"
        )
    return decoded[::-1]


def magic_to_start_string(magic: bytes) -> str:
    """
    Inverso di start_string_to_magic.

    Examples:
        >>> magic_to_start_string(bytes.fromhex("d9b4bef9"))
        'f9beb4d9'
    """
    return magic[::-1].hex()


# ============================================================================
# BINARY READER
# ============================================================================

class ByteReader:
    """
    Cursore su buffer immutabile.

    Ogni lettura oltre la fine del buffer solleva DecodeError
    (code SHORT_READ), mai IndexError o struct.error.

    Examples:
        >>> reader = ByteReader(b"\\x01\\x00\\x00\\x00")
        >>> reader.read_struct("<i")
        1
    """

    def __init__(self, data: bytes, label: str = "payload"):
        self._data = memoryview(data)
        self._offset = 0
        self._label = label

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def read(self, size: int) -> bytes:
        if size > self.remaining:
            raise format_decode_error(
                self._label,
                f"short read: wanted {size} bytes at offset {self._offset}, "
                f"{self.remaining} available",
                code="SHORT_READ",
                offset=self._offset,
                wanted=size,
                available=self.remaining,
            )
        chunk = bytes(self._data[self._offset:self._offset + size])
        self._offset += size
        return chunk

    def read_struct(self, fmt: str):
        """Legge un singolo valore struct (es. '<I', '>H')"""
        return struct.unpack(fmt, self.read(struct.calcsize(fmt)))[0]

    def read_structs(self, fmt: str) -> Tuple:
        return struct.unpack(fmt, self.read(struct.calcsize(fmt)))


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "hex_to_bytes",
    "hex_dump",
    "start_string_to_magic",
    "magic_to_start_string",
    "ByteReader",
]
