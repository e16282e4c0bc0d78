"""
btc-handshake - Payload Checksum
==================================
Primi 4 byte del double-SHA256 del payload.

Usato solo per rilevare corruzione, non per autenticazione.
"""

import hashlib

from btc_handshake.constants import CHECKSUM_SIZE, EMPTY_CHECKSUM
from btc_handshake.errors import ChecksumMismatchError


def digest(payload: bytes) -> bytes:
    """
    Calcola checksum (first 4 bytes of double-SHA256).

    Examples:
        >>> digest(b"").hex()
        '5df6e0e2'
    """
    if not payload:
        return EMPTY_CHECKSUM
    hash1 = hashlib.sha256(payload).digest()
    hash2 = hashlib.sha256(hash1).digest()
    return hash2[:CHECKSUM_SIZE]


def verify(payload: bytes, checksum: bytes, command: str = "") -> None:
    """
    Confronta byte per byte il checksum atteso con quello del payload.

    Raises:
        ChecksumMismatchError: Se diversi
    """
    expected = digest(payload)
    if checksum != expected:
        raise ChecksumMismatchError(
            "Checksum mismatch",
            code="CHECKSUM_MISMATCH",
            details={
                "command": command,
                "expected": expected.hex(),
                "received": checksum.hex(),
                "payload_size": len(payload),
            }
        )


__all__ = [
    "digest",
    "verify",
    "EMPTY_CHECKSUM",
]
