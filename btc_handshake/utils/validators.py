"""
btc-handshake - Input Validators
==================================
Validazione stringhe di configurazione (hex, start string, endpoint).
"""

import re

from btc_handshake.constants import MAGIC_SIZE


_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def validate_hex(value: str, length: int = 0) -> str:
    """
    Valida stringa esadecimale.

    Args:
        value: Stringa hex (senza prefisso 0x)
        length: Numero esatto di caratteri richiesto (0 = qualsiasi lunghezza pari)

    Returns:
        str: Hex normalizzato lowercase

    Raises:
        ValueError: Se non valida

    Examples:
        >>> validate_hex("F9BEB4D9", length=8)
        'f9beb4d9'
    """
    if value.lower().startswith("0x"):
        value = value[2:]

    if not value or not _HEX_RE.match(value):
        raise ValueError(f"Invalid hex string: {value!r}")

    if length and len(value) != length:
        raise ValueError(f"Expected {length} hex characters, got {len(value)}")

    if len(value) % 2:
        raise ValueError(f"Hex string must have even length: {value!r}")

    return value.lower()


def validate_start_string(value: str) -> str:
    """Start string: esattamente 4 byte in hex"""
    return validate_hex(value, length=MAGIC_SIZE * 2)


def validate_port(port: int) -> int:
    if not (1 <= port <= 65535):
        raise ValueError(f"Invalid port: {port}")
    return port


def validate_endpoint_string(value: str) -> str:
    """
    Valida formato host:port o [ipv6]:port.

    Examples:
        >>> validate_endpoint_string("[::1]:8333")
        '[::1]:8333'
    """
    if ':' not in value:
        raise ValueError(f"Invalid endpoint format: {value}. Expected host:port")

    host, port_str = value.rsplit(':', 1)
    if not host or host == "[]":
        raise ValueError(f"Invalid endpoint host: {value}")

    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"Invalid endpoint port: {port_str}")

    validate_port(port)
    return f"{host}:{port}"


__all__ = [
    "validate_hex",
    "validate_start_string",
    "validate_port",
    "validate_endpoint_string",
]
