"""
btc-handshake - Utilities Package
===================================
Common utility functions and helpers.
"""

from btc_handshake.utils.serialization import (
    hex_to_bytes,
    hex_dump,
    start_string_to_magic,
    magic_to_start_string,
    ByteReader,
)
from btc_handshake.utils.validators import (
    validate_hex,
    validate_start_string,
    validate_port,
    validate_endpoint_string,
)

__all__ = [
    # Serialization
    "hex_to_bytes",
    "hex_dump",
    "start_string_to_magic",
    "magic_to_start_string",
    "ByteReader",

    # Validators
    "validate_hex",
    "validate_start_string",
    "validate_port",
    "validate_endpoint_string",
]
