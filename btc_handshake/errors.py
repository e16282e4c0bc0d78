"""
btc-handshake - Custom Exceptions
===================================
Gerarchia di eccezioni per codec, handshake e configurazione.

Last Updated: 2026-10-19
Version: 1.0.0
"""

from typing import Optional, Any


# ============================================================================
# BASE EXCEPTION
# ============================================================================

class HandshakeException(Exception):
    """
    Eccezione base per tutte le eccezioni btc-handshake.

    Attributes:
        message (str): Messaggio errore
        code (str): Codice errore (es. "CHECKSUM_MISMATCH")
        details (dict): Dettagli aggiuntivi
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Serializza eccezione per report/logging"""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            return f"[{self.code}] {self.message} | Details: {self.details}"
        return f"[{self.code}] {self.message}"


# ============================================================================
# CONFIGURATION ERRORS
# ============================================================================

class ConfigError(HandshakeException):
    """Errore configurazione"""
    pass


class InvalidConfigError(ConfigError):
    """Configurazione invalida"""
    pass


# ============================================================================
# NETWORK/P2P ERRORS
# ============================================================================

class P2PError(HandshakeException):
    """Errore networking P2P"""
    pass


class SeedResolutionError(P2PError):
    """Risoluzione DNS seed fallita"""
    pass


class CodecError(P2PError):
    """Errore codifica/decodifica wire protocol"""
    pass


class DecodeError(CodecError):
    """Header o payload malformato/troncato"""
    pass


class ChecksumMismatchError(CodecError):
    """Checksum payload non corrisponde (payload corrotto)"""
    pass


class PeerError(P2PError):
    """Errore comunicazione peer"""
    pass


class SelfConnectionError(PeerError):
    """Il peer ha restituito il nostro nonce (connessione a sé stessi)"""
    pass


class TransportError(PeerError):
    """Errore trasporto (connect/read/write)"""
    pass


class PeerConnectionError(TransportError):
    """Errore connessione peer"""
    pass


class PeerTimeoutError(TransportError):
    """Timeout comunicazione peer"""
    pass


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def format_decode_error(
    field: str,
    issue: str,
    code: Optional[str] = None,
    **details: Any
) -> DecodeError:
    """
    Helper per creare DecodeError formattati.

    Example:
        >>> raise format_decode_error("payload", "short read", code="SHORT_READ")
    """
    return DecodeError(
        message=f"Cannot decode {field}: {issue}",
        code=code or "DECODE_FAILED",
        details={"field": field, **details}
    )


# ============================================================================
# EXPORT ALL
# ============================================================================

__all__ = [
    # Base
    "HandshakeException",

    # Config
    "ConfigError",
    "InvalidConfigError",

    # P2P
    "P2PError",
    "SeedResolutionError",
    "CodecError",
    "DecodeError",
    "ChecksumMismatchError",
    "PeerError",
    "SelfConnectionError",
    "TransportError",
    "PeerConnectionError",
    "PeerTimeoutError",

    # Helpers
    "format_decode_error",
]
