"""
btc-handshake - CLI Package
"""

from btc_handshake.cli.main import app

__all__ = ["app"]
