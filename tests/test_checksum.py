"""
btc-handshake - Checksum Tests
================================
Unit tests for payload checksum.
"""

import hashlib
import pytest

from btc_handshake.constants import EMPTY_CHECKSUM
from btc_handshake.errors import ChecksumMismatchError
from btc_handshake.network.checksum import digest, verify


class TestChecksum:
    """Test double-SHA256 checksum"""

    def test_empty_payload(self):
        """Test checksum del payload vuoto"""
        assert digest(b"") == bytes.fromhex("5df6e0e2")
        assert digest(b"") == EMPTY_CHECKSUM

    def test_empty_constant_matches_hash(self):
        """Test costante = double-SHA256 calcolato"""
        computed = hashlib.sha256(hashlib.sha256(b"").digest()).digest()[:4]
        assert computed == EMPTY_CHECKSUM

    def test_digest_is_double_sha256_prefix(self):
        """Test primi 4 byte del double hash"""
        payload = b"hello bitcoin"
        expected = hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4]

        assert digest(payload) == expected
        assert len(digest(payload)) == 4

    def test_verify_ok(self):
        """Test verify accetta checksum corretto"""
        payload = b"\x01\x02\x03"
        verify(payload, digest(payload))

    def test_verify_mismatch(self):
        """Test verify rifiuta checksum errato"""
        with pytest.raises(ChecksumMismatchError) as exc_info:
            verify(b"\x01\x02\x03", b"\x00\x00\x00\x00", command="version")

        assert exc_info.value.code == "CHECKSUM_MISMATCH"
        assert exc_info.value.details["command"] == "version"
        assert exc_info.value.details["received"] == "00000000"
