"""
btc-handshake - Configuration Tests
=====================================
Unit tests for settings loading and network presets.
"""

import pytest

from btc_handshake.config import (
    HandshakeSettings,
    load_settings,
    override_settings,
    reload_settings,
)
from btc_handshake.constants import NETWORK_PRESETS
from btc_handshake.errors import ConfigError, InvalidConfigError


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Nessuna variabile BTC_* ereditata dall'ambiente"""
    import os

    for name in list(os.environ):
        if name.upper().startswith("BTC_"):
            monkeypatch.delenv(name, raising=False)


class TestPresets:
    """Test preset di rete"""

    def test_mainnet_defaults(self):
        settings = override_settings()

        assert settings.network == "mainnet"
        assert settings.start_string == "f9beb4d9"
        assert settings.network_port == 8333
        assert settings.dns_seed == "seed.bitcoin.sipa.be"
        assert settings.max_nbits == "1d00ffff"
        assert settings.magic == bytes.fromhex("d9b4bef9")
        assert settings.is_mainnet()

    @pytest.mark.parametrize("network", ["testnet", "regtest", "signet"])
    def test_other_networks(self, network):
        settings = override_settings(network=network)
        preset = NETWORK_PRESETS[network]

        assert settings.start_string == preset["start_string"]
        assert settings.network_port == preset["network_port"]
        assert not settings.is_mainnet()

    def test_explicit_values_win_over_preset(self):
        settings = override_settings(network="regtest", network_port=19000, start_string="0xDEADBEEF")

        assert settings.network_port == 19000
        assert settings.start_string == "deadbeef"
        assert settings.dns_seed == NETWORK_PRESETS["regtest"]["dns_seed"]

    def test_defaults(self):
        settings = override_settings()

        assert settings.user_agent == ""
        assert settings.start_height == 0
        assert settings.relay is None
        assert settings.retry_attempts == 0
        assert settings.peers == []


class TestValidation:
    """Test validazione valori"""

    def test_invalid_network(self):
        with pytest.raises(InvalidConfigError) as exc_info:
            override_settings(network="litecoin")
        assert exc_info.value.code == "CONFIG_INVALID"

    @pytest.mark.parametrize("value", ["f9beb4", "zzzzzzzz", "f9beb4d9aa"])
    def test_invalid_start_string(self, value):
        with pytest.raises(InvalidConfigError):
            override_settings(start_string=value)

    def test_invalid_max_nbits(self):
        with pytest.raises(InvalidConfigError):
            override_settings(max_nbits="1d00")

    def test_invalid_timeout(self):
        with pytest.raises(InvalidConfigError) as exc_info:
            override_settings(handshake_timeout=0)
        fields = [err["field"] for err in exc_info.value.details["errors"]]
        assert "handshake_timeout" in fields

    def test_log_level_normalized(self):
        assert override_settings(log_level="debug").log_level == "DEBUG"


class TestSources:
    """Test sorgenti di configurazione"""

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("BTC_NETWORK", "testnet")
        monkeypatch.setenv("BTC_HANDSHAKE_TIMEOUT", "3.5")

        settings = reload_settings()

        assert settings.network == "testnet"
        assert settings.handshake_timeout == 3.5
        assert settings.start_string == NETWORK_PRESETS["testnet"]["start_string"]

    def test_toml_file(self, tmp_path):
        config_file = tmp_path / "mainnet_config.toml"
        config_file.write_text(
            'dns_seed = "dnsseed.example.org"\n'
            'network_port = 8334\n'
            'start_string = "f9beb4d9"\n'
            'max_nbits = "1d00ffff"\n'
            'peers = ["127.0.0.1:8333"]\n'
        )

        settings = HandshakeSettings.from_file(config_file)

        assert settings.dns_seed == "dnsseed.example.org"
        assert settings.network_port == 8334
        assert settings.peers == ["127.0.0.1:8333"]
        assert isinstance(settings, HandshakeSettings)

    def test_environment_beats_file(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.toml"
        config_file.write_text('network_port = 8334\n')
        monkeypatch.setenv("BTC_NETWORK_PORT", "9999")

        assert HandshakeSettings.from_file(config_file).network_port == 9999

    def test_overrides_beat_file(self, tmp_path):
        config_file = tmp_path / "config.toml"
        config_file.write_text('network = "testnet"\n')

        settings = load_settings(config_file, network="regtest", max_peers=None)

        assert settings.network == "regtest"
        assert settings.max_peers is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError) as exc_info:
            load_settings(tmp_path / "missing.toml")
        assert exc_info.value.code == "CONFIG_NOT_FOUND"

    def test_invalid_file_value(self, tmp_path):
        config_file = tmp_path / "config.toml"
        config_file.write_text('start_string = "nothex!!"\n')

        with pytest.raises(InvalidConfigError):
            HandshakeSettings.from_file(config_file)

    def test_to_dict(self):
        data = override_settings(network="regtest").to_dict()

        assert data["network"] == "regtest"
        assert data["start_string"] == "fabfb5da"
        assert data["log_dir"] == "logs"
